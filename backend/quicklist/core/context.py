from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Optional, TypeVar

import httpx

from quicklist.core.config import Settings, get_settings
from quicklist.core.errors import PipelineCancelled, UpstreamTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class PipelineContext:
    """
    Everything one pipeline invocation needs: a settings snapshot, the HTTP
    client shared by its external calls and its cancellation signal.
    Two requests never share a context.
    """

    settings: Settings
    client: httpx.AsyncClient
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        settings: Optional[Settings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> AsyncIterator["PipelineContext"]:
        settings = settings or get_settings()
        async with httpx.AsyncClient(timeout=settings.MODEL_TIMEOUT_SECONDS, transport=transport) as client:
            yield cls(settings=settings, client=client)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        if not self.cancel_event.is_set():
            logger.info("[%s] cancellation requested", self.request_id)
        self.cancel_event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise PipelineCancelled(f"request {self.request_id} cancelled")

    async def call(self, aw: Awaitable[T], *, timeout: float) -> T:
        """
        Await one external call bounded by `timeout` and abandoned as soon as
        the context is cancelled.
        """
        if self.cancelled:
            if asyncio.iscoroutine(aw):
                aw.close()
            self.raise_if_cancelled()
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(self.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        if waiter in done:
            raise PipelineCancelled(f"request {self.request_id} cancelled")
        raise UpstreamTimeout(f"Upstream call exceeded {timeout:.0f}s")


async def gather_all(*aws: Awaitable) -> list:
    """
    asyncio.gather that waits for every awaitable before re-raising the
    first failure, so no sibling outlives the request's HTTP client.
    """
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results
