import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

from fastapi import HTTPException, Request, UploadFile

from quicklist.core.config import Settings
from quicklist.core.context import PipelineContext
from quicklist.core.errors import (
    GeminiRateLimitError,
    NoUsablePhotos,
    PipelineCancelled,
    QuickListError,
    UpstreamError,
)
from quicklist.schemas.photo import Photo

logger = logging.getLogger(__name__)

# nginx's "client closed request"
CLIENT_CLOSED_REQUEST = 499

DISCONNECT_POLL_SECONDS = 0.5


async def _watch_disconnect(request: Request, ctx: PipelineContext) -> None:
    while not ctx.cancelled:
        if await request.is_disconnected():
            logger.info("[%s] client disconnected", ctx.request_id)
            ctx.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


@asynccontextmanager
async def request_context(request: Request, settings: Settings) -> AsyncIterator[PipelineContext]:
    """
    One PipelineContext per HTTP request, cancelled when the client goes away.
    """
    async with PipelineContext.open(settings) as ctx:
        watcher = asyncio.create_task(_watch_disconnect(request, ctx))
        try:
            yield ctx
        finally:
            watcher.cancel()


async def read_photos(files: List[UploadFile]) -> List[Photo]:
    photos: List[Photo] = []
    for f in files or []:
        data = await f.read()
        photos.append(Photo(data=data, mime_type=f.content_type or "image/jpeg", name=f.filename))
    return photos


def http_error(e: QuickListError) -> HTTPException:
    """
    Map pipeline exceptions to HTTP responses.
    """
    if isinstance(e, NoUsablePhotos):
        return HTTPException(status_code=400, detail=e.to_dict())

    if isinstance(e, PipelineCancelled):
        return HTTPException(status_code=CLIENT_CLOSED_REQUEST, detail=e.to_dict())

    if isinstance(e, GeminiRateLimitError):
        # Return 429 (NOT 502), and include Retry-After when we have it.
        detail = {**e.to_dict(), "retry_after_seconds": e.retry_after_seconds}
        headers = {}
        if e.retry_after_seconds is not None:
            headers["Retry-After"] = str(int(e.retry_after_seconds))
        return HTTPException(status_code=429, detail=detail, headers=headers)

    if isinstance(e, UpstreamError):
        return HTTPException(status_code=502, detail={**e.to_dict(), "status_code": e.status_code})

    return HTTPException(status_code=422, detail=e.to_dict())
