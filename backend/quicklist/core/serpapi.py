from typing import Any, Dict

import httpx

from quicklist.core.context import PipelineContext
from quicklist.core.errors import SerpApiError
from quicklist.core.retry import RETRYABLE_STATUS, RetryableStatus, retry_async

SERPAPI_BASE = "https://serpapi.com/search.json"

# eBay result ordering (_sop)
SORT_ENDED_RECENTLY = 13
SORT_PRICE_LOWEST = 15

# eBay only accepts a few page sizes (_ipg)
PAGE_SIZES = (25, 50, 100, 200)


def _get_serpapi_key(ctx: PipelineContext) -> str:
    key = (ctx.settings.SERPAPI_API_KEY or "").strip()
    if not key:
        raise SerpApiError("SERPAPI_API_KEY is not set")
    return key


def _page_size(n: int) -> int:
    return next((s for s in PAGE_SIZES if s >= int(n)), PAGE_SIZES[-1])


async def _search(ctx: PipelineContext, params: Dict[str, Any]) -> Dict[str, Any]:
    s = ctx.settings
    params = {**params, "api_key": _get_serpapi_key(ctx)}

    async def attempt() -> httpx.Response:
        r = await ctx.client.get(SERPAPI_BASE, params=params, timeout=s.SEARCH_TIMEOUT_SECONDS)
        if r.status_code in RETRYABLE_STATUS:
            raise RetryableStatus(r)
        return r

    try:
        r = await retry_async(
            attempt,
            attempts=s.RETRY_MAX_ATTEMPTS,
            base_delay=s.RETRY_BASE_DELAY_SECONDS,
            max_delay=s.RETRY_MAX_BACKOFF_SECONDS,
        )
    except RetryableStatus as e:
        r = e.response

    if r.status_code >= 400:
        raise SerpApiError(f"SerpAPI request failed: {r.status_code}", status_code=r.status_code, body=r.text[:2000])

    try:
        data = r.json()
    except ValueError:
        raise SerpApiError("SerpAPI returned a non-JSON body", body=r.text[:2000])

    # Normalize: if the engine returns an error payload, surface it clearly
    if isinstance(data, dict) and data.get("error"):
        # "hasn't returned any results" is an empty sample, not a failure
        if "any results" in str(data.get("error")).lower():
            return {}
        raise SerpApiError(f"SerpAPI error: {data.get('error')}")

    return data if isinstance(data, dict) else {}


async def ebay_search(
    ctx: PipelineContext,
    q: str,
    *,
    sold: bool,
    buy_it_now: bool = True,
    sort: int = SORT_PRICE_LOWEST,
    page_size: int = 50,
) -> Dict[str, Any]:
    """
    Calls SerpAPI's eBay engine and returns the raw JSON response.

    sold=True restricts to completed listings that actually sold;
    buy_it_now restricts to fixed-price listings.
    """
    params: Dict[str, Any] = {
        "engine": "ebay",
        "_nkw": q,
        "ebay_domain": ctx.settings.EBAY_DOMAIN,
        "_sop": sort,
        "_ipg": _page_size(page_size),
    }
    if sold:
        params["LH_Sold"] = "1"
        params["LH_Complete"] = "1"
    if buy_it_now:
        params["LH_BIN"] = "1"

    return await _search(ctx, params)


async def image_search(ctx: PipelineContext, q: str, gl: str = "uk", hl: str = "en") -> Dict[str, Any]:
    """
    Calls SerpAPI Google Images and returns the raw JSON response.
    """
    params: Dict[str, Any] = {
        "engine": "google_images",
        "q": q,
        "gl": gl,
        "hl": hl,
    }
    return await _search(ctx, params)
