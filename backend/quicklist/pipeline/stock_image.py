import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from quicklist.core import gemini, serpapi
from quicklist.core.context import PipelineContext
from quicklist.core.errors import PipelineCancelled
from quicklist.core.json_extract import extract_json
from quicklist.core.retailers import (
    SourceTrust,
    is_direct_image_url,
    source_name,
    source_trust,
)
from quicklist.schemas.common import Confidence
from quicklist.schemas.stock_image import StockImageResult

logger = logging.getLogger(__name__)

MAX_ALTERNATIVES = 2

STOCK_CONFIG = gemini.GenerationConfig(temperature=0.1, top_p=0.8, top_k=20, max_output_tokens=1024)

TRUST_CONFIDENCE = {
    SourceTrust.MANUFACTURER: Confidence.HIGH,
    SourceTrust.RETAILER: Confidence.MEDIUM,
    SourceTrust.GENERIC: Confidence.LOW,
}


@dataclass(frozen=True)
class _Found:
    url: str
    trust: SourceTrust
    order: int


def build_query(brand: Optional[str], title: str, model_code: Optional[str] = None) -> str:
    title = " ".join((title or "").split())
    parts: List[str] = [title] if title else []
    brand = (brand or "").strip()
    if brand and brand.lower() not in title.lower():
        parts.insert(0, brand)
    code = (model_code or "").strip()
    if code and code.lower() not in title.lower():
        parts.append(code)
    return " ".join(parts)


def _prompt(query: str, brand: Optional[str]) -> str:
    return f"""Search the web for the official product photo of: {query}

Find a DIRECT image URL (the link must end in .jpg, .jpeg, .png or .webp) showing this exact product.
Prefer sources in this order:
1. {brand or "the manufacturer"}'s own website
2. an authorised retailer (e.g. John Lewis, Selfridges, END., JD Sports, ASOS)
3. any other reliable result
If you only find a product PAGE, put it in pageUrl, not stockImageUrl.

Return ONLY JSON:
{{"stockImageUrl": null, "source": null, "pageUrl": null, "alternatives": []}}"""


def rank_urls(urls: List[str], brand: Optional[str]) -> List[_Found]:
    """
    Direct image links only, most trusted first, then in the order given.
    """
    seen = set()
    found: List[_Found] = []
    for i, url in enumerate(urls):
        if not isinstance(url, str):
            continue
        url = url.strip()
        if url in seen or not is_direct_image_url(url):
            continue
        seen.add(url)
        found.append(_Found(url=url, trust=source_trust(url, brand), order=i))
    found.sort(key=lambda f: (-int(f.trust), f.order))
    return found


def result_from_urls(urls: List[str], brand: Optional[str], page_url: Optional[str] = None) -> StockImageResult:
    ranked = rank_urls(urls, brand)
    if not ranked:
        return StockImageResult.empty(page_url=page_url)

    best = ranked[0]
    return StockImageResult(
        stock_image_url=best.url,
        source=source_name(best.url),
        confidence=TRUST_CONFIDENCE[best.trust],
        alternatives=[f.url for f in ranked[1 : 1 + MAX_ALTERNATIVES]],
        page_url=page_url,
    )


def _urls_from_model(obj: Dict[str, Any]) -> List[str]:
    urls: List[str] = []
    for key in ("stockImageUrl", "stock_image_url", "imageUrl"):
        if isinstance(obj.get(key), str):
            urls.append(obj[key])
    alts = obj.get("alternatives") or []
    if isinstance(alts, list):
        urls.extend(a for a in alts if isinstance(a, str))
    return urls


def _page_url(obj: Dict[str, Any]) -> Optional[str]:
    for key in ("pageUrl", "page_url", "stockImageUrl"):
        v = obj.get(key)
        if isinstance(v, str) and v.startswith("http") and not is_direct_image_url(v):
            return v.strip()
    return None


async def _from_model(ctx: PipelineContext, query: str, brand: Optional[str]) -> Dict[str, Any]:
    try:
        text = await ctx.call(
            gemini.generate(ctx, [_prompt(query, brand)], STOCK_CONFIG, tools=[gemini.GOOGLE_SEARCH_TOOL]),
            timeout=ctx.settings.MODEL_TIMEOUT_SECONDS,
        )
    except PipelineCancelled:
        raise
    except Exception as e:
        logger.warning("[%s] stock image model search failed: %s", ctx.request_id, e)
        return {}
    return extract_json(text) or {}


async def _from_image_search(ctx: PipelineContext, query: str) -> List[str]:
    try:
        raw = await ctx.call(serpapi.image_search(ctx, query), timeout=ctx.settings.SEARCH_TIMEOUT_SECONDS)
    except PipelineCancelled:
        raise
    except Exception as e:
        logger.warning("[%s] stock image search failed: %s", ctx.request_id, e)
        return []
    urls: List[str] = []
    for r in raw.get("images_results") or []:
        if isinstance(r, dict) and isinstance(r.get("original"), str):
            urls.append(r["original"])
    return urls


async def resolve_stock_image(
    brand: Optional[str],
    title: str,
    ctx: PipelineContext,
    model_code: Optional[str] = None,
) -> StockImageResult:
    """
    Authoritative product image for an identified item. Confidence follows
    the source: manufacturer HIGH, authorised retailer MEDIUM, other LOW.
    Falls back to plain image search when the grounded model query yields no
    direct image. Never raises.
    """
    query = build_query(brand, title, model_code)
    if not query:
        return StockImageResult.empty()

    obj = await _from_model(ctx, query, brand)
    page_url = _page_url(obj)
    result = result_from_urls(_urls_from_model(obj), brand, page_url)

    if result.stock_image_url is None:
        result = result_from_urls(await _from_image_search(ctx, query), brand, page_url)

    logger.info(
        "[%s] stock image for %r: %s (%s)",
        ctx.request_id,
        query,
        result.stock_image_url,
        result.confidence.value,
    )
    return result
