from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from quicklist.api.deps import http_error, request_context
from quicklist.core.config import Settings, get_settings
from quicklist.core.errors import QuickListError
from quicklist.pipeline.pricing import analyze_pricing
from quicklist.schemas.pricing import PricingSnapshot

router = APIRouter(prefix="/v1", tags=["pricing"])


@router.get("/pricing", response_model=PricingSnapshot, response_model_by_alias=True)
async def pricing(
    request: Request,
    q: str,
    brand: Optional[str] = None,
    settings: Settings = Depends(get_settings),
):
    """
    Sold vs. active eBay comparables for a title.
    soldCount=0 means not enough data; the recommendations say so.
    """
    if not q.strip():
        raise HTTPException(status_code=422, detail="q must not be empty")

    try:
        async with request_context(request, settings) as ctx:
            return await analyze_pricing(brand, q, ctx)
    except QuickListError as e:
        raise http_error(e)
