from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from quicklist.api.deps import http_error, read_photos, request_context
from quicklist.core.config import Settings, get_settings
from quicklist.core.errors import QuickListError
from quicklist.pipeline.orchestrator import analyze_listing, enrich_candidate
from quicklist.schemas.listing import (
    EnrichRequest,
    Enrichment,
    ListingAnalysis,
    ListingHints,
    Personality,
)

router = APIRouter(prefix="/v1/listings", tags=["listings"])


@router.post("/analyze", response_model=ListingAnalysis, response_model_by_alias=True)
async def analyze(
    request: Request,
    photos: List[UploadFile] = File(...),
    hint: Optional[str] = Form(None),
    marketplace: str = Form("ebay"),
    personality: Personality = Form(Personality.STANDARD),
    settings: Settings = Depends(get_settings),
):
    """
    Photos in, ranked listing candidates out.

    state=AUTO_ACCEPT comes back with pricing and stockImage filled in.
    state=NEEDS_DISAMBIGUATION returns the candidates only; the client shows
    them and posts the chosen one to /v1/listings/enrich.
    """
    uploaded = await read_photos(photos)
    hints = ListingHints(hint=hint, marketplace=marketplace, personality=personality)

    try:
        async with request_context(request, settings) as ctx:
            return await analyze_listing(uploaded, hints, ctx)
    except QuickListError as e:
        raise http_error(e)


@router.post("/enrich", response_model=Enrichment, response_model_by_alias=True)
async def enrich(
    body: EnrichRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
):
    """
    Pricing + stock image for the candidate the user picked.
    """
    if not (body.candidate.title or body.candidate.brand):
        raise HTTPException(status_code=422, detail="candidate needs a title or a brand")

    try:
        async with request_context(request, settings) as ctx:
            return await enrich_candidate(body.candidate, ctx, model_code=body.model_code)
    except QuickListError as e:
        raise http_error(e)
