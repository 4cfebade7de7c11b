"""
Pipeline control flow:

    photos -> (tag reader || visual recognizer) -> fusion
           -> AUTO_ACCEPT:           (pricing || stock image) -> done
           -> NEEDS_DISAMBIGUATION:  candidates back to the caller, who
                                     calls enrich_candidate() with a pick

Every stage swallows its own upstream failures into a default record, so the
only exceptions leaving here are NoUsablePhotos and PipelineCancelled.
"""

import logging
from typing import Optional, Sequence

from quicklist.core.context import PipelineContext, gather_all
from quicklist.core.errors import NoUsablePhotos
from quicklist.pipeline.fusion import fuse_listing
from quicklist.pipeline.pricing import analyze_pricing
from quicklist.pipeline.stock_image import resolve_stock_image
from quicklist.pipeline.tag_reader import read_tags
from quicklist.pipeline.visual_recognizer import recognize_visual
from quicklist.schemas.evidence import TagEvidence
from quicklist.schemas.listing import (
    Enrichment,
    FusionState,
    ListingAnalysis,
    ListingCandidate,
    ListingHints,
)
from quicklist.schemas.photo import Photo

logger = logging.getLogger(__name__)


def _model_code(candidate: ListingCandidate, tags: Optional[TagEvidence]) -> Optional[str]:
    if tags and tags.model_codes:
        return tags.model_codes[0]
    for key in ("Model", "MPN", "Style Code"):
        if candidate.item_specifics.get(key):
            return candidate.item_specifics[key]
    return None


async def enrich_candidate(
    candidate: ListingCandidate,
    ctx: PipelineContext,
    model_code: Optional[str] = None,
) -> Enrichment:
    """
    Pricing and stock image for a fixed candidate, run concurrently. Neither
    stage raises, so one failing never hides the other's result.
    """
    title = candidate.title or candidate.category
    pricing, stock_image = await gather_all(
        analyze_pricing(candidate.brand, title, ctx),
        resolve_stock_image(candidate.brand, title, ctx, model_code=model_code),
    )
    ctx.raise_if_cancelled()
    return Enrichment(candidate=candidate, pricing=pricing, stock_image=stock_image)


async def analyze_listing(
    photos: Sequence[Photo],
    hints: Optional[ListingHints],
    ctx: PipelineContext,
) -> ListingAnalysis:
    usable = [p for p in photos if p.usable]
    if not usable:
        raise NoUsablePhotos()

    logger.info("[%s] analyzing %d photo(s)", ctx.request_id, len(usable))

    # Independent evidence, joined before fusion
    tags, visual = await gather_all(
        read_tags(usable, ctx),
        recognize_visual(usable, ctx),
    )
    ctx.raise_if_cancelled()

    fusion = await fuse_listing(usable, tags, visual, hints, ctx)
    ctx.raise_if_cancelled()

    analysis = ListingAnalysis(
        request_id=ctx.request_id,
        state=fusion.state,
        candidates=fusion.candidates,
        tag_evidence=tags,
        visual_evidence=visual,
    )
    if fusion.state != FusionState.AUTO_ACCEPT:
        return analysis

    enrichment = await enrich_candidate(fusion.best, ctx, model_code=_model_code(fusion.best, tags))
    return analysis.model_copy(update={"pricing": enrichment.pricing, "stock_image": enrichment.stock_image})
