"""
Listing fusion: photos + tag evidence + visual evidence => ranked candidates.

The model writes the listing; this module decides how far to trust it.
Confidence is always bucketed into a tier, cross-checked against the
evidence, and the top tier decides between auto-accept and asking the caller
to pick.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from quicklist.core import gemini
from quicklist.core.config import Settings
from quicklist.core.context import PipelineContext
from quicklist.core.errors import PipelineCancelled
from quicklist.core.json_extract import extract_json
from quicklist.core.marketplaces import Marketplace, clip_title, get_marketplace, map_condition
from quicklist.core.retailers import brand_slug
from quicklist.schemas.common import Confidence
from quicklist.schemas.evidence import TagEvidence, VisualEvidence
from quicklist.schemas.listing import (
    FusionResult,
    FusionState,
    ListingCandidate,
    ListingHints,
    Personality,
)
from quicklist.schemas.photo import Photo

logger = logging.getLogger(__name__)

FUSION_CONFIG = gemini.GenerationConfig(temperature=0.4, top_p=0.95, top_k=40, max_output_tokens=4096)

MAX_ALTERNATIVES = 3

PERSONALITY_TONES: Dict[Personality, str] = {
    Personality.STANDARD: "Clear, balanced descriptions that work well on any marketplace.",
    Personality.EXPERT: "Professional, fact-focused copy for serious buyers.",
    Personality.PUNCHY: "Energetic, compelling copy that drives quick sales.",
    Personality.LUXE: "Elegant, refined language for premium and designer items.",
    Personality.STREETWEAR: "Hypebeast-style copy for sneakers and streetwear.",
    Personality.DELBOY: "Cheeky market-trader charm with a wink and a nudge.",
}

LISTING_SHAPE = """{
  "title": "",
  "brand": "",
  "category": "",
  "description": "",
  "condition": "New | Like New | Excellent | Very Good | Good | Fair | Poor",
  "rrp": "",
  "price": "",
  "keywords": [],
  "itemSpecifics": {},
  "sources": [{"url": "", "title": ""}],
  "matchReason": "",
  "confidence": "HIGH | MEDIUM | LOW",
  "alternatives": [ same fields as above, best first, at most 3 ]
}"""


def _evidence_block(tags: TagEvidence, visual: VisualEvidence) -> str:
    lines: List[str] = []
    if tags.is_empty:
        lines.append("TAG EVIDENCE: none (no legible tags). Do not invent codes.")
    else:
        lines.append("TAG EVIDENCE (read from labels):")
        lines.append(json.dumps(tags.model_dump(by_alias=True), ensure_ascii=False))
    if visual.is_empty:
        lines.append("VISUAL EVIDENCE: none.")
    else:
        lines.append(f"VISUAL EVIDENCE (from design cues, {visual.confidence.value} confidence):")
        lines.append(json.dumps(visual.model_dump(by_alias=True, exclude={"confidence"}), ensure_ascii=False))
    return "\n".join(lines)


def build_prompt(
    tags: TagEvidence,
    visual: VisualEvidence,
    hints: ListingHints,
    marketplace: Marketplace,
    currency: str = "£",
) -> str:
    tone = PERSONALITY_TONES.get(hints.personality, PERSONALITY_TONES[Personality.STANDARD])
    hint_line = f"Seller's note: {hints.hint.strip()}\n" if hints.hint and hints.hint.strip() else ""

    return f"""You are an expert reseller writing a {marketplace.name} listing from these photos.

{_evidence_block(tags, visual)}

The evidence sources are independent and may disagree. Weigh them against the photos;
no single source is authoritative. If the evidence is missing, identify the item from the photos alone.
{hint_line}
Marketplace style: {marketplace.style}
Tone: {tone}

Requirements:
- title: keyword-rich, at most {marketplace.title_limit} characters
- description: 3-5 honest sentences, mention any flaws you can see
- rrp and price in {currency} (e.g. "{currency}24.99"); price should be competitive for the condition
- keywords: 10 search terms
- sources: 2-3 real URLs of similar items for price checks
- matchReason: one sentence on which evidence the identification rests on
- confidence: HIGH only when the exact product is certain; otherwise MEDIUM or LOW and
  list the other likely products under "alternatives", best first

Return ONLY JSON:
{LISTING_SHAPE}"""


def _fallback_candidate(tags: TagEvidence, visual: VisualEvidence) -> ListingCandidate:
    """
    Degrade path when the listing model fails: name the item from whatever
    evidence we have.
    """
    brand = tags.brand or visual.visual_brand or ""
    name_parts = [brand, visual.product_line or "", visual.model_name or ""]
    title = " ".join(p for p in name_parts if p).strip()
    if tags.model_codes:
        title = f"{title} {tags.model_codes[0]}".strip()
    if not title:
        title = "Item"

    specifics: Dict[str, str] = {}
    if brand:
        specifics["Brand"] = brand
    if tags.size:
        specifics["Size"] = tags.size

    return ListingCandidate(
        title=title,
        brand=brand,
        keywords=[k for k in (brand, visual.product_line, visual.model_name) if k],
        item_specifics=specifics,
        match_reason="Built from extracted evidence; the listing model was unavailable.",
        confidence=Confidence.LOW,
    )


def _cap_against_evidence(candidate: ListingCandidate, tags: TagEvidence, visual: VisualEvidence) -> ListingCandidate:
    """
    When tag and visual brands agree with each other but not with the
    candidate, the candidate cannot be HIGH.
    """
    tag_brand, visual_brand = brand_slug(tags.brand), brand_slug(visual.visual_brand)
    cand_brand = brand_slug(candidate.brand)
    if not (tag_brand and visual_brand and cand_brand):
        return candidate
    if tag_brand == visual_brand and cand_brand != tag_brand and candidate.confidence == Confidence.HIGH:
        logger.info("capping %r to MEDIUM: evidence says %s", candidate.title, tags.brand)
        return candidate.model_copy(update={"confidence": Confidence.MEDIUM})
    return candidate


def _shape_for_marketplace(candidate: ListingCandidate, tags: TagEvidence, marketplace: Marketplace) -> ListingCandidate:
    specifics = dict(candidate.item_specifics)
    if candidate.brand:
        specifics.setdefault("Brand", candidate.brand)
    if tags.size:
        specifics.setdefault("Size", tags.size)
    if candidate.condition:
        specifics["Condition"] = map_condition(marketplace, candidate.condition)
    if tags.model_codes:
        specifics.setdefault("Model", tags.model_codes[0])
    return candidate.model_copy(
        update={
            "title": clip_title(candidate.title, marketplace.title_limit),
            "item_specifics": specifics,
        }
    )


def decide_state(candidates: Sequence[ListingCandidate], settings: Settings) -> FusionState:
    """
    AUTO_ACCEPT only when the best candidate reaches AUTO_ACCEPT_TIER.
    """
    try:
        required = Confidence(settings.AUTO_ACCEPT_TIER.upper())
    except ValueError:
        required = Confidence.HIGH
    if candidates and candidates[0].confidence.rank >= required.rank:
        return FusionState.AUTO_ACCEPT
    return FusionState.NEEDS_DISAMBIGUATION


def _cap_alternatives(candidates: List[ListingCandidate]) -> List[ListingCandidate]:
    """
    No alternative outranks the best match at index 0.
    """
    if not candidates:
        return candidates
    top = candidates[0].confidence
    return [candidates[0]] + [
        c.model_copy(update={"confidence": top}) if c.confidence.rank > top.rank else c for c in candidates[1:]
    ]


def candidates_from_output(obj: Optional[Dict[str, Any]], settings: Settings) -> List[ListingCandidate]:
    """
    Primary listing first, then its alternatives, as validated candidates.
    """
    if not isinstance(obj, dict):
        return []
    hi, med = settings.CONFIDENCE_HIGH_MIN, settings.CONFIDENCE_MEDIUM_MIN

    # Some responses nest the main listing under "listing"
    primary_obj = obj.get("listing") if isinstance(obj.get("listing"), dict) else obj
    out: List[ListingCandidate] = []
    primary = ListingCandidate.from_model_output(primary_obj, hi, med)
    if primary:
        out.append(primary)

    alternatives = primary_obj.get("alternatives") or obj.get("alternatives") or []
    if isinstance(alternatives, list):
        for alt in alternatives[:MAX_ALTERNATIVES]:
            c = ListingCandidate.from_model_output(alt, hi, med)
            if c is not None:
                out.append(c)
    return _cap_alternatives(out) if primary else out


async def fuse_listing(
    photos: Sequence[Photo],
    tags: TagEvidence,
    visual: VisualEvidence,
    hints: Optional[ListingHints],
    ctx: PipelineContext,
) -> FusionResult:
    """
    Always returns at least one candidate: model failure degrades to a
    LOW-confidence candidate built from the evidence.
    """
    hints = hints or ListingHints()
    s = ctx.settings
    marketplace = get_marketplace(hints.marketplace or s.DEFAULT_MARKETPLACE)
    prompt = build_prompt(tags, visual, hints, marketplace, s.CURRENCY_SYMBOL)

    candidates: List[ListingCandidate] = []
    try:
        text = await ctx.call(
            gemini.generate(ctx, [prompt, *[p for p in photos if p.usable]], FUSION_CONFIG),
            timeout=s.MODEL_TIMEOUT_SECONDS,
        )
        candidates = candidates_from_output(extract_json(text), s)
        if not candidates:
            logger.warning("[%s] fusion returned no usable listing", ctx.request_id)
    except PipelineCancelled:
        raise
    except Exception as e:
        logger.warning("[%s] fusion failed: %s", ctx.request_id, e)

    if not candidates:
        candidates = [_fallback_candidate(tags, visual)]

    candidates = _cap_alternatives([_cap_against_evidence(c, tags, visual) for c in candidates])
    candidates = [_shape_for_marketplace(c, tags, marketplace) for c in candidates]
    state = decide_state(candidates, s)
    logger.info(
        "[%s] fusion: %d candidate(s), top=%r (%s) => %s",
        ctx.request_id,
        len(candidates),
        candidates[0].title,
        candidates[0].confidence.value,
        state.value,
    )
    return FusionResult(candidates=candidates, state=state)
