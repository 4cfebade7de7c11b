from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from quicklist.schemas.common import (
    CamelModel,
    Confidence,
    bucket_confidence,
    clean_str,
    clean_str_list,
    pick,
)
from quicklist.schemas.evidence import TagEvidence, VisualEvidence
from quicklist.schemas.pricing import PricingSnapshot
from quicklist.schemas.stock_image import StockImageResult


class Source(CamelModel):
    url: str
    title: str = ""


class ListingCandidate(CamelModel):
    title: str = ""
    brand: str = ""
    category: str = ""
    description: str = ""
    condition: str = ""
    price: str = ""        # e.g. "£24.99"
    rrp: str = ""          # original retail price, same format
    keywords: List[str] = Field(default_factory=list)
    item_specifics: Dict[str, str] = Field(default_factory=dict)
    sources: List[Source] = Field(default_factory=list)
    match_reason: Optional[str] = None
    confidence: Confidence = Confidence.LOW

    @classmethod
    def from_model_output(
        cls,
        obj: Optional[Dict[str, Any]],
        high_min: float = 0.85,
        medium_min: float = 0.60,
    ) -> Optional["ListingCandidate"]:
        """
        Validate one candidate dict from the fusion model. Returns None when
        there is nothing to call the item (no title and no brand).
        """
        if not isinstance(obj, dict):
            return None

        title = clean_str(pick(obj, "title", "name")) or ""
        brand = clean_str(pick(obj, "brand")) or ""
        if not title and not brand:
            return None

        specifics: Dict[str, str] = {}
        raw_specifics = pick(obj, "itemSpecifics", "item_specifics")
        if isinstance(raw_specifics, dict):
            for k, v in raw_specifics.items():
                key, val = clean_str(k), clean_str(v)
                if key and val:
                    specifics[key] = val

        sources: List[Source] = []
        raw_sources = pick(obj, "sources")
        if isinstance(raw_sources, list):
            for s in raw_sources:
                if isinstance(s, dict) and clean_str(s.get("url")):
                    sources.append(Source(url=clean_str(s.get("url")), title=clean_str(s.get("title")) or ""))
                elif isinstance(s, str) and s.startswith("http"):
                    sources.append(Source(url=s.strip()))

        return cls(
            title=title or brand,
            brand=brand,
            category=clean_str(pick(obj, "category")) or "",
            description=clean_str(pick(obj, "description")) or "",
            condition=clean_str(pick(obj, "condition")) or "",
            price=clean_str(pick(obj, "price")) or "",
            rrp=clean_str(pick(obj, "rrp", "RRP")) or "",
            keywords=clean_str_list(pick(obj, "keywords", "hashtags")),
            item_specifics=specifics,
            sources=sources,
            match_reason=clean_str(pick(obj, "matchReason", "match_reason")),
            confidence=bucket_confidence(pick(obj, "confidence"), high_min, medium_min),
        )


class Personality(str, Enum):
    STANDARD = "standard"
    EXPERT = "expert"
    PUNCHY = "punchy"
    LUXE = "luxe"
    STREETWEAR = "streetwear"
    DELBOY = "delboy"


class ListingHints(CamelModel):
    """Optional caller-supplied steering for the fusion stage."""

    hint: Optional[str] = None
    marketplace: str = "ebay"
    personality: Personality = Personality.STANDARD


class FusionState(str, Enum):
    AUTO_ACCEPT = "AUTO_ACCEPT"
    NEEDS_DISAMBIGUATION = "NEEDS_DISAMBIGUATION"


class FusionResult(CamelModel):
    candidates: List[ListingCandidate]   # best match first, never empty
    state: FusionState

    @property
    def best(self) -> ListingCandidate:
        return self.candidates[0]


class ListingAnalysis(CamelModel):
    request_id: str
    state: FusionState
    candidates: List[ListingCandidate]
    tag_evidence: TagEvidence
    visual_evidence: VisualEvidence
    # Only filled in when state is AUTO_ACCEPT
    pricing: Optional[PricingSnapshot] = None
    stock_image: Optional[StockImageResult] = None

    @property
    def requires_user_selection(self) -> bool:
        return self.state == FusionState.NEEDS_DISAMBIGUATION


class Enrichment(CamelModel):
    candidate: ListingCandidate
    pricing: PricingSnapshot
    stock_image: StockImageResult


class EnrichRequest(CamelModel):
    candidate: ListingCandidate
    model_code: Optional[str] = None
