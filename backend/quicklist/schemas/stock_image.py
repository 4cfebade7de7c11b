from typing import List, Optional

from pydantic import Field, field_validator

from quicklist.core.retailers import is_direct_image_url
from quicklist.schemas.common import CamelModel, Confidence


class StockImageResult(CamelModel):
    stock_image_url: Optional[str] = None     # direct image link only
    source: Optional[str] = None
    confidence: Confidence = Confidence.LOW
    alternatives: List[str] = Field(default_factory=list, max_length=2)
    page_url: Optional[str] = None            # fallback, never the primary image

    @field_validator("stock_image_url")
    @classmethod
    def _must_be_image(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_direct_image_url(v):
            raise ValueError("stock_image_url must be a direct image link")
        return v

    @classmethod
    def empty(cls, page_url: Optional[str] = None) -> "StockImageResult":
        return cls(page_url=page_url)
