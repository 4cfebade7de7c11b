from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field

from quicklist.schemas.common import (
    CamelModel,
    Confidence,
    bucket_confidence,
    clean_str,
    clean_str_list,
    pick,
)


class TagEvidence(CamelModel):
    """What the Code/Tag Reader could read off labels and tags."""

    brand: Optional[str] = None
    model_codes: List[str] = Field(default_factory=list)
    style_codes: List[str] = Field(default_factory=list)
    sku_numbers: List[str] = Field(default_factory=list)
    size: Optional[str] = None
    all_text: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    @classmethod
    def empty(cls) -> "TagEvidence":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not (self.brand or self.model_codes or self.style_codes or self.sku_numbers or self.size or self.all_text)

    @property
    def codes(self) -> List[str]:
        out: List[str] = []
        for c in self.model_codes + self.style_codes + self.sku_numbers:
            if c not in out:
                out.append(c)
        return out

    @classmethod
    def from_model_output(cls, obj: Optional[Dict[str, Any]]) -> "TagEvidence":
        if not isinstance(obj, dict):
            return cls.empty()
        return cls(
            brand=clean_str(pick(obj, "brand")),
            model_codes=clean_str_list(pick(obj, "modelCodes", "model_codes")),
            style_codes=clean_str_list(pick(obj, "styleCodes", "style_codes")),
            sku_numbers=clean_str_list(pick(obj, "skuNumbers", "sku_numbers", "skus")),
            size=clean_str(pick(obj, "size")),
            all_text=clean_str_list(pick(obj, "allText", "all_text")),
        )


class VisualEvidence(CamelModel):
    """Brand/product-line guess from visual cues only."""

    visual_brand: Optional[str] = None
    product_line: Optional[str] = None
    model_name: Optional[str] = None
    visual_features: List[str] = Field(default_factory=list)
    logo_matches: List[str] = Field(default_factory=list)
    design_elements: List[str] = Field(default_factory=list)
    confidence: Confidence = Confidence.LOW

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    @classmethod
    def empty(cls) -> "VisualEvidence":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not (self.visual_brand or self.product_line or self.model_name or self.visual_features or self.logo_matches or self.design_elements)

    @classmethod
    def from_model_output(
        cls,
        obj: Optional[Dict[str, Any]],
        high_min: float = 0.85,
        medium_min: float = 0.60,
    ) -> "VisualEvidence":
        if not isinstance(obj, dict):
            return cls.empty()
        return cls(
            visual_brand=clean_str(pick(obj, "visualBrand", "visual_brand", "brand")),
            product_line=clean_str(pick(obj, "productLine", "product_line")),
            model_name=clean_str(pick(obj, "modelName", "model_name")),
            visual_features=clean_str_list(pick(obj, "visualFeatures", "visual_features")),
            logo_matches=clean_str_list(pick(obj, "logoMatches", "logo_matches")),
            design_elements=clean_str_list(pick(obj, "designElements", "design_elements")),
            confidence=bucket_confidence(pick(obj, "confidence"), high_min, medium_min),
        )
