from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class Marketplace:
    key: str
    name: str
    title_limit: int
    style: str
    condition_labels: Dict[str, str] = field(default_factory=dict)


EBAY_CONDITIONS = {
    "New": "New with tags",
    "Like New": "New without tags",
    "Excellent": "Pre-owned",
    "Very Good": "Pre-owned",
    "Good": "Pre-owned",
    "Fair": "Pre-owned",
    "Poor": "For parts or not working",
}

MARKETPLACES: Dict[str, Marketplace] = {
    "ebay": Marketplace(
        "ebay", "eBay", 80,
        "Professional and detailed; keyword-rich title, item specifics matter.",
        EBAY_CONDITIONS,
    ),
    "vinted": Marketplace(
        "vinted", "Vinted", 100,
        "Friendly; state the size clearly and mention savings against RRP.",
    ),
    "depop": Marketplace(
        "depop", "Depop", 100,
        "Casual and trend-aware; end the description with hashtags.",
    ),
    "facebook": Marketplace(
        "facebook", "Facebook Marketplace", 100,
        "Local and straightforward; short sections, collection-friendly.",
    ),
}


def get_marketplace(key: Optional[str]) -> Marketplace:
    k = (key or "").strip().lower().replace(" ", "")
    if k.startswith("facebook"):
        k = "facebook"
    return MARKETPLACES.get(k, MARKETPLACES["ebay"])


def clip_title(title: str, limit: int) -> str:
    """
    Cut to the marketplace limit on a word boundary where possible.
    """
    title = " ".join((title or "").split())
    if len(title) <= limit:
        return title
    cut = title[:limit]
    space = cut.rfind(" ")
    if space >= limit * 0.6:
        cut = cut[:space]
    return cut.rstrip(" -,/")


def map_condition(marketplace: Marketplace, condition: str) -> str:
    if not marketplace.condition_labels:
        return condition
    for label, mapped in marketplace.condition_labels.items():
        if condition.strip().lower() == label.lower():
            return mapped
    return condition
