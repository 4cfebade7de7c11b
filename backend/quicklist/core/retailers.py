from __future__ import annotations

import re
from enum import IntEnum
from typing import Optional
from urllib.parse import urlparse

# Retailers we trust to carry official product imagery
AUTHORIZED_RETAILERS: list[str] = [
    "johnlewis",
    "selfridges",
    "harrods",
    "asos",
    "next.co.uk",
    "marksandspencer",
    "jdsports",
    "footlocker",
    "endclothing",
    "size.co.uk",
    "offspring",
    "schuh",
    "zalando",
    "farfetch",
    "mrporter",
    "netaporter",
    "net-a-porter",
    "matchesfashion",
    "ssense",
    "nordstrom",
    "flannels",
    "houseoffraser",
    "argos",
    "currys",
    "amazon",
    "walmart",
    "target",
    "best buy",
    "bestbuy",
]

# Registrable labels of CDNs that serve a retailer's images under another name
_CDN_ALIASES: dict[str, str] = {
    "media-amazon": "amazon",
    "ssl-images-amazon": "amazon",
    "ssensemedia": "ssense",
    "farfetch-contents": "farfetch",
}

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".webp", ".gif", ".avif")


class SourceTrust(IntEnum):
    """Larger = more authoritative."""

    GENERIC = 0
    RETAILER = 1
    MANUFACTURER = 2


def host_of(url: Optional[str]) -> str:
    if not url:
        return ""
    try:
        host = urlparse(url.strip()).hostname or ""
    except ValueError:
        return ""
    return host.lower().removeprefix("www.")


def brand_slug(brand: Optional[str]) -> str:
    """
    "Ralph Lauren" => "ralphlauren", "Levi's" => "levis", "Dr. Martens" => "drmartens"
    """
    if not brand:
        return ""
    return re.sub(r"[^a-z0-9]", "", brand.lower())


def is_direct_image_url(url: Optional[str]) -> bool:
    """
    True when the URL path (not the query string) ends in an image extension.
    """
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    return parsed.path.lower().endswith(IMAGE_EXTENSIONS)


def registrable_domain(host: str) -> str:
    """
    "images.nike.com" => "nike.com", "www.johnlewis.co.uk" => "johnlewis.co.uk"
    """
    parts = host.split(".")
    if len(parts) >= 3 and parts[-2] in ("co", "com", "org", "net") and len(parts[-1]) == 2:
        return ".".join(parts[-3:])
    return ".".join(parts[-2:])


def is_authorized_retailer(host: str) -> bool:
    """
    The registrable domain's name label must be a retailer name
    ("johnlewis.com", "amazon.co.uk"); a retailer name merely appearing in
    the host ("targetedads.example", "x.s3.amazonaws.com") does not count.
    """
    if not host:
        return False
    domain = registrable_domain(host)
    label = domain.split(".")[0]
    label = _CDN_ALIASES.get(label, label).replace("-", "")
    for r in AUTHORIZED_RETAILERS:
        if "." in r:
            if domain == r:
                return True
        elif label == r.replace(" ", "").replace("-", ""):
            return True
    return False


def source_trust(url: Optional[str], brand: Optional[str]) -> SourceTrust:
    """
    Manufacturer's own domain > authorized retailer > anything else.
    Manufacturer = the brand slug is one of the host labels ("nike.com",
    "images.ralphlauren.co.uk", "levi.com" for Levi's).
    """
    host = host_of(url)
    if not host:
        return SourceTrust.GENERIC

    slug = brand_slug(brand)
    if len(slug) >= 2:
        labels = {label.replace("-", "") for label in host.split(".")}
        # strip a single trailing "s" ("Levi's" => "levi")
        singular = slug[:-1] if slug.endswith("s") else slug
        if slug in labels or singular in labels:
            return SourceTrust.MANUFACTURER
    if is_authorized_retailer(host):
        return SourceTrust.RETAILER
    return SourceTrust.GENERIC


def source_name(url: Optional[str]) -> Optional[str]:
    """
    "https://images.nike.com/x.png" => "nike.com"
    """
    host = host_of(url)
    if not host:
        return None
    return registrable_domain(host)
