import math
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        return {"LOW": 0, "MEDIUM": 1, "HIGH": 2}[self.value]


def bucket_confidence(
    value: Any,
    high_min: float = 0.85,
    medium_min: float = 0.60,
    default: Confidence = Confidence.LOW,
) -> Confidence:
    """
    Map whatever the model said into a tier.
      "high" / "Medium"      => by name
      0.9, 90, "90%"         => by threshold (values > 1 read as percentages)
      anything else          => default
    """
    if isinstance(value, Confidence):
        return value
    if isinstance(value, bool) or value is None:
        return default

    if isinstance(value, str):
        s = value.strip().upper()
        if s in Confidence.__members__:
            return Confidence[s]
        try:
            value = float(s.rstrip("%").strip())
        except ValueError:
            return default

    if isinstance(value, (int, float)):
        n = float(value)
        if math.isnan(n):
            return default
        if n > 1:
            n = n / 100.0
        if n >= high_min:
            return Confidence.HIGH
        if n >= medium_min:
            return Confidence.MEDIUM
        return Confidence.LOW

    return default


class CamelModel(BaseModel):
    """Records serialize with camelCase keys and accept either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


def clean_str(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    s = str(value).strip()
    if not s or s.lower() in ("null", "none", "n/a", "unknown"):
        return None
    return s


def clean_str_list(value: Any) -> List[str]:
    """Strings only, trimmed, de-duplicated, order kept."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    out: List[str] = []
    for item in value:
        s = clean_str(item)
        if s and s not in out:
            out.append(s)
    return out


def pick(obj: Dict[str, Any], *keys: str) -> Any:
    """First present key; models drift between camelCase and snake_case."""
    for k in keys:
        if k in obj and obj[k] is not None:
            return obj[k]
    return None
