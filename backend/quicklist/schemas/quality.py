import math
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import Field

from quicklist.schemas.common import CamelModel, clean_str, clean_str_list, pick

SUB_SCORES = ("sharpness", "lighting", "background", "composition", "angle")


class ConditionTier(str, Enum):
    NEW = "NEW"
    LIKE_NEW = "LIKE_NEW"
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    UNKNOWN = "UNKNOWN"


class WearLevel(str, Enum):
    NONE = "NONE"
    LIGHT = "LIGHT"
    MODERATE = "MODERATE"
    HEAVY = "HEAVY"
    UNKNOWN = "UNKNOWN"


def _enum_value(enum_cls, value: Any, default):
    s = clean_str(value)
    if not s:
        return default
    key = s.upper().replace("-", "_").replace(" ", "_")
    try:
        return enum_cls[key]
    except KeyError:
        return default


def _score(value: Any, lo: int, hi: int) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(n):
        return None
    return int(max(lo, min(hi, round(n))))


class ConditionAssessment(CamelModel):
    overall: ConditionTier = ConditionTier.UNKNOWN
    has_damage: bool = False
    wear_level: WearLevel = WearLevel.UNKNOWN
    defects: List[str] = Field(default_factory=list)


class QualityReport(CamelModel):
    sharpness: int = Field(default=7, ge=0, le=10)
    lighting: int = Field(default=7, ge=0, le=10)
    background: int = Field(default=7, ge=0, le=10)
    composition: int = Field(default=7, ge=0, le=10)
    angle: int = Field(default=7, ge=0, le=10)
    overall_score: int = Field(default=70, ge=0, le=100)
    critical_issues: List[str] = Field(default_factory=list)
    condition: ConditionAssessment = Field(default_factory=ConditionAssessment)
    # False when the report is a fail-open default rather than a real score
    analyzed: bool = True

    @classmethod
    def passing_default(cls, score: int = 70) -> "QualityReport":
        sub = max(0, min(10, round(score / 10)))
        return cls(
            sharpness=sub,
            lighting=sub,
            background=sub,
            composition=sub,
            angle=sub,
            overall_score=max(0, min(100, score)),
            analyzed=False,
        )

    @classmethod
    def from_model_output(cls, obj: Optional[Dict[str, Any]], default_score: int = 70) -> "QualityReport":
        """
        Missing sub-scores fall back to the default; overall is
        round(mean(sub-scores) * 10) when the model did not give one.
        """
        if not isinstance(obj, dict):
            return cls.passing_default(default_score)

        default_sub = max(0, min(10, round(default_score / 10)))
        scores = obj.get("scores") if isinstance(obj.get("scores"), dict) else obj
        subs: Dict[str, int] = {}
        for name in SUB_SCORES:
            v = _score(scores.get(name), 0, 10)
            subs[name] = default_sub if v is None else v

        overall = _score(pick(obj, "overallScore", "overall_score", "score"), 0, 100)
        if overall is None:
            overall = int(round(sum(subs.values()) / len(subs) * 10))

        raw_condition = pick(obj, "condition", "damage", "conditionAssessment") or {}
        if not isinstance(raw_condition, dict):
            raw_condition = {"overall": raw_condition}
        defects = clean_str_list(pick(raw_condition, "defects", "damages"))
        has_damage = pick(raw_condition, "hasDamage", "has_damage", "damageFound")
        condition = ConditionAssessment(
            overall=_enum_value(ConditionTier, pick(raw_condition, "overall", "overallCondition"), ConditionTier.UNKNOWN),
            has_damage=bool(has_damage) if isinstance(has_damage, bool) else bool(defects),
            wear_level=_enum_value(WearLevel, pick(raw_condition, "wearLevel", "wear_level"), WearLevel.UNKNOWN),
            defects=defects,
        )

        return cls(
            overall_score=overall,
            critical_issues=clean_str_list(pick(obj, "criticalIssues", "critical_issues", "issues")),
            condition=condition,
            **subs,
        )


class PhotoCheck(CamelModel):
    """Advisory per-photo result; safe to ignore."""

    name: Optional[str] = None
    is_blurry: bool = False
    blur_variance: Optional[float] = None
    quality: QualityReport = Field(default_factory=QualityReport)
    needs_retake: bool = False
