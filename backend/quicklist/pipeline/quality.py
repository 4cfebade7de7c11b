"""
Image quality gate. Both checks are advisory and fail open: an unreadable
image is "not blurry" and a failed scoring call is a passing report.
"""

import asyncio
import io
import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from PIL import Image, UnidentifiedImageError

from quicklist.core import gemini
from quicklist.core.context import PipelineContext, gather_all
from quicklist.core.errors import PipelineCancelled
from quicklist.core.json_extract import extract_json
from quicklist.schemas.photo import Photo
from quicklist.schemas.quality import PhotoCheck, QualityReport

logger = logging.getLogger(__name__)

# Laplacian variance under this = not enough high-frequency detail
# (motion blur, missed focus). Same scale as 8-bit intensities.
DEFAULT_BLUR_THRESHOLD = 100.0

QUALITY_PROMPT = """You are checking a product photo before it goes on a resale listing.

Score each from 0 to 10: sharpness, lighting, background, composition, angle.
overallScore is 0-100.
List criticalIssues that would put buyers off (blur, glare, cut-off item, clutter).
Assess the item's condition from what is visible.

Return ONLY JSON:
{
  "sharpness": 0, "lighting": 0, "background": 0, "composition": 0, "angle": 0,
  "overallScore": 0,
  "criticalIssues": [],
  "condition": {
    "overall": "NEW | LIKE_NEW | EXCELLENT | GOOD | FAIR | POOR",
    "hasDamage": false,
    "wearLevel": "NONE | LIGHT | MODERATE | HEAVY",
    "defects": []
  }
}"""


@dataclass(frozen=True)
class BlurResult:
    is_blurry: bool
    variance: Optional[float]


def laplacian_variance(gray: np.ndarray) -> Optional[float]:
    """
    Variance of |4c - up - down - left - right| over interior pixels.
    None when there are no interior pixels.
    """
    if gray.ndim != 2 or gray.shape[0] < 3 or gray.shape[1] < 3:
        return None
    g = gray.astype(np.float64)
    center = g[1:-1, 1:-1]
    lap = np.abs(4.0 * center - g[:-2, 1:-1] - g[2:, 1:-1] - g[1:-1, :-2] - g[1:-1, 2:])
    return float(lap.var())


def _to_gray(image_bytes: bytes, max_dimension: Optional[int]) -> np.ndarray:
    with Image.open(io.BytesIO(image_bytes)) as img:
        img = img.convert("RGB")
        if max_dimension and max(img.size) > max_dimension:
            img.thumbnail((max_dimension, max_dimension))
        rgb = np.asarray(img, dtype=np.float64)
    # unweighted channel mean
    return rgb.mean(axis=2)


def detect_blur(
    image_bytes: bytes,
    threshold: float = DEFAULT_BLUR_THRESHOLD,
    max_dimension: Optional[int] = 1024,
) -> BlurResult:
    try:
        gray = _to_gray(image_bytes, max_dimension)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        logger.debug("blur detection skipped: %s", e)
        return BlurResult(is_blurry=False, variance=None)

    variance = laplacian_variance(gray)
    if variance is None:
        return BlurResult(is_blurry=False, variance=None)
    return BlurResult(is_blurry=variance < threshold, variance=round(variance, 2))


def is_blurry(image_bytes: bytes, threshold: float = DEFAULT_BLUR_THRESHOLD) -> bool:
    return detect_blur(image_bytes, threshold).is_blurry


async def score_quality(photo: Photo, ctx: PipelineContext) -> QualityReport:
    s = ctx.settings
    if not photo.usable:
        return QualityReport.passing_default(s.QUALITY_DEFAULT_SCORE)

    try:
        text = await ctx.call(
            gemini.generate(ctx, [QUALITY_PROMPT, photo], gemini.EXTRACTION_CONFIG),
            timeout=s.MODEL_TIMEOUT_SECONDS,
        )
        obj = extract_json(text)
        if obj is None:
            logger.warning("[%s] quality scoring returned no JSON", ctx.request_id)
        return QualityReport.from_model_output(obj, s.QUALITY_DEFAULT_SCORE)
    except PipelineCancelled:
        raise
    except Exception as e:
        logger.warning("[%s] quality scoring failed: %s", ctx.request_id, e)
        return QualityReport.passing_default(s.QUALITY_DEFAULT_SCORE)


async def check_photo(photo: Photo, ctx: PipelineContext) -> PhotoCheck:
    s = ctx.settings
    blur, quality = await gather_all(
        asyncio.to_thread(detect_blur, photo.data, s.BLUR_VARIANCE_THRESHOLD, s.BLUR_MAX_DIMENSION),
        score_quality(photo, ctx),
    )
    return PhotoCheck(
        name=photo.name,
        is_blurry=blur.is_blurry,
        blur_variance=blur.variance,
        quality=quality,
        needs_retake=blur.is_blurry or quality.overall_score < s.QUALITY_WARNING_SCORE,
    )
