import logging
from typing import Sequence

from quicklist.core import gemini
from quicklist.core.context import PipelineContext
from quicklist.core.errors import PipelineCancelled
from quicklist.core.json_extract import extract_json
from quicklist.schemas.evidence import VisualEvidence
from quicklist.schemas.photo import Photo

logger = logging.getLogger(__name__)

# Hero shots come first; later photos are usually tags and close-ups
MAX_VISUAL_PHOTOS = 2

VISUAL_CONFIG = gemini.GenerationConfig(temperature=0.2, top_p=0.8, top_k=32, max_output_tokens=1024)

VISUAL_PROMPT = """Identify this product from its VISUAL features only.

Ignore any readable text on tags or labels - another step reads those.
Use only: logos and emblems, fabric or material texture, silhouette and shape,
construction details (stitching, hardware, panels, soles), signature design elements.

Return ONLY JSON:
{
  "visualBrand": null,
  "productLine": null,
  "modelName": null,
  "visualFeatures": [],
  "logoMatches": [],
  "designElements": [],
  "confidence": "HIGH | MEDIUM | LOW"
}"""


async def recognize_visual(photos: Sequence[Photo], ctx: PipelineContext) -> VisualEvidence:
    """
    Brand / product line from the first photos' visual cues, independent of
    tag text. Any failure gives an empty record.
    """
    usable = [p for p in photos if p.usable][:MAX_VISUAL_PHOTOS]
    if not usable:
        return VisualEvidence.empty()

    try:
        text = await ctx.call(
            gemini.generate(ctx, [VISUAL_PROMPT, *usable], VISUAL_CONFIG),
            timeout=ctx.settings.MODEL_TIMEOUT_SECONDS,
        )
    except PipelineCancelled:
        raise
    except Exception as e:
        logger.warning("[%s] visual recognizer failed: %s", ctx.request_id, e)
        return VisualEvidence.empty()

    obj = extract_json(text)
    if obj is None:
        logger.warning("[%s] visual recognizer returned no JSON", ctx.request_id)
        return VisualEvidence.empty()

    s = ctx.settings
    evidence = VisualEvidence.from_model_output(obj, s.CONFIDENCE_HIGH_MIN, s.CONFIDENCE_MEDIUM_MIN)
    logger.info(
        "[%s] visual: brand=%s line=%s confidence=%s",
        ctx.request_id,
        evidence.visual_brand,
        evidence.product_line,
        evidence.confidence.value,
    )
    return evidence
