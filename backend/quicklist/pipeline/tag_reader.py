import logging
from typing import Sequence

from quicklist.core import gemini
from quicklist.core.context import PipelineContext
from quicklist.core.errors import PipelineCancelled
from quicklist.core.json_extract import extract_json
from quicklist.schemas.evidence import TagEvidence
from quicklist.schemas.photo import Photo

logger = logging.getLogger(__name__)

TAG_PROMPT = """You are reading the labels, tags and printed codes on a product for resale.

Work systematically:
1. Look at every photo. For each tag, label, box, sole or print, transcribe ALL visible text line by line, exactly as printed (keep dashes, slashes and leading zeros).
2. Only then categorise what you transcribed:
   - brand: the manufacturer or label name
   - modelCodes: model / article numbers (e.g. "DD1391-100", "501-0115")
   - styleCodes: style, colourway or season codes
   - skuNumbers: SKU, UPC, EAN, RN/CA numbers
   - size: the size exactly as printed (e.g. "UK 9", "M", "W32 L30")
3. Do not guess. If something is not legible, leave it out.

Return ONLY JSON:
{
  "brand": null,
  "modelCodes": [],
  "styleCodes": [],
  "skuNumbers": [],
  "size": null,
  "allText": []
}"""


async def read_tags(photos: Sequence[Photo], ctx: PipelineContext) -> TagEvidence:
    """
    Transcribe and categorise every visible tag/code. Advisory: any failure
    (upstream error, timeout, unparseable output) gives an empty record.
    """
    usable = [p for p in photos if p.usable]
    if not usable:
        return TagEvidence.empty()

    try:
        text = await ctx.call(
            gemini.generate(ctx, [TAG_PROMPT, *usable], gemini.EXTRACTION_CONFIG),
            timeout=ctx.settings.MODEL_TIMEOUT_SECONDS,
        )
    except PipelineCancelled:
        raise
    except Exception as e:
        logger.warning("[%s] tag reader failed: %s", ctx.request_id, e)
        return TagEvidence.empty()

    obj = extract_json(text)
    if obj is None:
        logger.warning("[%s] tag reader returned no JSON", ctx.request_id)
        return TagEvidence.empty()

    evidence = TagEvidence.from_model_output(obj)
    logger.info(
        "[%s] tags: brand=%s codes=%s size=%s",
        ctx.request_id,
        evidence.brand,
        evidence.codes,
        evidence.size,
    )
    return evidence
