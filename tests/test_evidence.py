import base64

import pytest

from conftest import make_settings
from quicklist.core import gemini
from quicklist.core.context import PipelineContext
from quicklist.core.errors import GeminiRateLimitError
from quicklist.pipeline.tag_reader import read_tags
from quicklist.pipeline.visual_recognizer import MAX_VISUAL_PHOTOS, recognize_visual
from quicklist.schemas.common import Confidence
from quicklist.schemas.evidence import TagEvidence, VisualEvidence
from quicklist.schemas.photo import Photo

PHOTOS = [Photo(data=b"one"), Photo(data=b"two"), Photo(data=b"three")]


def test_tag_evidence_cleans_model_output():
    evidence = TagEvidence.from_model_output(
        {
            "brand": "  Nike ",
            "modelCodes": ["DD1391-100", "DD1391-100", ""],
            "style_codes": "CW2288",
            "skuNumbers": None,
            "size": "N/A",
            "allText": ["NIKE", 123],
        }
    )
    assert evidence.brand == "Nike"
    assert evidence.model_codes == ["DD1391-100"]
    assert evidence.style_codes == ["CW2288"]
    assert evidence.sku_numbers == []
    assert evidence.size is None
    assert evidence.all_text == ["NIKE", "123"]
    assert evidence.codes == ["DD1391-100", "CW2288"]
    assert not evidence.is_empty


def test_empty_records():
    assert TagEvidence.empty().is_empty
    assert TagEvidence.from_model_output(["not", "a", "dict"]).is_empty
    assert VisualEvidence.empty().is_empty
    assert VisualEvidence.empty().confidence == Confidence.LOW


def test_visual_evidence_buckets_numeric_confidence():
    evidence = VisualEvidence.from_model_output({"visualBrand": "Barbour", "productLine": "Bedale", "confidence": 0.7})
    assert evidence.visual_brand == "Barbour"
    assert evidence.confidence == Confidence.MEDIUM
    assert VisualEvidence.from_model_output({"brand": "Barbour", "confidence": 0.7}, high_min=0.65).confidence == Confidence.HIGH


def test_evidence_serializes_camel_case():
    dumped = TagEvidence(brand="Nike", model_codes=["X1"]).model_dump(by_alias=True)
    assert dumped["modelCodes"] == ["X1"]
    assert "model_codes" not in dumped


def test_photo_from_data_url():
    raw = b"\x89PNG fake"
    photo = Photo.from_data_url("data:image/png;base64," + base64.b64encode(raw).decode(), name="a.png")
    assert photo.data == raw
    assert photo.mime_type == "image/png"
    assert Photo.from_data_url(base64.b64encode(raw).decode()).mime_type == "image/jpeg"
    assert Photo.from_data_url("https://example.com/a.jpg") is None
    assert not Photo(data=b"").usable


@pytest.mark.asyncio
async def test_read_tags_sends_every_photo(monkeypatch):
    sent = []

    async def fake_generate(ctx, parts, generation=None, *, tools=None):
        sent.append(parts)
        return 'Transcribed:\n```json\n{"brand": "Nike", "modelCodes": ["DD1391-100"], "size": "UK 9"}\n```'

    monkeypatch.setattr(gemini, "generate", fake_generate)

    async with PipelineContext.open(make_settings()) as ctx:
        evidence = await read_tags(PHOTOS, ctx)

    assert evidence.brand == "Nike"
    assert evidence.size == "UK 9"
    assert len([p for p in sent[0] if isinstance(p, Photo)]) == 3


@pytest.mark.asyncio
async def test_visual_recognizer_uses_first_photos_only(monkeypatch):
    sent = []

    async def fake_generate(ctx, parts, generation=None, *, tools=None):
        sent.append(parts)
        return '{"visualBrand": "Nike", "logoMatches": ["swoosh"], "confidence": "HIGH"}'

    monkeypatch.setattr(gemini, "generate", fake_generate)

    async with PipelineContext.open(make_settings()) as ctx:
        evidence = await recognize_visual(PHOTOS, ctx)

    assert evidence.visual_brand == "Nike"
    assert evidence.confidence == Confidence.HIGH
    photos_sent = [p for p in sent[0] if isinstance(p, Photo)]
    assert [p.data for p in photos_sent] == [b"one", b"two"][:MAX_VISUAL_PHOTOS]


@pytest.mark.asyncio
@pytest.mark.parametrize("outcome", [GeminiRateLimitError("Gemini rate limit exceeded"), "no json at all"])
async def test_extractors_fail_to_empty_records(monkeypatch, outcome):
    async def fake_generate(ctx, parts, generation=None, *, tools=None):
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr(gemini, "generate", fake_generate)

    async with PipelineContext.open(make_settings()) as ctx:
        tags = await read_tags(PHOTOS, ctx)
        visual = await recognize_visual(PHOTOS, ctx)

    assert tags == TagEvidence.empty()
    assert visual == VisualEvidence.empty()
