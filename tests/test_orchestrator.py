import asyncio

import pytest

from conftest import make_settings
from quicklist.core import gemini
from quicklist.core.context import PipelineContext, gather_all
from quicklist.core.errors import NoUsablePhotos, PipelineCancelled, UpstreamTimeout
from quicklist.pipeline import orchestrator
from quicklist.schemas.common import Confidence
from quicklist.schemas.evidence import TagEvidence, VisualEvidence
from quicklist.schemas.listing import FusionResult, FusionState, ListingCandidate, ListingHints
from quicklist.schemas.photo import Photo
from quicklist.schemas.pricing import PricingSnapshot
from quicklist.schemas.stock_image import StockImageResult

PHOTOS = [Photo(data=b"front"), Photo(data=b"tag")]

PRICING = PricingSnapshot(sold_count=3, competitor_count=1)
STOCK = StockImageResult(stock_image_url="https://static.nike.com/am90.png", confidence=Confidence.HIGH)


def _candidate(confidence=Confidence.HIGH, **extra):
    return ListingCandidate(title="Nike Air Max 90", brand="Nike", confidence=confidence, **extra)


def _patch_stages(monkeypatch, state, calls):
    async def fake_tags(photos, ctx):
        calls.append("tags")
        return TagEvidence(brand="Nike", model_codes=["DD1391-100"])

    async def fake_visual(photos, ctx):
        calls.append("visual")
        return VisualEvidence(visual_brand="Nike", confidence=Confidence.HIGH)

    async def fake_fuse(photos, tags, visual, hints, ctx):
        calls.append("fusion")
        assert tags.brand == "Nike" and visual.visual_brand == "Nike"
        confidence = Confidence.HIGH if state == FusionState.AUTO_ACCEPT else Confidence.MEDIUM
        return FusionResult(candidates=[_candidate(confidence), _candidate(Confidence.LOW)], state=state)

    async def fake_pricing(brand, title, ctx):
        calls.append(("pricing", brand, title))
        return PRICING

    async def fake_stock(brand, title, ctx, model_code=None):
        calls.append(("stock", brand, title, model_code))
        return STOCK

    monkeypatch.setattr(orchestrator, "read_tags", fake_tags)
    monkeypatch.setattr(orchestrator, "recognize_visual", fake_visual)
    monkeypatch.setattr(orchestrator, "fuse_listing", fake_fuse)
    monkeypatch.setattr(orchestrator, "analyze_pricing", fake_pricing)
    monkeypatch.setattr(orchestrator, "resolve_stock_image", fake_stock)


@pytest.mark.asyncio
async def test_auto_accept_runs_enrichment(monkeypatch):
    calls = []
    _patch_stages(monkeypatch, FusionState.AUTO_ACCEPT, calls)

    async with PipelineContext.open(make_settings()) as ctx:
        analysis = await orchestrator.analyze_listing(PHOTOS, ListingHints(), ctx)

    assert analysis.state == FusionState.AUTO_ACCEPT
    assert not analysis.requires_user_selection
    assert analysis.request_id == ctx.request_id
    assert analysis.pricing == PRICING
    assert analysis.stock_image == STOCK
    assert ("pricing", "Nike", "Nike Air Max 90") in calls
    assert ("stock", "Nike", "Nike Air Max 90", "DD1391-100") in calls
    assert calls.index("fusion") > max(calls.index("tags"), calls.index("visual"))


@pytest.mark.asyncio
async def test_disambiguation_skips_enrichment(monkeypatch):
    calls = []
    _patch_stages(monkeypatch, FusionState.NEEDS_DISAMBIGUATION, calls)

    async with PipelineContext.open(make_settings()) as ctx:
        analysis = await orchestrator.analyze_listing(PHOTOS, None, ctx)

    assert analysis.requires_user_selection
    assert len(analysis.candidates) == 2
    assert analysis.pricing is None
    assert analysis.stock_image is None
    assert not any(isinstance(c, tuple) for c in calls)


@pytest.mark.asyncio
async def test_evidence_extractors_run_concurrently(monkeypatch):
    calls = []
    _patch_stages(monkeypatch, FusionState.NEEDS_DISAMBIGUATION, calls)
    tags_started, visual_started = asyncio.Event(), asyncio.Event()

    # each extractor waits for the other to start; sequential execution would time out
    async def fake_tags(photos, ctx):
        tags_started.set()
        await asyncio.wait_for(visual_started.wait(), timeout=1.0)
        return TagEvidence(brand="Nike")

    async def fake_visual(photos, ctx):
        visual_started.set()
        await asyncio.wait_for(tags_started.wait(), timeout=1.0)
        return VisualEvidence(visual_brand="Nike")

    monkeypatch.setattr(orchestrator, "read_tags", fake_tags)
    monkeypatch.setattr(orchestrator, "recognize_visual", fake_visual)

    async with PipelineContext.open(make_settings()) as ctx:
        analysis = await orchestrator.analyze_listing(PHOTOS, None, ctx)

    assert analysis.tag_evidence.brand == "Nike"
    assert analysis.visual_evidence.visual_brand == "Nike"


@pytest.mark.asyncio
async def test_enrichment_runs_pricing_and_stock_concurrently(monkeypatch):
    pricing_started, stock_started = asyncio.Event(), asyncio.Event()

    async def fake_pricing(brand, title, ctx):
        pricing_started.set()
        await asyncio.wait_for(stock_started.wait(), timeout=1.0)
        return PRICING

    async def fake_stock(brand, title, ctx, model_code=None):
        stock_started.set()
        await asyncio.wait_for(pricing_started.wait(), timeout=1.0)
        return STOCK

    monkeypatch.setattr(orchestrator, "analyze_pricing", fake_pricing)
    monkeypatch.setattr(orchestrator, "resolve_stock_image", fake_stock)

    async with PipelineContext.open(make_settings()) as ctx:
        enrichment = await orchestrator.enrich_candidate(_candidate(), ctx, model_code="DD1391-100")

    assert enrichment.candidate.title == "Nike Air Max 90"
    assert enrichment.pricing == PRICING
    assert enrichment.stock_image == STOCK


@pytest.mark.asyncio
@pytest.mark.parametrize("photos", [[], [Photo(data=b"")]])
async def test_no_usable_photos(photos):
    async with PipelineContext.open(make_settings()) as ctx:
        with pytest.raises(NoUsablePhotos):
            await orchestrator.analyze_listing(photos, None, ctx)


@pytest.mark.asyncio
async def test_cancellation_aborts_without_partial_result(monkeypatch):
    fused = []

    async def hanging_generate(ctx, parts, generation=None, *, tools=None):
        ctx.cancel()
        await asyncio.sleep(10)
        return "{}"

    async def fake_fuse(*args, **kwargs):
        fused.append(1)

    monkeypatch.setattr(gemini, "generate", hanging_generate)
    monkeypatch.setattr(orchestrator, "fuse_listing", fake_fuse)

    async with PipelineContext.open(make_settings()) as ctx:
        with pytest.raises(PipelineCancelled):
            await asyncio.wait_for(orchestrator.analyze_listing(PHOTOS, None, ctx), timeout=2.0)

    assert fused == []


@pytest.mark.asyncio
async def test_call_times_out_as_upstream_timeout():
    async with PipelineContext.open(make_settings()) as ctx:
        with pytest.raises(UpstreamTimeout):
            await ctx.call(asyncio.sleep(1.0), timeout=0.01)
        assert await ctx.call(asyncio.sleep(0, result="done"), timeout=1.0) == "done"


@pytest.mark.asyncio
async def test_call_on_cancelled_context_raises_immediately():
    async with PipelineContext.open(make_settings()) as ctx:
        ctx.cancel()
        with pytest.raises(PipelineCancelled):
            await ctx.call(asyncio.sleep(1.0), timeout=5.0)


@pytest.mark.asyncio
async def test_cancelled_stage_waits_for_its_sibling(monkeypatch):
    finished = []

    async def cancelled_tags(photos, ctx):
        raise PipelineCancelled()

    async def slow_visual(photos, ctx):
        await asyncio.sleep(0.05)
        finished.append("visual")
        return VisualEvidence.empty()

    monkeypatch.setattr(orchestrator, "read_tags", cancelled_tags)
    monkeypatch.setattr(orchestrator, "recognize_visual", slow_visual)

    async with PipelineContext.open(make_settings()) as ctx:
        with pytest.raises(PipelineCancelled):
            await orchestrator.analyze_listing(PHOTOS, None, ctx)
        assert finished == ["visual"]


@pytest.mark.asyncio
async def test_enrichment_failure_waits_for_the_other_stage(monkeypatch):
    finished = []

    async def cancelled_pricing(brand, title, ctx):
        raise PipelineCancelled()

    async def slow_stock(brand, title, ctx, model_code=None):
        await asyncio.sleep(0.05)
        finished.append("stock")
        return STOCK

    monkeypatch.setattr(orchestrator, "analyze_pricing", cancelled_pricing)
    monkeypatch.setattr(orchestrator, "resolve_stock_image", slow_stock)

    async with PipelineContext.open(make_settings()) as ctx:
        with pytest.raises(PipelineCancelled):
            await orchestrator.enrich_candidate(_candidate(), ctx)
        assert finished == ["stock"]


@pytest.mark.asyncio
async def test_gather_all_returns_results_in_order():
    async def value(v, delay):
        await asyncio.sleep(delay)
        return v

    assert await gather_all(value("a", 0.02), value("b", 0)) == ["a", "b"]
