"""
Market pricing from eBay comparables.

Anchors:
  median           fast sale (statistics.median; mean of the two middle
                   values when n is even)
  75th percentile  maximum profit, sorted[floor(0.75 * n)] clamped to n - 1
  competitor avg   where active fixed-price listings sit today

For sold prices [10, 20, 30, 40]: median 25.0, p75 40.
"""

import logging
import math
import re
import statistics
from typing import Any, Dict, List, Optional, Sequence

from quicklist.core import serpapi
from quicklist.core.context import PipelineContext, gather_all
from quicklist.core.errors import PipelineCancelled
from quicklist.schemas.pricing import PricePoint, PricingSnapshot, SoldExample, SoldPriceStats

logger = logging.getLogger(__name__)

QUICK_SALE_PROBABILITY = 0.85
MARKET_PROBABILITY = 0.65
MAX_PROFIT_PROBABILITY = 0.40

MAX_SOLD_EXAMPLES = 3


def _parse_price_value(price: Any) -> Optional[float]:
    """
    Converts "£59.99", "$1,402.58", 12 or {"extracted": 12.5} to float.
    Returns None if not parseable.
    """
    if isinstance(price, bool) or price is None:
        return None
    if isinstance(price, (int, float)):
        value = float(price)
    elif isinstance(price, dict):
        for k in ("extracted", "value"):
            if isinstance(price.get(k), (int, float)):
                return _parse_price_value(price[k])
        # price ranges: {"from": {...}, "to": {...}} => take the lower bound
        if isinstance(price.get("from"), dict):
            return _parse_price_value(price["from"])
        return _parse_price_value(price.get("raw"))
    else:
        m = re.search(r"(\d[\d,]*\.?\d*)", str(price))
        if not m:
            return None
        try:
            value = float(m.group(1).replace(",", ""))
        except ValueError:
            return None
    if math.isnan(value) or math.isinf(value) or value <= 0:
        return None
    return value


def _results(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    items = raw.get("organic_results") or []
    return [r for r in items if isinstance(r, dict)]


def _prices(items: Sequence[Dict[str, Any]]) -> List[float]:
    out: List[float] = []
    for r in items:
        v = _parse_price_value(r.get("price"))
        if v is not None:
            out.append(v)
    return out


def median_price(values: Sequence[float]) -> float:
    return float(statistics.median(values))


def percentile_75(values: Sequence[float]) -> float:
    ordered = sorted(values)
    idx = min(len(ordered) - 1, math.floor(0.75 * len(ordered)))
    return float(ordered[idx])


def sold_stats(values: Sequence[float]) -> SoldPriceStats:
    """Callers guarantee len(values) > 0."""
    return SoldPriceStats(
        average=round(sum(values) / len(values), 2),
        median=round(median_price(values), 2),
        min=round(min(values), 2),
        max=round(max(values), 2),
        percentile75=round(percentile_75(values), 2),
    )


def _money(value: float, currency: str) -> str:
    return f"{currency}{value:,.2f}"


def build_recommendations(
    stats: SoldPriceStats,
    competitor_average: Optional[float],
    currency: str = "£",
) -> List[str]:
    recs = [f"Price at {_money(stats.median, currency)} (median sold) for a quick sale."]

    if stats.percentile75 > stats.median:
        spread = (stats.percentile75 - stats.median) / stats.median * 100 if stats.median else 0.0
        recs.append(
            f"List at {_money(stats.percentile75, currency)} (75th percentile) to maximise profit; "
            f"about {spread:.0f}% above the median, expect a slower sale."
        )
    else:
        recs.append("Sold prices are tightly clustered; pricing above the median is unlikely to pay off.")

    if competitor_average is not None:
        if competitor_average < stats.median:
            recs.append(
                f"Active listings average {_money(competitor_average, currency)}, below recent sales; "
                f"stay near the median to remain competitive."
            )
        elif competitor_average > stats.percentile75:
            recs.append(
                f"Active listings average {_money(competitor_average, currency)}, above most sales; "
                f"pricing under them should sell first."
            )
        else:
            recs.append(
                f"Active listings average {_money(competitor_average, currency)}, "
                f"between the quick-sale and maximum-profit prices."
            )
    return recs


def build_price_points(stats: SoldPriceStats) -> List[PricePoint]:
    return [
        PricePoint(price=stats.median, label="Quick sale", sell_probability=QUICK_SALE_PROBABILITY),
        PricePoint(price=stats.average, label="Market average", sell_probability=MARKET_PROBABILITY),
        PricePoint(price=stats.percentile75, label="Maximum profit", sell_probability=MAX_PROFIT_PROBABILITY),
    ]


def analyze_comparables(
    sold_items: Sequence[Dict[str, Any]],
    active_items: Sequence[Dict[str, Any]],
    currency: str = "£",
) -> PricingSnapshot:
    """
    Pure part of the analyzer: raw result items in, snapshot out.
    """
    sold = _prices(sold_items)
    active = _prices(active_items)
    competitor_average = round(sum(active) / len(active), 2) if active else None

    if not sold:
        return PricingSnapshot.insufficient_data(len(active), competitor_average)

    stats = sold_stats(sold)
    examples: List[SoldExample] = []
    for r in sold_items:
        v = _parse_price_value(r.get("price"))
        if v is None:
            continue
        examples.append(SoldExample(title=str(r.get("title") or "Untitled"), url=r.get("link"), price=round(v, 2)))
        if len(examples) >= MAX_SOLD_EXAMPLES:
            break

    return PricingSnapshot(
        sold_count=len(sold),
        competitor_count=len(active),
        sold_prices=stats,
        competitor_average=competitor_average,
        sell_through_rate=round(len(sold) / (len(sold) + len(active)), 2),
        recommendations=build_recommendations(stats, competitor_average, currency),
        price_points=build_price_points(stats),
        sold_examples=examples,
    )


def build_query(brand: Optional[str], title: str) -> str:
    brand = (brand or "").strip()
    title = " ".join((title or "").split())
    if brand and brand.lower() not in title.lower():
        return f"{brand} {title}".strip()
    return title or brand


async def _fetch(ctx: PipelineContext, query: str, sold: bool) -> List[Dict[str, Any]]:
    s = ctx.settings
    try:
        raw = await ctx.call(
            serpapi.ebay_search(
                ctx,
                query,
                sold=sold,
                sort=serpapi.SORT_ENDED_RECENTLY if sold else serpapi.SORT_PRICE_LOWEST,
                page_size=s.PRICING_PAGE_SIZE,
            ),
            timeout=s.SEARCH_TIMEOUT_SECONDS,
        )
    except PipelineCancelled:
        raise
    except Exception as e:
        logger.warning("[%s] %s comparables query failed: %s", ctx.request_id, "sold" if sold else "active", e)
        return []
    return _results(raw)


async def analyze_pricing(brand: Optional[str], title: str, ctx: PipelineContext) -> PricingSnapshot:
    """
    Sold and active comparables are fetched concurrently. A failed sold query
    means insufficient data; a failed active query means no competitors.
    """
    query = build_query(brand, title)
    if not query:
        return PricingSnapshot.insufficient_data()

    sold_items, active_items = await gather_all(
        _fetch(ctx, query, sold=True),
        _fetch(ctx, query, sold=False),
    )
    snapshot = analyze_comparables(sold_items, active_items, ctx.settings.CURRENCY_SYMBOL)
    logger.info(
        "[%s] pricing %r: sold=%d active=%d",
        ctx.request_id,
        query,
        snapshot.sold_count,
        snapshot.competitor_count,
    )
    return snapshot
