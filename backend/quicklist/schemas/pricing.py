from typing import List, Optional

from pydantic import Field

from quicklist.schemas.common import CamelModel


class SoldPriceStats(CamelModel):
    average: float
    median: float
    min: float
    max: float
    percentile75: float


class PricePoint(CamelModel):
    price: float
    label: str
    sell_probability: float


class SoldExample(CamelModel):
    title: str
    url: Optional[str] = None
    price: float


class PricingSnapshot(CamelModel):
    """
    Derived fresh per request. sold_prices is only present when
    sold_count > 0; nothing here is ever NaN.
    """

    sold_count: int = 0
    competitor_count: int = 0
    sold_prices: Optional[SoldPriceStats] = None
    competitor_average: Optional[float] = None
    sell_through_rate: float = 0.0
    recommendations: List[str] = Field(default_factory=list)
    price_points: List[PricePoint] = Field(default_factory=list)
    sold_examples: List[SoldExample] = Field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.sold_count > 0

    @classmethod
    def insufficient_data(cls, competitor_count: int = 0, competitor_average: Optional[float] = None) -> "PricingSnapshot":
        return cls(
            sold_count=0,
            competitor_count=competitor_count,
            competitor_average=competitor_average,
            recommendations=["Not enough recent sales to price from; use the AI-estimated price."],
        )
