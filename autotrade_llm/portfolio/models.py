"""
Portfolio data models.

The brokerage snapshot is authoritative for cash and holdings; trade history
is a cache rebuilt from filled orders on every reconciliation.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class PriceSource(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    FALLBACK = "fallback"


class Trade(BaseModel):
    """A filled order. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    date: datetime
    side: TradeSide
    ticker: str
    shares: float = Field(gt=0)
    price: float = Field(ge=0)
    total: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def compute_total(cls, data):
        if isinstance(data, dict) and data.get("total") in (None, 0, 0.0):
            data = dict(data)
            data["total"] = round(float(data["shares"]) * float(data["price"]), 2)
        return data


class Portfolio(BaseModel):
    """Cash, signed holdings (positive long, negative short) and ascending trade history"""
    cash: float = 0.0
    holdings: Dict[str, float] = Field(default_factory=dict)
    history: List[Trade] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "Portfolio":
        return cls()


class PriceQuote(BaseModel):
    """A price resolved for immediate use; never persisted"""
    ticker: str
    price: float
    source: PriceSource
    resolved_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_synthetic(self) -> bool:
        return self.source == PriceSource.FALLBACK
