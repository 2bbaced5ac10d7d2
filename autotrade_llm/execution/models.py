"""
Brokerage snapshots and the broker interface consumed by the agent.
"""

from datetime import datetime
from typing import List, Optional, Protocol

from pydantic import BaseModel


class AccountSnapshot(BaseModel):
    cash: float
    buying_power: float
    portfolio_value: float
    status: str = "ACTIVE"


class PositionSnapshot(BaseModel):
    symbol: str
    qty: float
    market_value: float = 0.0


class OrderSnapshot(BaseModel):
    symbol: str
    side: str
    filled_qty: float = 0.0
    filled_avg_price: Optional[float] = None
    filled_at: Optional[datetime] = None
    status: str


class QuoteSnapshot(BaseModel):
    bid: float
    ask: float


class OrderResult(BaseModel):
    """Result of an order submission"""
    id: str
    status: str


class BrokerPort(Protocol):
    """Brokerage operations the agent depends on"""

    async def get_account(self) -> AccountSnapshot:
        ...

    async def get_positions(self) -> List[PositionSnapshot]:
        ...

    async def get_orders(self, limit: int = 100) -> List[OrderSnapshot]:
        ...

    async def get_latest_quote(self, ticker: str) -> QuoteSnapshot:
        ...

    async def create_order(self, symbol: str, qty: float, side: str, time_in_force: str = "gtc") -> OrderResult:
        ...

    async def validate_credentials(self) -> AccountSnapshot:
        ...
