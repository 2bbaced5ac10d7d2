"""
Shared test fixtures: an in-memory broker and retry settings without delays.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

import pytest

from autotrade_llm.errors import ApiError
from autotrade_llm.execution.models import (
    AccountSnapshot,
    OrderResult,
    OrderSnapshot,
    PositionSnapshot,
    QuoteSnapshot,
)
from autotrade_llm.utils.retry import RetryPolicy


class FakeBroker:
    """In-memory broker that fills market orders immediately at the quote mid"""

    def __init__(
        self,
        cash: float = 1000.0,
        buying_power: Optional[float] = None,
        portfolio_value: Optional[float] = None,
        positions: Optional[Dict[str, float]] = None,
        quotes: Optional[Dict[str, Tuple[float, float]]] = None,
    ):
        self.cash = cash
        self.buying_power = cash if buying_power is None else buying_power
        self.portfolio_value = portfolio_value
        self.positions: Dict[str, float] = dict(positions or {})
        self.quotes: Dict[str, Tuple[float, float]] = dict(quotes or {})
        self.orders: List[OrderSnapshot] = []
        self.submitted: List[dict] = []
        self.account_error: Optional[Exception] = None
        self.positions_error: Optional[Exception] = None
        self.quote_calls: List[str] = []
        self.credential_checks = 0

    def _mid(self, symbol: str) -> float:
        bid, ask = self.quotes.get(symbol, (0.0, 0.0))
        return (bid + ask) / 2

    async def get_account(self) -> AccountSnapshot:
        if self.account_error is not None:
            raise self.account_error
        value = self.portfolio_value
        if value is None:
            value = self.cash + sum(q * self._mid(s) for s, q in self.positions.items())
        return AccountSnapshot(
            cash=self.cash,
            buying_power=self.buying_power,
            portfolio_value=value,
            status="ACTIVE",
        )

    async def get_positions(self) -> List[PositionSnapshot]:
        if self.positions_error is not None:
            raise self.positions_error
        return [
            PositionSnapshot(symbol=s, qty=q, market_value=q * self._mid(s))
            for s, q in self.positions.items()
        ]

    async def get_orders(self, limit: int = 100) -> List[OrderSnapshot]:
        return list(reversed(self.orders))[:limit]

    async def get_latest_quote(self, ticker: str) -> QuoteSnapshot:
        self.quote_calls.append(ticker)
        if ticker not in self.quotes:
            raise ApiError(f"No quote for {ticker}", status=404)
        bid, ask = self.quotes[ticker]
        return QuoteSnapshot(bid=bid, ask=ask)

    async def create_order(self, symbol: str, qty: float, side: str, time_in_force: str = "gtc") -> OrderResult:
        price = self._mid(symbol)
        self.submitted.append({"symbol": symbol, "qty": qty, "side": side, "time_in_force": time_in_force})

        signed = qty if side == "buy" else -qty
        self.positions[symbol] = self.positions.get(symbol, 0.0) + signed
        if self.positions[symbol] == 0:
            del self.positions[symbol]
        self.cash -= signed * price
        self.buying_power -= signed * price

        self.orders.append(OrderSnapshot(
            symbol=symbol,
            side=side,
            filled_qty=qty,
            filled_avg_price=price,
            filled_at=datetime.now(timezone.utc),
            status="filled",
        ))
        return OrderResult(id=f"order-{len(self.submitted)}", status="accepted")

    async def validate_credentials(self) -> AccountSnapshot:
        self.credential_checks += 1
        return await self.get_account()


@pytest.fixture
def fake_broker():
    """Broker with $1,000 cash and an AAPL quote at $200"""
    return FakeBroker(cash=1000.0, quotes={"AAPL": (199.5, 200.5)})


@pytest.fixture
def broker_factory():
    return FakeBroker


@pytest.fixture
def no_retry():
    """Single attempt, no backoff"""
    return RetryPolicy(max_attempts=1, base_delay=0.0, jitter=0.0)
