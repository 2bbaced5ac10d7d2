"""
Portfolio Reconciler: brokerage snapshots -> canonical Portfolio view.

Account, positions and orders are fetched concurrently and joined before
reconciliation. Fetch failures degrade to an empty portfolio so reporting
never crashes a session.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from autotrade_llm.execution.models import BrokerPort, OrderSnapshot
from autotrade_llm.portfolio.models import Portfolio, Trade, TradeSide
from autotrade_llm.portfolio.performance import NOT_ENOUGH_DATA, calculate_cagr
from autotrade_llm.pricing.price_resolver import PriceResolver

logger = logging.getLogger(__name__)


def orders_to_trades(orders: List[OrderSnapshot]) -> List[Trade]:
    """Filled orders as Trades, ascending by fill time"""
    trades = []
    for order in orders:
        if order.filled_at is None or order.filled_qty <= 0 or order.filled_avg_price is None:
            continue
        try:
            side = TradeSide(order.side)
        except ValueError:
            logger.warning(f"Skipping order with unknown side {order.side!r} for {order.symbol}")
            continue
        trades.append(Trade(
            date=order.filled_at,
            side=side,
            ticker=order.symbol,
            shares=order.filled_qty,
            price=order.filled_avg_price,
            total=round(order.filled_qty * order.filled_avg_price, 2),
        ))
    trades.sort(key=lambda t: t.date)
    return trades


class PortfolioReconciler:
    """Builds Portfolio views and derived values from the brokerage"""

    def __init__(
        self,
        broker: BrokerPort,
        price_resolver: PriceResolver,
        order_history_limit: int = 100,
        starting_capital: float = 1000.0,
    ):
        self.broker = broker
        self.price_resolver = price_resolver
        self.order_history_limit = order_history_limit
        self.starting_capital = starting_capital

    async def get_portfolio(self) -> Portfolio:
        """
        Reconcile account, positions and filled orders.

        Returns:
            Portfolio, or Portfolio.empty() if any fetch fails
        """
        try:
            account, positions, orders = await asyncio.gather(
                self.broker.get_account(),
                self.broker.get_positions(),
                self.broker.get_orders(limit=self.order_history_limit),
            )
        except Exception as e:
            logger.error(f"Error fetching portfolio, using empty portfolio: {e}")
            return Portfolio.empty()

        holdings: Dict[str, float] = {
            pos.symbol: pos.qty for pos in positions if pos.qty != 0
        }
        return Portfolio(
            cash=round(account.cash, 2),
            holdings=holdings,
            history=orders_to_trades(orders),
        )

    async def holdings_value(self, holdings: Dict[str, float]) -> float:
        """Signed market value of holdings; tickers whose price fails are skipped"""
        total = 0.0
        for ticker, shares in holdings.items():
            try:
                quote = await self.price_resolver.resolve(ticker)
            except Exception as e:
                logger.error(f"Skipping {ticker} in holdings valuation: {e}")
                continue
            total += shares * quote.price
        return total

    async def calculate_net_worth(self, portfolio: Optional[Portfolio] = None) -> float:
        """
        Total portfolio value.

        Prefers the brokerage-reported portfolio value; falls back to
        cash plus priced holdings when the account call fails.
        """
        try:
            account = await self.broker.get_account()
            return round(account.portfolio_value, 2)
        except Exception as e:
            logger.warning(f"Account value unavailable, valuing holdings locally: {e}")

        if portfolio is None:
            portfolio = await self.get_portfolio()
        value = portfolio.cash + await self.holdings_value(portfolio.holdings)
        return round(value, 2)

    async def calculate_annualized_return(
        self,
        portfolio: Portfolio,
        now: Optional[datetime] = None,
    ) -> Optional[float]:
        """
        Annualized return in percent since the first trade.

        Returns:
            0.0 with no trades, NOT_ENOUGH_DATA when under a day has
            elapsed, otherwise CAGR * 100 rounded to 2 decimals
        """
        if not portfolio.history:
            return 0.0

        now = now or datetime.now(timezone.utc)
        first = portfolio.history[0].date
        if first.tzinfo is None:
            first = first.replace(tzinfo=timezone.utc)
        days = (now - first).total_seconds() / 86400
        if days < 1:
            return NOT_ENOUGH_DATA

        current_value = portfolio.cash + await self.holdings_value(portfolio.holdings)
        if current_value <= 0:
            return -100.0
        return round(calculate_cagr(days, current_value, self.starting_capital) * 100, 2)
