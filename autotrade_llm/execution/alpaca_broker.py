"""
Alpaca Broker: account, positions, orders, quotes and market orders via alpaca-py.

The alpaca-py clients are synchronous; every call runs in a worker thread and
is wrapped by the session's retry policy so transient failures (429/5xx,
connection errors) are retried with backoff.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, List, Optional

from alpaca.common.enums import Sort
from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.requests import StockLatestQuoteRequest
from alpaca.trading.client import TradingClient
from alpaca.trading.enums import OrderSide, QueryOrderStatus, TimeInForce
from alpaca.trading.requests import GetOrdersRequest, MarketOrderRequest

from autotrade_llm.errors import ApiError
from autotrade_llm.execution.models import (
    AccountSnapshot,
    OrderResult,
    OrderSnapshot,
    PositionSnapshot,
    QuoteSnapshot,
)
from autotrade_llm.utils.retry import RetryPolicy, extract_status

logger = logging.getLogger(__name__)


def _enum_value(value: Any) -> str:
    """alpaca-py returns enums for side/status; normalize to plain lowercase strings"""
    return str(getattr(value, "value", value)).lower()


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None or value == "":
        return default
    return float(value)


def build_client_order_id(symbol: str, side: str) -> str:
    """Idempotency key sent with every submit attempt of one order"""
    return f"autotrade-{symbol}-{side.lower()}-{uuid.uuid4().hex[:16]}"


def is_duplicate_order_error(error: BaseException) -> bool:
    return extract_status(error) == 422 and "client_order_id" in str(error).lower()


class AlpacaBroker:
    """
    Async brokerage adapter over Alpaca's trading and market-data APIs.

    Features:
    - Paper trading by default
    - Latest-quote lookups from the market-data API
    - Market orders with a fixed time-in-force
    """

    def __init__(
        self,
        api_key: str,
        secret_key: str,
        paper: bool = True,
        base_url: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        trading_client: Optional[TradingClient] = None,
        data_client: Optional[StockHistoricalDataClient] = None,
    ):
        """
        Initialize Alpaca broker.

        Args:
            api_key: Alpaca API key
            secret_key: Alpaca secret key
            paper: Use paper trading (default True for safety)
            base_url: Optional custom trading API URL
            retry_policy: Retry settings for every remote call
            trading_client: Pre-built trading client (tests)
            data_client: Pre-built market-data client (tests)
        """
        if trading_client is None:
            if base_url:
                trading_client = TradingClient(
                    api_key=api_key,
                    secret_key=secret_key,
                    url_override=base_url
                )
            else:
                trading_client = TradingClient(
                    api_key=api_key,
                    secret_key=secret_key,
                    paper=paper
                )
        if data_client is None:
            data_client = StockHistoricalDataClient(api_key=api_key, secret_key=secret_key)

        self.client = trading_client
        self.data_client = data_client
        self.retry_policy = retry_policy or RetryPolicy()
        self.mode = "PAPER" if paper else "LIVE"

        logger.info(f"AlpacaBroker initialized in {self.mode} mode")

    async def _call(self, description: str, func, *args, **kwargs):
        return await self.retry_policy.run(
            lambda: asyncio.to_thread(func, *args, **kwargs),
            description=f"alpaca.{description}",
        )

    async def get_account(self) -> AccountSnapshot:
        account = await self._call("get_account", self.client.get_account)
        return AccountSnapshot(
            cash=_to_float(account.cash),
            buying_power=_to_float(account.buying_power),
            portfolio_value=_to_float(account.portfolio_value),
            status=_enum_value(account.status).upper(),
        )

    async def get_positions(self) -> List[PositionSnapshot]:
        positions = await self._call("get_all_positions", self.client.get_all_positions)
        return [
            PositionSnapshot(
                symbol=pos.symbol,
                qty=_to_float(pos.qty),
                market_value=_to_float(pos.market_value),
            )
            for pos in positions
        ]

    async def get_orders(self, limit: int = 100) -> List[OrderSnapshot]:
        """Most recent orders of any status, including nested legs"""
        request = GetOrdersRequest(
            status=QueryOrderStatus.ALL,
            limit=limit,
            direction=Sort.DESC,
            nested=True,
        )
        orders = await self._call("get_orders", self.client.get_orders, filter=request)
        snapshots = []
        for order in orders:
            filled_at = order.filled_at
            if isinstance(filled_at, str):
                filled_at = datetime.fromisoformat(filled_at.replace("Z", "+00:00"))
            snapshots.append(OrderSnapshot(
                symbol=order.symbol,
                side=_enum_value(order.side),
                filled_qty=_to_float(order.filled_qty),
                filled_avg_price=(
                    _to_float(order.filled_avg_price) if order.filled_avg_price is not None else None
                ),
                filled_at=filled_at,
                status=_enum_value(order.status),
            ))
        return snapshots

    async def get_latest_quote(self, ticker: str) -> QuoteSnapshot:
        """
        Latest bid/ask for a ticker.

        Raises:
            ApiError: If Alpaca returns no quote for the ticker (status 404, not retried)
        """
        request = StockLatestQuoteRequest(symbol_or_symbols=ticker)
        quotes = await self._call(
            f"get_stock_latest_quote[{ticker}]",
            self.data_client.get_stock_latest_quote,
            request,
        )
        quote = quotes.get(ticker) if isinstance(quotes, dict) else quotes
        if quote is None:
            raise ApiError(f"No quote returned for {ticker}", status=404, ticker=ticker)
        return QuoteSnapshot(bid=_to_float(quote.bid_price), ask=_to_float(quote.ask_price))

    async def create_order(
        self,
        symbol: str,
        qty: float,
        side: str,
        time_in_force: str = "gtc",
    ) -> OrderResult:
        """
        Submit a market order.

        Args:
            symbol: Ticker symbol
            qty: Share quantity (fractional allowed for day orders only)
            side: "buy" or "sell"
            time_in_force: "gtc" or "day"

        Returns:
            OrderResult with broker order id and status

        Every retry of the submit carries the same client_order_id; a
        duplicate-id rejection resolves to the order already accepted.
        """
        client_order_id = build_client_order_id(symbol, side)
        order_request = MarketOrderRequest(
            symbol=symbol,
            qty=qty,
            side=OrderSide(side.lower()),
            time_in_force=TimeInForce(time_in_force.lower()),
            client_order_id=client_order_id,
        )
        logger.info(
            f"Submitting {side.upper()} market order: {qty} {symbol} ({time_in_force}) "
            f"client_order_id={client_order_id}"
        )
        try:
            order = await self._call(f"submit_order[{symbol}]", self.client.submit_order, order_data=order_request)
        except Exception as e:
            if not is_duplicate_order_error(e):
                raise
            logger.warning(f"Order {client_order_id} already accepted by Alpaca, fetching it: {e}")
            order = await self._call(
                f"get_order_by_client_id[{client_order_id}]",
                self.client.get_order_by_client_id,
                client_order_id,
            )
        result = OrderResult(id=str(order.id), status=_enum_value(order.status))
        logger.info(f"Order submitted: {result.id} status={result.status}")
        return result

    async def validate_credentials(self) -> AccountSnapshot:
        """Lightweight account fetch used at startup"""
        account = await self.get_account()
        logger.info(
            f"Alpaca account status: {account.status}, "
            f"buying power: ${account.buying_power:,.2f}, "
            f"portfolio value: ${account.portfolio_value:,.2f}"
        )
        return account
