"""
Tool Dispatcher: execute a normalized ToolCall and describe the outcome.

dispatch() always returns a string. Rejections (insufficient funds or
shares, short eligibility), malformed arguments and unexpected failures are
all reported as text so the model can adapt, and a single failing tool
never ends the session.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from autotrade_llm.errors import TradingError, ValidationError
from autotrade_llm.execution.models import BrokerPort
from autotrade_llm.portfolio.models import Portfolio
from autotrade_llm.portfolio.reconciler import PortfolioReconciler
from autotrade_llm.pricing.price_resolver import PriceResolver, normalize_ticker
from autotrade_llm.session.context import SessionContext
from autotrade_llm.tools.normalizer import ToolCall, ToolName
from autotrade_llm.tools.web_search import UNAVAILABLE_MESSAGE, WebSearchClient
from autotrade_llm.utils.logging_json import SessionEventLogger

logger = logging.getLogger(__name__)


def format_shares(shares: float) -> str:
    return f"{shares:g}"


def format_money(amount: float) -> str:
    return f"${amount:,.2f}"


class TradeArgs(BaseModel):
    """Arguments shared by buy, sell, short_sell and cover_short"""
    ticker: str
    shares: float = Field(gt=0)

    @model_validator(mode="before")
    @classmethod
    def resolve_aliases(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "ticker" not in data and "symbol" in data:
            data["ticker"] = data["symbol"]
        if "shares" not in data:
            for alias in ("quantity", "qty"):
                if alias in data:
                    data["shares"] = data[alias]
                    break
        return data

    @field_validator("ticker")
    @classmethod
    def validate_ticker(cls, v):
        try:
            return normalize_ticker(v)
        except ValidationError as e:
            raise ValueError(str(e))

    @field_validator("shares", mode="before")
    @classmethod
    def reject_bool(cls, v):
        if isinstance(v, bool):
            raise ValueError("shares must be a number")
        return v


def format_portfolio(portfolio: Portfolio) -> str:
    lines = [f"Your cash balance is {format_money(portfolio.cash)}.", "Current holdings:"]
    if portfolio.holdings:
        for ticker, shares in sorted(portfolio.holdings.items()):
            lines.append(f"  - {ticker}: {format_shares(shares)} shares")
    else:
        lines.append("  (none)")

    lines.append("")
    lines.append("Trade history:")
    if portfolio.history:
        for trade in portfolio.history:
            lines.append(
                f"  - {trade.date.isoformat()} {trade.side.value} {trade.ticker} "
                f"{format_shares(trade.shares)} shares at {format_money(trade.price)} per share, "
                f"for a total of {format_money(trade.total)}"
            )
    else:
        lines.append("  (no trades yet)")
    return "\n".join(lines)


class ToolDispatcher:
    """Runs tool calls against the brokerage, price resolver and search client"""

    def __init__(
        self,
        broker: BrokerPort,
        price_resolver: PriceResolver,
        reconciler: PortfolioReconciler,
        web_search: Optional[WebSearchClient] = None,
        time_in_force: str = "gtc",
        min_short_equity: float = 40000.0,
        short_margin_ratio: float = 0.5,
        starting_capital: float = 1000.0,
        event_logger: Optional[SessionEventLogger] = None,
    ):
        self.broker = broker
        self.price_resolver = price_resolver
        self.reconciler = reconciler
        self.web_search = web_search
        self.time_in_force = time_in_force
        self.min_short_equity = min_short_equity
        self.short_margin_ratio = short_margin_ratio
        self.starting_capital = starting_capital
        self.event_logger = event_logger

        self._handlers: Dict[ToolName, Callable[[Dict[str, Any], SessionContext], Awaitable[str]]] = {
            ToolName.THINK: self._think,
            ToolName.GET_STOCK_PRICE: self._get_stock_price,
            ToolName.GET_PORTFOLIO: self._get_portfolio,
            ToolName.GET_NET_WORTH: self._get_net_worth,
            ToolName.WEB_SEARCH: self._web_search,
            ToolName.BUY: self._buy,
            ToolName.SELL: self._sell,
            ToolName.SHORT_SELL: self._short_sell,
            ToolName.COVER_SHORT: self._cover_short,
        }

    async def dispatch(self, call: ToolCall, context: Optional[SessionContext] = None) -> str:
        """
        Execute one tool call.

        Args:
            call: Normalized tool call
            context: Session context receiving call and order records

        Returns:
            Human-readable result; never raises
        """
        context = context or SessionContext(profile="adhoc")
        context.tool_calls.append(call.name)
        logger.info(f"Tool call: {call.name}({call.args}) [origin={call.origin.value}]")

        handler = self._handlers.get(call.tool)
        try:
            if handler is None:
                logger.warning(f"Unknown function requested: {call.name}")
                result = f"Unknown function: {call.name}"
            elif call.parse_error:
                raise ValidationError(call.parse_error)
            else:
                result = await handler(call.args, context)
        except ValidationError as e:
            logger.warning(f"Invalid arguments for {call.name}: {e}")
            result = f"Invalid arguments for {call.name}: {e}"
        except TradingError as e:
            logger.info(f"{call.name} rejected: {e}")
            result = str(e)
        except Exception as e:
            logger.error(f"Tool {call.name} failed with args {call.args}: {e}", exc_info=True)
            result = f"Function execution failed for {call.name}: {e}"

        if self.event_logger is not None:
            self.event_logger.log_tool_call(context.session_id, call.name, call.args, result)
        return result

    async def _think(self, args: Dict[str, Any], context: SessionContext) -> str:
        thoughts = args.get("thought_process", args.get("thoughts"))
        if isinstance(thoughts, str):
            thoughts = [thoughts]
        if not isinstance(thoughts, list) or not thoughts:
            raise ValidationError("thought_process must be a non-empty list of strings")

        for i, thought in enumerate(thoughts, 1):
            logger.info(f"Thought {i}: {thought}")
        context.thoughts.extend(str(t) for t in thoughts)
        return f"Completed thinking with {len(thoughts)} steps of reasoning."

    async def _get_stock_price(self, args: Dict[str, Any], context: SessionContext) -> str:
        tickers = args.get("tickers")
        if isinstance(tickers, str):
            tickers = [t.strip() for t in tickers.split(",") if t.strip()]
        if not tickers:
            single = args.get("ticker", args.get("symbol"))
            tickers = [single] if single else []
        if not tickers:
            raise ValidationError("provide 'ticker' or 'tickers'")

        symbols = [normalize_ticker(t) for t in tickers]
        quotes = await self.price_resolver.resolve_many(symbols)
        lines = []
        for quote in quotes:
            line = f"{quote.ticker}: ${quote.price:.2f}"
            if quote.is_synthetic:
                line += " (estimated, live quote unavailable)"
            lines.append(line)
        return "\n".join(lines)

    async def _get_portfolio(self, args: Dict[str, Any], context: SessionContext) -> str:
        portfolio = await self.reconciler.get_portfolio()
        return format_portfolio(portfolio)

    async def _get_net_worth(self, args: Dict[str, Any], context: SessionContext) -> str:
        portfolio = await self.reconciler.get_portfolio()
        net_worth = await self.reconciler.calculate_net_worth(portfolio)
        holdings_value = await self.reconciler.holdings_value(portfolio.holdings)
        annualized = await self.reconciler.calculate_annualized_return(portfolio, datetime.now(timezone.utc))

        start = self.starting_capital
        change = net_worth - start
        direction = "Up" if change >= 0 else "Down"
        if annualized is None:
            annualized_text = "not enough history yet (less than one day since the first trade)"
        else:
            annualized_text = f"{annualized:.2f}%"

        return "\n".join([
            f"Your net worth is {format_money(net_worth)}.",
            f"Cash: {format_money(portfolio.cash)}",
            f"Holdings value: {format_money(holdings_value)}",
            f"Annualized return: {annualized_text} (started with {format_money(start)})",
            f"{direction} {format_money(abs(change))} ({change / start * 100:+.2f}%) from the starting {format_money(start)}.",
        ])

    async def _web_search(self, args: Dict[str, Any], context: SessionContext) -> str:
        query = args.get("query", args.get("q"))
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("query must be a non-empty string")
        if self.web_search is None:
            return UNAVAILABLE_MESSAGE
        return await self.web_search.search(query.strip())

    def _trade_args(self, action: str, args: Dict[str, Any]) -> TradeArgs:
        try:
            trade = TradeArgs(**args)
        except PydanticValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'args'}: {err['msg']}" for err in e.errors()
            )
            raise ValidationError(problems)
        if self.time_in_force == "gtc" and not float(trade.shares).is_integer():
            raise ValidationError(f"{action} requires whole shares, got {trade.shares}")
        return trade

    async def _position_qty(self, ticker: str) -> float:
        positions = await self.broker.get_positions()
        for position in positions:
            if position.symbol == ticker:
                return position.qty
        return 0.0

    async def _submit(
        self,
        action: str,
        side: str,
        trade: TradeArgs,
        price: float,
        context: SessionContext,
    ) -> str:
        order = await self.broker.create_order(trade.ticker, trade.shares, side, self.time_in_force)
        context.orders_submitted += 1
        if self.event_logger is not None:
            self.event_logger.log_order(
                context.session_id, action, trade.ticker, trade.shares, price, order.id, order.status
            )
        estimate = trade.shares * price
        return (
            f"Submitted {action} order for {format_shares(trade.shares)} shares of {trade.ticker} "
            f"at about {format_money(price)} per share. Order ID: {order.id}. "
            f"Status: {order.status}. Estimated {'proceeds' if side == 'sell' else 'cost'}: "
            f"{format_money(estimate)}."
        )

    async def _buy(self, args: Dict[str, Any], context: SessionContext) -> str:
        trade = self._trade_args("buy", args)
        account = await self.broker.get_account()
        quote = await self.price_resolver.resolve(trade.ticker)
        cost = trade.shares * quote.price
        if account.buying_power < cost:
            raise TradingError(
                f"You don't have enough buying power to buy {format_shares(trade.shares)} shares of "
                f"{trade.ticker}. Your buying power is {format_money(account.buying_power)} and the "
                f"estimated cost is {format_money(cost)}."
            )
        return await self._submit("buy", "buy", trade, quote.price, context)

    async def _sell(self, args: Dict[str, Any], context: SessionContext) -> str:
        trade = self._trade_args("sell", args)
        held = await self._position_qty(trade.ticker)
        quote = await self.price_resolver.resolve(trade.ticker)
        if held < trade.shares:
            raise TradingError(
                f"You don't have enough shares of {trade.ticker} to sell. "
                f"You have {format_shares(held)} shares."
            )
        return await self._submit("sell", "sell", trade, quote.price, context)

    async def _short_sell(self, args: Dict[str, Any], context: SessionContext) -> str:
        trade = self._trade_args("short_sell", args)
        account = await self.broker.get_account()
        quote = await self.price_resolver.resolve(trade.ticker)
        if account.portfolio_value < self.min_short_equity:
            raise TradingError(
                f"Account equity of {format_money(account.portfolio_value)} is below the "
                f"{format_money(self.min_short_equity)} minimum required for short selling on Alpaca."
            )
        required = trade.shares * quote.price * self.short_margin_ratio
        if account.buying_power < required:
            raise TradingError(
                f"Insufficient buying power for short position. Need ~{format_money(required)} "
                f"but have {format_money(account.buying_power)}."
            )
        return await self._submit("short_sell", "sell", trade, quote.price, context)

    async def _cover_short(self, args: Dict[str, Any], context: SessionContext) -> str:
        trade = self._trade_args("cover_short", args)
        held = await self._position_qty(trade.ticker)
        quote = await self.price_resolver.resolve(trade.ticker)
        if held >= 0:
            raise TradingError(
                f"No short position found for {trade.ticker}. Current position: "
                f"{format_shares(held)} shares (positive = long, negative = short)."
            )
        if trade.shares > abs(held):
            raise TradingError(
                f"Cannot cover {format_shares(trade.shares)} shares - you only have "
                f"{format_shares(abs(held))} shares short in {trade.ticker}."
            )
        return await self._submit("cover_short", "buy", trade, quote.price, context)

    async def dispatch_all(self, calls: List[ToolCall], context: SessionContext) -> List[str]:
        """Run calls in order; trades must not interleave"""
        results = []
        for call in calls:
            results.append(await self.dispatch(call, context))
        return results
