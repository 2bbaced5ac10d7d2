"""
Price Resolver: ticker -> usable trade price through an ordered source chain.

1. primary   - brokerage latest quote, mid of bid/ask
2. secondary - yfinance daily history, last close
3. fallback  - known-recent price table, else a seeded pseudo-random price

Each remote stage is retried only for transient failures. The fallback stage
cannot fail, so a syntactically valid ticker always resolves.
"""

import asyncio
import logging
import random
import re
from typing import Dict, Iterable, List, Optional

import yfinance as yf

from autotrade_llm.errors import ApiError, ValidationError
from autotrade_llm.execution.models import BrokerPort
from autotrade_llm.portfolio.models import PriceQuote, PriceSource
from autotrade_llm.utils.retry import RetryPolicy

logger = logging.getLogger(__name__)

TICKER_PATTERN = re.compile(r"^[A-Z][A-Z0-9.\-]{0,9}$")


def normalize_ticker(ticker) -> str:
    """
    Uppercase and validate a ticker symbol.

    Raises:
        ValidationError: If the symbol is empty or malformed
    """
    if not isinstance(ticker, str):
        raise ValidationError(f"Ticker must be a string, got {type(ticker).__name__}")
    symbol = ticker.strip().upper()
    if not TICKER_PATTERN.match(symbol):
        raise ValidationError(f"Invalid ticker symbol: {ticker!r}", ticker=ticker)
    return symbol


def fetch_last_close(ticker: str, period: str = "5d") -> float:
    """
    Last daily close from Yahoo Finance (blocking).

    Raises:
        ApiError: status 404 when Yahoo has no data for the ticker
    """
    history = yf.Ticker(ticker).history(period=period, interval="1d")
    if history is None or history.empty or "Close" not in history:
        raise ApiError(f"No market data found for {ticker}", status=404, ticker=ticker)
    closes = history["Close"].dropna()
    if closes.empty:
        raise ApiError(f"No closing price found for {ticker}", status=404, ticker=ticker)
    return float(closes.iloc[-1])


class PriceResolver:
    """Resolve tickers to prices, degrading from real to synthetic data"""

    def __init__(
        self,
        broker: Optional[BrokerPort],
        retry_policy: Optional[RetryPolicy] = None,
        known_prices: Optional[Dict[str, float]] = None,
        fallback_seed: int = 42,
        fallback_range: tuple = (50.0, 250.0),
        secondary_lookback: str = "5d",
    ):
        """
        Args:
            broker: Brokerage with get_latest_quote (None skips the primary stage)
            retry_policy: Retry settings for the secondary source
            known_prices: Fallback table of recent prices for common tickers
            fallback_seed: Seed mixed with the ticker for synthetic prices
            fallback_range: Inclusive bounds for synthetic prices
            secondary_lookback: yfinance period for the last-close lookup
        """
        self.broker = broker
        self.retry_policy = retry_policy or RetryPolicy()
        self.known_prices = {k.upper(): v for k, v in (known_prices or {}).items()}
        self.fallback_seed = fallback_seed
        self.fallback_range = fallback_range
        self.secondary_lookback = secondary_lookback

    @classmethod
    def from_config(cls, broker: Optional[BrokerPort], pricing_config, retry_policy: RetryPolicy) -> "PriceResolver":
        return cls(
            broker,
            retry_policy=retry_policy,
            known_prices=pricing_config.known_prices,
            fallback_seed=pricing_config.fallback_seed,
            fallback_range=(pricing_config.fallback_min, pricing_config.fallback_max),
            secondary_lookback=pricing_config.secondary_lookback,
        )

    async def resolve(self, ticker: str) -> PriceQuote:
        """
        Resolve a ticker to a price rounded to 2 decimal places.

        Raises:
            ValidationError: Only for a malformed ticker
        """
        symbol = normalize_ticker(ticker)

        price = await self._primary(symbol)
        if price is not None:
            return PriceQuote(ticker=symbol, price=round(price, 2), source=PriceSource.PRIMARY)

        price = await self._secondary(symbol)
        if price is not None:
            return PriceQuote(ticker=symbol, price=round(price, 2), source=PriceSource.SECONDARY)

        price = self._fallback(symbol)
        logger.warning(f"Using fallback price for {symbol}: ${price:.2f} (source=fallback)")
        return PriceQuote(ticker=symbol, price=price, source=PriceSource.FALLBACK)

    async def resolve_many(self, tickers: Iterable[str]) -> List[PriceQuote]:
        return list(await asyncio.gather(*(self.resolve(t) for t in tickers)))

    async def _primary(self, symbol: str) -> Optional[float]:
        if self.broker is None:
            return None
        try:
            quote = await self.broker.get_latest_quote(symbol)
        except Exception as e:
            logger.warning(f"Primary quote failed for {symbol}: {e}")
            return None

        if quote.bid <= 0 or quote.ask <= 0:
            logger.warning(f"Primary quote for {symbol} missing bid/ask (bid={quote.bid}, ask={quote.ask})")
            return None
        return (quote.bid + quote.ask) / 2

    async def _secondary(self, symbol: str) -> Optional[float]:
        try:
            price = await self.retry_policy.run(
                lambda: asyncio.to_thread(fetch_last_close, symbol, self.secondary_lookback),
                description=f"yfinance.last_close[{symbol}]",
            )
        except Exception as e:
            logger.warning(f"Secondary price failed for {symbol}: {e}")
            return None

        if price is None or price != price or price <= 0:
            logger.warning(f"Secondary price for {symbol} unusable: {price}")
            return None
        return price

    def _fallback(self, symbol: str) -> float:
        if symbol in self.known_prices:
            return round(float(self.known_prices[symbol]), 2)
        low, high = self.fallback_range
        rng = random.Random(f"{self.fallback_seed}:{symbol}")
        return round(rng.uniform(low, high), 2)
