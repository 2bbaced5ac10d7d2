"""
Performance calculations for reporting.

Realized P&L uses a weighted-average cost basis over prior buys of the same
ticker. CAGR annualizes total return from the first trade.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional

import pandas as pd

from autotrade_llm.portfolio.models import Trade, TradeSide

logger = logging.getLogger(__name__)

# Annualized return when less than a day of history exists
NOT_ENOUGH_DATA = None

PNL_COLUMNS = ["Date", "Type", "Ticker", "Shares", "Price", "Total", "P&L", "P&L_Percent"]


@dataclass(frozen=True)
class TradePnL:
    avg_buy_price: float
    pnl: float
    pnl_percent: float


def calculate_cagr(days: float, current_value: float, start_value: float = 1000.0) -> float:
    """
    Compound annual growth rate.

    CAGR = (current_value / start_value) ** (365 / days) - 1

    Args:
        days: Days elapsed since the first trade
        current_value: Portfolio value now
        start_value: Portfolio value at the first trade

    Returns:
        CAGR as a fraction (1.0 == 100%); math.inf when days == 0

    Raises:
        ValueError: For negative days or non-positive values
    """
    if days < 0:
        raise ValueError(f"days must be >= 0, got {days}")
    if current_value <= 0 or start_value <= 0:
        raise ValueError(
            f"values must be positive (current={current_value}, start={start_value})"
        )
    if days == 0:
        return math.inf

    try:
        return (current_value / start_value) ** (365.0 / days) - 1
    except OverflowError:
        return math.inf


def trade_pnl(trade: Trade, history: List[Trade]) -> Optional[TradePnL]:
    """
    Realized P&L of a sell against the weighted-average cost of prior buys.

    Only buys of the same ticker dated strictly before the sell count.

    Returns:
        TradePnL, or None for buys and for sells with no prior buys (e.g. shorts)
    """
    if trade.side != TradeSide.SELL:
        return None

    prior_buys = [
        t for t in history
        if t.side == TradeSide.BUY and t.ticker == trade.ticker and t.date < trade.date
    ]
    total_shares = sum(t.shares for t in prior_buys)
    if not prior_buys or total_shares <= 0:
        return None

    avg_buy_price = sum(t.total for t in prior_buys) / total_shares
    if avg_buy_price <= 0:
        return None

    pnl = (trade.price - avg_buy_price) * trade.shares
    pnl_percent = (trade.price - avg_buy_price) / avg_buy_price * 100
    return TradePnL(avg_buy_price=avg_buy_price, pnl=pnl, pnl_percent=pnl_percent)


def pnl_table(history: List[Trade]) -> pd.DataFrame:
    """
    One row per trade with realized P&L where it can be computed.

    P&L cells are None when unreported.
    """
    rows = []
    for trade in sorted(history, key=lambda t: t.date):
        result = trade_pnl(trade, history)
        rows.append({
            "Date": trade.date.isoformat(),
            "Type": trade.side.value,
            "Ticker": trade.ticker,
            "Shares": trade.shares,
            "Price": round(trade.price, 2),
            "Total": round(trade.total, 2),
            "P&L": round(result.pnl, 2) if result else None,
            "P&L_Percent": round(result.pnl_percent, 2) if result else None,
        })
    return pd.DataFrame(rows, columns=PNL_COLUMNS)
