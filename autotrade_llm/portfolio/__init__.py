"""
Portfolio module - canonical portfolio view, P&L and annualized return
"""

from .models import Portfolio, PriceQuote, PriceSource, Trade, TradeSide
from .performance import NOT_ENOUGH_DATA, TradePnL, calculate_cagr, trade_pnl

__all__ = [
    'Portfolio',
    'PriceQuote',
    'PriceSource',
    'Trade',
    'TradeSide',
    'NOT_ENOUGH_DATA',
    'TradePnL',
    'calculate_cagr',
    'trade_pnl',
]
