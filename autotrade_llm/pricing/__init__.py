"""
Pricing module - multi-source price resolution
"""

from .price_resolver import PriceResolver, normalize_ticker

__all__ = ['PriceResolver', 'normalize_ticker']
