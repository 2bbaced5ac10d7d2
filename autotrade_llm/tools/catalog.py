"""
Tool catalog sent to the model provider with every request.

Schemas stick to the JSON-schema subset accepted by both OpenAI and Gemini
function declarations (type, description, properties, required, items).
"""

from typing import Any, Dict, List

from autotrade_llm.tools.normalizer import ToolName


def _ticker_trade(action: str) -> Dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            "ticker": {"type": "string", "description": "Stock ticker symbol, e.g. AAPL"},
            "shares": {"type": "number", "description": f"Number of shares to {action}"},
        },
        "required": ["ticker", "shares"],
    }


TOOL_CATALOG: List[Dict[str, Any]] = [
    {
        "name": ToolName.THINK.value,
        "description": (
            "Record your step-by-step reasoning before acting. Call this before any "
            "other tool in a turn."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "thought_process": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Ordered reasoning steps",
                },
            },
            "required": ["thought_process"],
        },
    },
    {
        "name": ToolName.GET_STOCK_PRICE.value,
        "description": "Get the current price of one or more stocks.",
        "parameters": {
            "type": "object",
            "properties": {
                "ticker": {"type": "string", "description": "Single ticker symbol"},
                "tickers": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Several ticker symbols",
                },
            },
        },
    },
    {
        "name": ToolName.GET_PORTFOLIO.value,
        "description": "Get cash balance, current holdings and trade history.",
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": ToolName.GET_NET_WORTH.value,
        "description": "Get total account value, holdings value and annualized return.",
        "parameters": {"type": "object", "properties": {}},
    },
    {
        "name": ToolName.WEB_SEARCH.value,
        "description": "Search the web for market news and company information.",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
            },
            "required": ["query"],
        },
    },
    {
        "name": ToolName.BUY.value,
        "description": "Buy shares at market price.",
        "parameters": _ticker_trade("buy"),
    },
    {
        "name": ToolName.SELL.value,
        "description": "Sell shares you own at market price.",
        "parameters": _ticker_trade("sell"),
    },
    {
        "name": ToolName.SHORT_SELL.value,
        "description": (
            "Open a short position. Requires at least $40,000 account equity and "
            "buying power for about 50% of the position value."
        ),
        "parameters": _ticker_trade("short"),
    },
    {
        "name": ToolName.COVER_SHORT.value,
        "description": "Buy back shares to close an existing short position.",
        "parameters": _ticker_trade("cover"),
    },
]

