"""
AutoTrade-LLM: Language-model agent that manages a paper brokerage portfolio.

Session orchestration, tool dispatch, price resolution and thread persistence
for an autonomous trading loop.
"""

__version__ = "1.0.0"
