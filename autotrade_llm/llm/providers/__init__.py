"""
LLM Provider Adapters

Auto-imports all provider adapters to register them with the factory.
"""

# Import all adapters to trigger registration
from autotrade_llm.llm.providers.openai_adapter import OpenAIAdapter
from autotrade_llm.llm.providers.google_adapter import GoogleAdapter

__all__ = [
    'OpenAIAdapter',
    'GoogleAdapter',
]
