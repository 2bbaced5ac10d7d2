"""
Configuration module for AutoTrade-LLM.

Provides the pydantic Config schema and a YAML/JSON loader with
environment variable expansion.
"""

from .config_schema import Config, derive_profile_name, normalize_gemini_model
from .loader import load_config

__all__ = [
    'Config',
    'derive_profile_name',
    'normalize_gemini_model',
    'load_config',
]
