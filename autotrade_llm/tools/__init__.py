"""
Tools module - tool catalog, call normalization and dispatch
"""

from .catalog import TOOL_CATALOG
from .normalizer import (
    CallOrigin,
    ToolCall,
    ToolName,
    from_structured,
    looks_like_tool_call,
    parse_text_tool_calls,
    parse_tool_code,
)

__all__ = [
    'TOOL_CATALOG',
    'CallOrigin',
    'ToolCall',
    'ToolName',
    'from_structured',
    'looks_like_tool_call',
    'parse_text_tool_calls',
    'parse_tool_code',
]
