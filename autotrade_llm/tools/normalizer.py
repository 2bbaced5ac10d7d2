"""
Tool-call normalization.

Every provider's way of asking for a tool ends up as a ToolCall:
- native structured calls (name + JSON arguments)
- pseudo-code strings such as ``print(buy(ticker='AAPL', shares=5))``
- JSON blobs embedded in free text, either ``{"tool": ..., "parameters": ...}``
  objects or arrays of ``{"tool_code": ...}`` objects
"""

import ast
import json
import logging
import re
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ToolName(str, Enum):
    THINK = "think"
    GET_STOCK_PRICE = "get_stock_price"
    GET_PORTFOLIO = "get_portfolio"
    GET_NET_WORTH = "get_net_worth"
    WEB_SEARCH = "web_search"
    BUY = "buy"
    SELL = "sell"
    SHORT_SELL = "short_sell"
    COVER_SHORT = "cover_short"


class CallOrigin(str, Enum):
    STRUCTURED = "structured"
    TOOL_CODE = "tool_code"
    TEXT_JSON = "text_json"


class ToolCall(BaseModel):
    """A provider-independent request to run one tool"""
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    call_id: Optional[str] = None
    origin: CallOrigin = CallOrigin.STRUCTURED
    parse_error: Optional[str] = None

    @property
    def tool(self) -> Optional[ToolName]:
        try:
            return ToolName(self.name)
        except ValueError:
            return None


def from_structured(
    name: str,
    arguments: Union[str, Dict[str, Any], None],
    call_id: Optional[str] = None,
) -> ToolCall:
    """
    Normalize a native function call.

    Arguments arrive either as a dict or as a JSON string; a string that is
    not a JSON object yields a call flagged with ``parse_error``.
    """
    if arguments is None or arguments == "":
        return ToolCall(name=name, call_id=call_id)
    if isinstance(arguments, dict):
        return ToolCall(name=name, args=dict(arguments), call_id=call_id)

    try:
        parsed = json.loads(arguments)
    except (TypeError, ValueError) as e:
        return ToolCall(name=name, call_id=call_id, parse_error=f"arguments are not valid JSON: {e}")
    if not isinstance(parsed, dict):
        return ToolCall(name=name, call_id=call_id, parse_error="arguments must be a JSON object")
    return ToolCall(name=name, args=parsed, call_id=call_id)


_CALL_PATTERN = re.compile(r"^(\w+)\((.*)\)$", re.DOTALL)
_PRINT_PATTERN = re.compile(r"^print\((.*)\)$", re.DOTALL)


def split_arguments(text: str) -> List[str]:
    """Split on top-level commas, ignoring commas inside quotes or brackets"""
    parts: List[str] = []
    current: List[str] = []
    quote: Optional[str] = None
    depth = 0
    escaped = False

    for ch in text:
        if quote:
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == quote:
                quote = None
            continue
        if ch in ("'", '"'):
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        elif ch == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(ch)

    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


def _literal(raw: str) -> Any:
    try:
        return ast.literal_eval(raw)
    except (ValueError, SyntaxError):
        return raw.strip("'\"")


def parse_tool_code(code: str) -> Optional[ToolCall]:
    """
    Parse a pseudo-code call such as ``print(get_stock_price(ticker='AAPL'))``.

    Returns:
        ToolCall, or None if the string is not a function call
    """
    text = code.strip()
    printed = _PRINT_PATTERN.match(text)
    if printed:
        text = printed.group(1).strip()

    match = _CALL_PATTERN.match(text)
    if not match:
        logger.debug(f"Not a tool_code call: {code!r}")
        return None

    name, arg_text = match.group(1), match.group(2)
    args: Dict[str, Any] = {}
    for part in split_arguments(arg_text):
        if "=" not in part:
            logger.debug(f"Ignoring positional tool_code argument {part!r} in {name}")
            continue
        key, raw = part.split("=", 1)
        args[key.strip()] = _literal(raw.strip())
    return ToolCall(name=name, args=args, origin=CallOrigin.TOOL_CODE)


def _iter_json_values(text: str) -> Iterator[Any]:
    """Yield every top-level JSON object or array embedded in text"""
    decoder = json.JSONDecoder()
    pos = 0
    while True:
        starts = [i for i in (text.find("{", pos), text.find("[", pos)) if i != -1]
        if not starts:
            return
        start = min(starts)
        try:
            value, end = decoder.raw_decode(text, start)
        except ValueError:
            pos = start + 1
            continue
        yield value
        pos = end


def _from_json_value(value: Any) -> List[ToolCall]:
    if isinstance(value, list):
        calls: List[ToolCall] = []
        for entry in value:
            calls.extend(_from_json_value(entry))
        return calls

    if not isinstance(value, dict):
        return []

    if isinstance(value.get("tool_code"), str):
        call = parse_tool_code(value["tool_code"])
        return [call] if call else []

    name = value.get("tool")
    if isinstance(name, str) and name:
        params = value.get("parameters", value.get("args", {}))
        if not isinstance(params, dict):
            params = {}
        return [ToolCall(name=name, args=params, origin=CallOrigin.TEXT_JSON)]
    return []


def parse_text_tool_calls(text: str) -> List[ToolCall]:
    """
    Extract tool calls written into a free-text model answer.

    Each embedded JSON value (fenced in ```json blocks or bare) is read once.
    """
    if not text:
        return []
    calls: List[ToolCall] = []
    for value in _iter_json_values(text):
        calls.extend(_from_json_value(value))
    if calls:
        logger.info(f"Parsed {len(calls)} tool call(s) from text: {[c.name for c in calls]}")
    return calls


_TOOL_MARKERS = re.compile(r'"tool"\s*:|"tool_code"\s*:|\bprint\(\w+\(')


def looks_like_tool_call(text: str) -> bool:
    """True when text appears to attempt a tool call"""
    return bool(text and _TOOL_MARKERS.search(text))
