"""
Google Gemini Adapter

Supports: Gemini 2.5 Pro/Flash, 2.0 Flash, 1.5 Pro/Flash
API: https://ai.google.dev/api/python/google/generativeai

Native function calls become ToolCalls with generated call ids. When Gemini
writes a tool request into plain text instead, the orchestrator's text
parser picks it up.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions
from google.generativeai.types import GenerationConfig

from autotrade_llm.config.config_schema import normalize_gemini_model
from autotrade_llm.llm.llm_client import (
    LLMClient,
    LLMResponse,
    LLMError,
    RateLimitError,
    AuthenticationError,
    InvalidRequestError,
    LLMConnectionError,
    LLMClientFactory,
    message_text,
)
from autotrade_llm.memory.thread_store import FUNCTION_RESULT_TYPES, call_id_of, is_function_call
from autotrade_llm.tools.normalizer import from_structured

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    """Convert proto MapComposite/RepeatedComposite values to plain Python"""
    if isinstance(value, (str, bytes, int, float, bool)) or value is None:
        return value
    if hasattr(value, "items"):
        return {k: _plain(v) for k, v in value.items()}
    try:
        return [_plain(v) for v in value]
    except TypeError:
        return value


def _gemini_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Gemini schemas use upper-case type names"""
    converted = {}
    for key, value in schema.items():
        if key == "type" and isinstance(value, str):
            converted[key] = value.upper()
        elif key == "properties" and isinstance(value, dict):
            converted[key] = {name: _gemini_schema(prop) for name, prop in value.items()}
        elif key == "items" and isinstance(value, dict):
            converted[key] = _gemini_schema(value)
        else:
            converted[key] = value
    return converted


def _load_args(arguments: Any) -> Dict[str, Any]:
    if isinstance(arguments, dict):
        return arguments
    try:
        parsed = json.loads(arguments or "{}")
    except (TypeError, ValueError):
        return {}
    return parsed if isinstance(parsed, dict) else {}


class GoogleAdapter(LLMClient):
    """Google Gemini API adapter"""

    def __init__(self, model: str, api_key: str, **kwargs):
        super().__init__(normalize_gemini_model(model), api_key, **kwargs)
        genai.configure(api_key=api_key)

    @property
    def provider_name(self) -> str:
        return "google"

    def _convert_tools(self, tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        declarations = []
        for tool in tools:
            declaration = {"name": tool["name"], "description": tool["description"]}
            params = tool.get("parameters") or {}
            # Gemini rejects object schemas without properties
            if params.get("properties"):
                declaration["parameters"] = _gemini_schema(params)
            declarations.append(declaration)
        return [{"function_declarations": declarations}]

    def _convert_thread(self, thread: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """
        Convert thread items to Gemini contents.

        Consecutive items with the same role are merged so parallel function
        calls and their responses stay grouped in one turn each.
        """
        names_by_call = {call_id_of(i): i.get("name") for i in thread if is_function_call(i)}
        contents: List[Dict[str, Any]] = []

        def append(role: str, part: Any):
            if contents and contents[-1]["role"] == role:
                contents[-1]["parts"].append(part)
            else:
                contents.append({"role": role, "parts": [part]})

        for item in thread:
            item_type = item.get("type")
            if item_type == "reasoning":
                continue
            if item_type == "function_call":
                append("model", {"function_call": {
                    "name": item.get("name"),
                    "args": _load_args(item.get("arguments")),
                }})
            elif item_type in FUNCTION_RESULT_TYPES:
                append("user", {"function_response": {
                    "name": names_by_call.get(call_id_of(item), "unknown"),
                    "response": {"result": str(item.get("output", ""))},
                }})
            else:
                text = message_text(item)
                if text:
                    append("model" if item.get("role") == "assistant" else "user", text)
        return contents

    def _translate_error(self, e: Exception) -> LLMError:
        if isinstance(e, LLMError):
            return e
        if isinstance(e, google_exceptions.GoogleAPICallError):
            status = e.code if isinstance(e.code, int) else None
            if isinstance(e, google_exceptions.ResourceExhausted):
                return RateLimitError(str(e), self.provider_name, self.model)
            if isinstance(e, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
                return AuthenticationError(str(e), self.provider_name, self.model, status=status)
            if isinstance(e, (google_exceptions.InvalidArgument, google_exceptions.NotFound)):
                return InvalidRequestError(str(e), self.provider_name, self.model, status=status)
            return LLMError(str(e), self.provider_name, self.model, status=status)
        if isinstance(e, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
            return LLMConnectionError(str(e), self.provider_name, self.model)

        error_str = str(e).lower()
        if "quota" in error_str or "rate" in error_str:
            return RateLimitError(str(e), self.provider_name, self.model)
        elif "api key" in error_str or "auth" in error_str:
            return AuthenticationError(str(e), self.provider_name, self.model, status=401)
        elif "invalid" in error_str:
            return InvalidRequestError(str(e), self.provider_name, self.model, status=400)
        return LLMError(str(e), self.provider_name, self.model)

    async def generate(
        self,
        thread: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        instructions: str = "",
        temperature: float = 0.3,
        **kwargs
    ) -> LLMResponse:
        """Run one Gemini turn"""
        model = genai.GenerativeModel(
            self.model,
            system_instruction=instructions or None,
            tools=self._convert_tools(tools),
        )
        generation_config = GenerationConfig(
            temperature=self._normalize_temperature(temperature),
            **kwargs
        )

        try:
            response = await model.generate_content_async(
                self._convert_thread(thread),
                generation_config=generation_config,
            )
        except Exception as e:
            raise self._translate_error(e) from e

        items: List[Dict[str, Any]] = []
        tool_calls = []
        texts = []
        parts = response.candidates[0].content.parts if response.candidates else []
        for part in parts:
            function_call = getattr(part, "function_call", None)
            if function_call is not None and function_call.name:
                args = _plain(function_call.args) or {}
                call_id = f"call_{uuid.uuid4().hex[:24]}"
                items.append({
                    "type": "function_call",
                    "call_id": call_id,
                    "name": function_call.name,
                    "arguments": json.dumps(args),
                })
                tool_calls.append(from_structured(function_call.name, args, call_id=call_id))
            elif getattr(part, "text", ""):
                texts.append(part.text)
                items.append({"role": "assistant", "content": part.text})

        usage_dict = None
        cached_tokens = 0
        usage = getattr(response, "usage_metadata", None)
        if usage is not None:
            usage_dict = {
                "input_tokens": getattr(usage, 'prompt_token_count', 0),
                "output_tokens": getattr(usage, 'candidates_token_count', 0),
                "total_tokens": getattr(usage, 'total_token_count', 0)
            }
            cached_tokens = getattr(usage, 'cached_content_token_count', 0) or 0

        return LLMResponse(
            content="\n".join(texts).strip(),
            model=self.model,
            provider=self.provider_name,
            tool_calls=tool_calls,
            items=items,
            usage=usage_dict,
            cached_tokens=cached_tokens,
            cache_hit=cached_tokens > 0,
            raw_response=response
        )

    async def validate_credentials(self) -> None:
        try:
            await asyncio.to_thread(genai.get_model, f"models/{self.model}")
        except Exception as e:
            raise self._translate_error(e) from e
        logger.info(f"Gemini credentials valid for model {self.model}")


# Register provider
LLMClientFactory.register_provider("google", GoogleAdapter)
