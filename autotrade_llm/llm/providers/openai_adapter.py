"""
OpenAI Adapter

Supports: GPT-4o, GPT-4.1, o-series reasoning models
API: https://platform.openai.com/docs/api-reference/responses

Uses the Responses API so reasoning and function-call items come back as
thread items that can be persisted and replayed as-is.
"""

import logging
from typing import Any, Dict, List

from openai import (
    APIConnectionError,
    APIStatusError,
    AsyncOpenAI,
    AuthenticationError as OpenAIAuthError,
    BadRequestError,
    OpenAIError,
    PermissionDeniedError,
    RateLimitError as OpenAIRateLimit,
)

from autotrade_llm.llm.llm_client import (
    LLMClient,
    LLMResponse,
    LLMError,
    RateLimitError,
    AuthenticationError,
    InvalidRequestError,
    LLMConnectionError,
    LLMClientFactory,
)
from autotrade_llm.memory.thread_store import FUNCTION_RESULT_TYPES, call_id_of
from autotrade_llm.tools.normalizer import from_structured

logger = logging.getLogger(__name__)

# Reasoning models reject the temperature parameter
_NO_TEMPERATURE_PREFIXES = ("o1", "o3", "o4", "gpt-5")


class OpenAIAdapter(LLMClient):
    """OpenAI Responses API adapter"""

    def __init__(self, model: str, api_key: str, **kwargs):
        super().__init__(model, api_key, **kwargs)
        # Retries are owned by the session retry policy
        self.client = kwargs.get('client') or AsyncOpenAI(
            api_key=api_key,
            timeout=kwargs.get('timeout', 120.0),
            max_retries=0
        )

    @property
    def provider_name(self) -> str:
        return "openai"

    def _convert_tools(self, tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "name": tool["name"],
                "description": tool["description"],
                "parameters": tool["parameters"],
            }
            for tool in tools
        ]

    def _convert_thread(self, thread: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Map stored thread items to Responses API input items"""
        items = []
        for item in thread:
            if item.get("type") in FUNCTION_RESULT_TYPES:
                items.append({
                    "type": "function_call_output",
                    "call_id": call_id_of(item),
                    "output": str(item.get("output", "")),
                })
            elif item.get("type") == "function_call" and "callId" in item:
                converted = {k: v for k, v in item.items() if k != "callId"}
                converted["call_id"] = item["callId"]
                items.append(converted)
            else:
                items.append(item)
        return items

    def _translate_error(self, e: Exception) -> LLMError:
        if isinstance(e, LLMError):
            return e
        if isinstance(e, OpenAIRateLimit):
            return RateLimitError(str(e), self.provider_name, self.model)
        if isinstance(e, (OpenAIAuthError, PermissionDeniedError)):
            return AuthenticationError(str(e), self.provider_name, self.model, status=e.status_code)
        if isinstance(e, BadRequestError):
            return InvalidRequestError(str(e), self.provider_name, self.model, status=e.status_code)
        if isinstance(e, APIStatusError):
            return LLMError(str(e), self.provider_name, self.model, status=e.status_code)
        if isinstance(e, APIConnectionError):
            return LLMConnectionError(str(e), self.provider_name, self.model)
        if isinstance(e, OpenAIError):
            return LLMError(str(e), self.provider_name, self.model)
        return LLMError(f"Unexpected error: {str(e)}", self.provider_name, self.model)

    async def generate(
        self,
        thread: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        instructions: str = "",
        temperature: float = 0.3,
        **kwargs
    ) -> LLMResponse:
        """Run one Responses API turn"""
        request: Dict[str, Any] = {
            "model": self.model,
            "input": self._convert_thread(thread),
            "tools": self._convert_tools(tools),
        }
        if instructions:
            request["instructions"] = instructions
        if not self.model.startswith(_NO_TEMPERATURE_PREFIXES):
            request["temperature"] = self._normalize_temperature(temperature)
        request.update(kwargs)

        try:
            response = await self.client.responses.create(**request)
        except Exception as e:
            raise self._translate_error(e) from e

        items = [item.model_dump(exclude_none=True) for item in response.output]
        tool_calls = [
            from_structured(item["name"], item.get("arguments"), call_id=item["call_id"])
            for item in items
            if item.get("type") == "function_call"
        ]

        usage = None
        cached_tokens = 0
        if response.usage is not None:
            usage = {
                "input_tokens": response.usage.input_tokens,
                "output_tokens": response.usage.output_tokens,
                "total_tokens": response.usage.total_tokens
            }
            details = getattr(response.usage, "input_tokens_details", None)
            cached_tokens = getattr(details, "cached_tokens", 0) or 0

        if cached_tokens:
            logger.debug(f"OpenAI prompt cache: {cached_tokens} cached input tokens")

        return LLMResponse(
            content=(response.output_text or "").strip(),
            model=self.model,
            provider=self.provider_name,
            tool_calls=tool_calls,
            items=items,
            usage=usage,
            cached_tokens=cached_tokens,
            cache_hit=cached_tokens > 0,
            raw_response=response
        )

    async def validate_credentials(self) -> None:
        try:
            await self.client.models.list()
        except Exception as e:
            raise self._translate_error(e) from e
        logger.info(f"OpenAI credentials valid for model {self.model}")


# Register provider
LLMClientFactory.register_provider("openai", OpenAIAdapter)
