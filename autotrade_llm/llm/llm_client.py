"""
Base LLM Client Interface

Abstract base class and factory for model providers.
Each adapter translates the provider-neutral thread and tool catalog into its
own protocol and reports tool requests as normalized ToolCalls.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
import logging

from autotrade_llm.errors import ApiError, NetworkError
from autotrade_llm.tools.normalizer import ToolCall

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Unified response format across all providers"""
    content: str
    model: str
    provider: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    items: List[Dict[str, Any]] = field(default_factory=list)  # thread items produced by this turn
    usage: Optional[Dict[str, int]] = None  # {"input_tokens": X, "output_tokens": Y, "total_tokens": Z}
    cached_tokens: int = 0
    cache_hit: bool = False
    raw_response: Optional[Any] = None  # Original provider response


class LLMError(ApiError):
    """Base exception for LLM-related errors"""
    def __init__(self, message: str, provider: str, model: str, status: Optional[int] = None):
        self.provider = provider
        self.model = model
        super().__init__(f"[{provider}/{model}] {message}", status=status, provider=provider, model=model)


class RateLimitError(LLMError):
    """Rate limit exceeded"""
    def __init__(self, message: str, provider: str, model: str, status: Optional[int] = 429):
        super().__init__(message, provider, model, status=status)


class AuthenticationError(LLMError):
    """Authentication failed"""
    pass


class InvalidRequestError(LLMError):
    """Invalid request parameters"""
    pass


class LLMConnectionError(LLMError, NetworkError):
    """Provider unreachable or timed out"""
    retryable = True


def is_reasoning_mismatch(error: BaseException) -> bool:
    """True when a provider rejected the thread for a function call missing its reasoning item or output"""
    text = str(error).lower()
    if "no tool output found" in text:
        return True
    return "reasoning" in text and ("function_call" in text or "required" in text)


def message_text(item: Dict[str, Any]) -> str:
    """Plain text of a message thread item (string content or a list of text parts)"""
    content = item.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
        return "".join(texts)
    return ""


class LLMClient(ABC):
    """
    Abstract base class for all LLM providers.

    Each provider adapter must implement this interface.
    """

    def __init__(self, model: str, api_key: str, **kwargs):
        """
        Initialize LLM client

        Args:
            model: Model identifier (e.g., "gpt-4o", "gemini-2.5-flash")
            api_key: API key for authentication
            **kwargs: Provider-specific configuration
        """
        self.model = model
        self.api_key = api_key
        self.config = kwargs

    @abstractmethod
    async def generate(
        self,
        thread: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        instructions: str = "",
        temperature: float = 0.3,
        **kwargs
    ) -> LLMResponse:
        """
        Run one model turn over the conversation thread

        Args:
            thread: Provider-neutral thread items
            tools: Tool catalog (name, description, JSON-schema parameters)
            instructions: System instructions
            temperature: Sampling temperature
            **kwargs: Provider-specific parameters

        Returns:
            LLMResponse with text, normalized tool calls and new thread items

        Raises:
            LLMError: On provider errors
            RateLimitError: When rate limited
            AuthenticationError: On auth failure
        """
        pass

    @abstractmethod
    async def validate_credentials(self) -> None:
        """Cheap authenticated call; raises LLMError if the key or model is unusable"""
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return provider name (e.g., 'openai', 'google')"""
        pass

    def _normalize_temperature(self, temperature: float) -> float:
        """Ensure temperature is in valid range [0.0, 1.0]"""
        return max(0.0, min(1.0, temperature))


class LLMClientFactory:
    """
    Factory for creating LLM client instances.

    Automatically selects the appropriate provider adapter based on provider name.
    """

    _registry: Dict[str, type] = {}

    @classmethod
    def register_provider(cls, provider_name: str, client_class: type):
        """Register a provider adapter"""
        cls._registry[provider_name.lower()] = client_class
        logger.debug(f"Registered LLM provider: {provider_name}")

    @classmethod
    def create(
        cls,
        provider: str,
        model: str,
        api_key: str,
        **kwargs
    ) -> LLMClient:
        """
        Create an LLM client instance

        Args:
            provider: Provider name (openai, google)
            model: Model identifier
            api_key: API key for authentication
            **kwargs: Provider-specific configuration

        Returns:
            LLMClient instance

        Raises:
            ValueError: If provider not supported
        """
        provider_lower = provider.lower()

        if provider_lower not in cls._registry:
            available = ", ".join(cls._registry.keys())
            raise ValueError(
                f"Unsupported provider: {provider}. "
                f"Available providers: {available}"
            )

        client_class = cls._registry[provider_lower]
        logger.info(f"Creating LLM client: {provider}/{model}")

        return client_class(model=model, api_key=api_key, **kwargs)


def get_llm_client(
    provider: str,
    model: str,
    api_key: str,
    **kwargs
) -> LLMClient:
    """
    Convenience function to create an LLM client

    Importing this module does not register adapters; importing
    autotrade_llm.llm.providers does.
    """
    # Adapters register themselves on import
    import autotrade_llm.llm.providers  # noqa: F401

    return LLMClientFactory.create(provider, model, api_key, **kwargs)
