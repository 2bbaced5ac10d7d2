"""
Tests for the OpenAI and Gemini adapters with mocked SDK clients
"""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, Mock, patch

import openai
import pytest
from google.api_core import exceptions as google_exceptions

from autotrade_llm.llm.llm_client import (
    AuthenticationError,
    LLMClientFactory,
    LLMError,
    RateLimitError,
    get_llm_client,
    is_reasoning_mismatch,
    message_text,
)
from autotrade_llm.llm.providers.google_adapter import GoogleAdapter
from autotrade_llm.llm.providers.openai_adapter import OpenAIAdapter
from autotrade_llm.tools.catalog import TOOL_CATALOG
from autotrade_llm.tools.normalizer import CallOrigin

GENAI = "autotrade_llm.llm.providers.google_adapter.genai"


def output_item(data):
    item = Mock()
    item.model_dump.return_value = data
    return item


def openai_response(items, text="", cached_tokens=0):
    return SimpleNamespace(
        output=[output_item(i) for i in items],
        output_text=text,
        usage=SimpleNamespace(
            input_tokens=100,
            output_tokens=20,
            total_tokens=120,
            input_tokens_details=SimpleNamespace(cached_tokens=cached_tokens),
        ),
    )


# Test fixtures
@pytest.fixture
def openai_client():
    client = MagicMock()
    client.responses.create = AsyncMock()
    client.models.list = AsyncMock()
    return client


@pytest.fixture
def gemini():
    with patch(GENAI) as genai:
        yield genai, GoogleAdapter("gemini-2.5-flash", "gemini-key")


class TestOpenAIAdapter:
    """Test the Responses API adapter"""

    def test_structured_call(self, openai_client):
        arguments = json.dumps({"ticker": "AAPL", "shares": 1})
        openai_client.responses.create.return_value = openai_response(
            [
                {"type": "reasoning", "id": "rs_1", "summary": []},
                {"type": "function_call", "id": "fc_1", "call_id": "call_1", "name": "buy", "arguments": arguments},
            ],
            cached_tokens=64,
        )
        adapter = OpenAIAdapter("gpt-4o", "sk-test", client=openai_client)

        response = asyncio.run(adapter.generate([{"role": "user", "content": "go"}], TOOL_CATALOG, "Trade well"))

        assert response.provider == "openai"
        assert response.tool_calls[0].name == "buy"
        assert response.tool_calls[0].args == {"ticker": "AAPL", "shares": 1}
        assert response.tool_calls[0].call_id == "call_1"
        assert response.tool_calls[0].origin == CallOrigin.STRUCTURED
        assert [i["type"] for i in response.items] == ["reasoning", "function_call"]
        assert response.cached_tokens == 64
        assert response.cache_hit
        assert response.usage == {"input_tokens": 100, "output_tokens": 20, "total_tokens": 120}

        request = openai_client.responses.create.call_args.kwargs
        assert request["model"] == "gpt-4o"
        assert request["instructions"] == "Trade well"
        assert request["temperature"] == 0.3
        assert request["tools"][0] == {
            "type": "function",
            "name": "think",
            "description": TOOL_CATALOG[0]["description"],
            "parameters": TOOL_CATALOG[0]["parameters"],
        }

    def test_text_answer(self, openai_client):
        openai_client.responses.create.return_value = openai_response(
            [{"type": "message", "role": "assistant", "content": [{"type": "output_text", "text": "Holding."}]}],
            text=" Holding. ",
        )
        adapter = OpenAIAdapter("gpt-4o", "sk-test", client=openai_client)

        response = asyncio.run(adapter.generate([], TOOL_CATALOG))

        assert response.content == "Holding."
        assert response.tool_calls == []
        assert not response.cache_hit

    def test_reasoning_model_omits_temperature(self, openai_client):
        openai_client.responses.create.return_value = openai_response([], text="ok")
        adapter = OpenAIAdapter("o3-mini", "sk-test", client=openai_client)

        asyncio.run(adapter.generate([], TOOL_CATALOG, temperature=0.7))

        assert "temperature" not in openai_client.responses.create.call_args.kwargs

    def test_legacy_thread_items_converted(self, openai_client):
        adapter = OpenAIAdapter("gpt-4o", "sk-test", client=openai_client)
        thread = [
            {"type": "function_call", "callId": "call_1", "name": "think", "arguments": "{}"},
            {"type": "function_call_result", "callId": "call_1", "output": 5},
        ]

        converted = adapter._convert_thread(thread)

        assert converted[0] == {"type": "function_call", "call_id": "call_1", "name": "think", "arguments": "{}"}
        assert converted[1] == {"type": "function_call_output", "call_id": "call_1", "output": "5"}

    def test_rate_limit_translated(self, openai_client):
        openai_client.responses.create.side_effect = openai.RateLimitError(
            "Rate limit reached", response=Mock(status_code=429, headers={}), body=None
        )
        adapter = OpenAIAdapter("gpt-4o", "sk-test", client=openai_client)

        with pytest.raises(RateLimitError) as exc_info:
            asyncio.run(adapter.generate([], TOOL_CATALOG))

        assert exc_info.value.status == 429
        assert exc_info.value.retryable

    def test_invalid_key_translated(self, openai_client):
        openai_client.models.list.side_effect = openai.AuthenticationError(
            "Incorrect API key provided", response=Mock(status_code=401, headers={}), body=None
        )
        adapter = OpenAIAdapter("gpt-4o", "sk-test", client=openai_client)

        with pytest.raises(AuthenticationError) as exc_info:
            asyncio.run(adapter.validate_credentials())

        assert exc_info.value.status == 401
        assert not exc_info.value.retryable


class TestGoogleAdapter:
    """Test the Gemini adapter"""

    def test_tool_declarations(self, gemini):
        _, adapter = gemini

        declarations = adapter._convert_tools(TOOL_CATALOG)[0]["function_declarations"]
        by_name = {d["name"]: d for d in declarations}

        assert "parameters" not in by_name["get_portfolio"]
        assert by_name["buy"]["parameters"]["type"] == "OBJECT"
        assert by_name["buy"]["parameters"]["properties"]["shares"]["type"] == "NUMBER"
        assert by_name["think"]["parameters"]["properties"]["thought_process"]["items"]["type"] == "STRING"

    def test_thread_conversion(self, gemini):
        _, adapter = gemini
        thread = [
            {"role": "user", "content": "Session start"},
            {"type": "reasoning", "id": "rs_1", "summary": []},
            {"type": "function_call", "call_id": "call_a", "name": "get_portfolio", "arguments": "{}"},
            {"type": "function_call", "call_id": "call_b", "name": "get_stock_price", "arguments": '{"ticker": "AAPL"}'},
            {"type": "function_call_output", "call_id": "call_a", "output": "cash"},
            {"type": "function_call_output", "call_id": "call_b", "output": "AAPL: $200.00"},
            {"role": "assistant", "content": [{"type": "output_text", "text": "Done."}]},
        ]

        contents = adapter._convert_thread(thread)

        assert [c["role"] for c in contents] == ["user", "model", "user", "model"]
        assert contents[0]["parts"] == ["Session start"]
        assert contents[1]["parts"][1] == {"function_call": {"name": "get_stock_price", "args": {"ticker": "AAPL"}}}
        assert contents[2]["parts"][0] == {
            "function_response": {"name": "get_portfolio", "response": {"result": "cash"}},
        }
        assert len(contents[2]["parts"]) == 2
        assert contents[3]["parts"] == ["Done."]

    def test_generate_function_call(self, gemini):
        genai, adapter = gemini
        part = SimpleNamespace(function_call=SimpleNamespace(name="buy", args={"ticker": "AAPL", "shares": 1.0}), text="")
        response = SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))],
            usage_metadata=SimpleNamespace(
                prompt_token_count=10,
                candidates_token_count=5,
                total_token_count=15,
                cached_content_token_count=8,
            ),
        )
        genai.GenerativeModel.return_value.generate_content_async = AsyncMock(return_value=response)

        result = asyncio.run(adapter.generate([{"role": "user", "content": "go"}], TOOL_CATALOG, "Trade"))

        assert result.provider == "google"
        call = result.tool_calls[0]
        assert call.name == "buy"
        assert call.args == {"ticker": "AAPL", "shares": 1.0}
        assert call.call_id.startswith("call_")
        assert result.items[0]["call_id"] == call.call_id
        assert json.loads(result.items[0]["arguments"]) == {"ticker": "AAPL", "shares": 1.0}
        assert result.cache_hit
        assert genai.GenerativeModel.call_args.kwargs["system_instruction"] == "Trade"

    def test_generate_text(self, gemini):
        genai, adapter = gemini
        part = SimpleNamespace(function_call=None, text="Holding positions.")
        response = SimpleNamespace(
            candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))],
            usage_metadata=None,
        )
        genai.GenerativeModel.return_value.generate_content_async = AsyncMock(return_value=response)

        result = asyncio.run(adapter.generate([], TOOL_CATALOG))

        assert result.content == "Holding positions."
        assert result.items == [{"role": "assistant", "content": "Holding positions."}]
        assert not result.cache_hit

    def test_error_translation(self, gemini):
        _, adapter = gemini

        assert isinstance(adapter._translate_error(google_exceptions.ResourceExhausted("quota")), RateLimitError)
        auth = adapter._translate_error(google_exceptions.Unauthenticated("bad key"))
        assert isinstance(auth, AuthenticationError)
        assert auth.status == 401
        assert adapter._translate_error(ConnectionError("reset")).retryable

    def test_model_name_normalized(self):
        with patch(GENAI):
            assert GoogleAdapter("gemini 2.5 pro", "key").model == "gemini-2.5-pro"


class TestFactory:
    """Test provider registry"""

    def test_openai(self, openai_client):
        client = get_llm_client("openai", "gpt-4o", "sk-test", client=openai_client)
        assert isinstance(client, OpenAIAdapter)
        assert client.provider_name == "openai"

    def test_google(self):
        with patch(GENAI):
            assert isinstance(get_llm_client("google", "gemini-2.5-flash", "key"), GoogleAdapter)

    def test_unsupported(self):
        with pytest.raises(ValueError):
            LLMClientFactory.create("acme", "model", "key")


def test_reasoning_mismatch_detection():
    message = "Item 'fc_1' of type 'function_call' was provided without its required 'reasoning' item"
    assert is_reasoning_mismatch(LLMError(message, "openai", "gpt-4o", status=400))
    missing_output = "No tool output found for function call call_1."
    assert is_reasoning_mismatch(LLMError(missing_output, "openai", "gpt-4o", status=400))
    assert not is_reasoning_mismatch(LLMError("Incorrect API key", "openai", "gpt-4o", status=401))


def test_message_text():
    assert message_text({"role": "user", "content": "hi"}) == "hi"
    assert message_text({"role": "assistant", "content": [{"type": "output_text", "text": "a"}, "b"]}) == "ab"
    assert message_text({"type": "reasoning"}) == ""
