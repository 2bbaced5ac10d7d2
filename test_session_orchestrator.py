"""
Tests for the session orchestrator: conversation loop, persistence and recovery
"""

import asyncio
import json

import pytest

from autotrade_llm.errors import ConfigurationError
from autotrade_llm.llm.llm_client import AuthenticationError, InvalidRequestError, LLMClient, LLMResponse
from autotrade_llm.memory.thread_store import ThreadStore
from autotrade_llm.portfolio.reconciler import PortfolioReconciler
from autotrade_llm.pricing.price_resolver import PriceResolver
from autotrade_llm.reporting.csv_report import SessionReporter
from autotrade_llm.session.orchestrator import MALFORMED_CALL_MESSAGE, SessionOrchestrator, SessionState
from autotrade_llm.tools.dispatcher import ToolDispatcher
from autotrade_llm.tools.normalizer import from_structured
from autotrade_llm.utils.logging_json import SessionEventLogger

PROFILE = "gpt4o"


class ScriptedLLM(LLMClient):
    """Returns queued responses (or raises queued errors) and records each thread sent"""

    def __init__(self, responses, validation_error=None):
        super().__init__("fake-model", "sk-test")
        self.responses = list(responses)
        self.validation_error = validation_error
        self.threads = []

    @property
    def provider_name(self) -> str:
        return "openai"

    async def generate(self, thread, tools, instructions="", temperature=0.3, **kwargs):
        self.threads.append(list(thread))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def validate_credentials(self):
        if self.validation_error is not None:
            raise self.validation_error


def text_reply(text, cached_tokens=0):
    return LLMResponse(
        content=text,
        model="fake-model",
        provider="openai",
        items=[{"role": "assistant", "content": text}],
        cached_tokens=cached_tokens,
    )


def tool_reply(n, name, args, cached_tokens=0):
    """Structured call with its reasoning item, as the Responses API returns them"""
    arguments = json.dumps(args)
    return LLMResponse(
        content="",
        model="fake-model",
        provider="openai",
        tool_calls=[from_structured(name, arguments, call_id=f"call_{n}")],
        items=[
            {"type": "reasoning", "id": f"rs_{n}", "summary": []},
            {"type": "function_call", "id": f"fc_{n}", "call_id": f"call_{n}", "name": name, "arguments": arguments},
        ],
        cached_tokens=cached_tokens,
    )


# Test fixtures
@pytest.fixture
def store(tmp_path):
    return ThreadStore(str(tmp_path), max_items=40, hard_ceiling=50)


@pytest.fixture
def build(tmp_path, fake_broker, store, no_retry):
    """Factory wiring an orchestrator around a scripted model"""
    def _build(llm, **kwargs):
        resolver = PriceResolver(fake_broker, retry_policy=no_retry, known_prices={})
        reconciler = PortfolioReconciler(fake_broker, resolver)
        dispatcher = ToolDispatcher(fake_broker, resolver, reconciler)
        return SessionOrchestrator(
            PROFILE,
            llm,
            fake_broker,
            store,
            dispatcher,
            reconciler,
            retry_policy=no_retry,
            reporter=SessionReporter(str(tmp_path), PROFILE, "fake-model"),
            event_logger=SessionEventLogger.for_profile(str(tmp_path), PROFILE),
            **kwargs
        )
    return _build


class TestConversation:
    """Test the model/tool loop"""

    def test_structured_tool_call(self, build, fake_broker, store):
        llm = ScriptedLLM([
            tool_reply(1, "buy", {"ticker": "AAPL", "shares": 2}, cached_tokens=100),
            text_reply("Bought 2 AAPL.", cached_tokens=150),
        ])
        orchestrator = build(llm)

        result = asyncio.run(orchestrator.run_session())

        assert result.final_text == "Bought 2 AAPL."
        assert result.turns == 2
        assert result.tool_calls == ["buy"]
        assert fake_broker.positions == {"AAPL": 2.0}
        assert result.portfolio.holdings == {"AAPL": 2.0}
        assert result.cache_stats.openai_cached_tokens == 250
        assert result.cache_stats.total_requests == 2
        assert orchestrator.state == SessionState.IDLE

        first_prompt = llm.threads[0][-1]
        assert first_prompt["role"] == "user"
        assert "Time for your trading analysis" in first_prompt["content"]
        assert "$1,000.00" in first_prompt["content"]

        output = llm.threads[1][-1]
        assert output["type"] == "function_call_output"
        assert output["call_id"] == "call_1"
        assert output["output"].startswith("Submitted buy order for 2 shares of AAPL")

        assert store.load(PROFILE) == result.updated_thread
        assert result.updated_thread[-1] == {"role": "assistant", "content": "Bought 2 AAPL."}

    def test_tool_call_in_text(self, build):
        llm = ScriptedLLM([
            text_reply('```json\n{"tool": "get_stock_price", "parameters": {"ticker": "AAPL"}}\n```'),
            text_reply("AAPL looks fairly priced; holding."),
        ])

        result = asyncio.run(build(llm).run_session())

        assert result.final_text == "AAPL looks fairly priced; holding."
        assert llm.threads[1][-1] == {
            "role": "user",
            "content": "Function results:\nget_stock_price: AAPL: $200.00",
        }

    def test_malformed_call_gets_one_correction(self, build):
        llm = ScriptedLLM([
            text_reply('{"tool": "buy", "parameters": {"ticker": '),
            text_reply("Holding for now."),
        ])

        result = asyncio.run(build(llm).run_session())

        assert result.final_text == "Holding for now."
        assert llm.threads[1][-1] == {"role": "user", "content": MALFORMED_CALL_MESSAGE}

    def test_repeated_malformed_call_ends_session(self, build, fake_broker):
        llm = ScriptedLLM([
            text_reply('{"tool": "buy", "parameters": {"ticker": '),
            text_reply('{"tool": "buy", "parameters": {"ticker": '),
        ])

        asyncio.run(build(llm).run_session())

        assert len(llm.threads) == 2
        assert fake_broker.submitted == []

    def test_turn_limit(self, build):
        llm = ScriptedLLM([
            tool_reply(1, "think", {"thought_process": ["one"]}),
            tool_reply(2, "think", {"thought_process": ["two"]}),
            text_reply("never reached"),
        ])

        result = asyncio.run(build(llm, max_turns=2).run_session())

        assert result.turns == 2
        assert len(llm.threads) == 2
        assert result.tool_calls == ["think", "think"]

    def test_thread_carries_over_between_sessions(self, build, store):
        llm = ScriptedLLM([text_reply("First session."), text_reply("Second session.")])
        orchestrator = build(llm)

        asyncio.run(orchestrator.run_session())
        asyncio.run(orchestrator.run_session())

        second_thread = llm.threads[1]
        assert {"role": "assistant", "content": "First session."} in second_thread
        assert len(store.load(PROFILE)) == 4

    def test_context_resets_each_session(self, build):
        llm = ScriptedLLM([
            tool_reply(1, "think", {"thought_process": ["a"]}, cached_tokens=10),
            text_reply("done"),
            text_reply("done again"),
        ])
        orchestrator = build(llm)

        first = asyncio.run(orchestrator.run_session())
        second = asyncio.run(orchestrator.run_session())

        assert first.tool_calls == ["think"]
        assert second.tool_calls == []
        assert second.cache_stats.total_requests == 1
        assert second.cache_stats.openai_cached_tokens == 0

    def test_report_written(self, build, tmp_path):
        llm = ScriptedLLM([tool_reply(1, "buy", {"ticker": "AAPL", "shares": 1}), text_reply("ok")])

        asyncio.run(build(llm).run_session())

        reports = list((tmp_path / PROFILE).glob("pnl_fake_model_*.csv"))
        assert len(reports) == 1
        events = (tmp_path / PROFILE / f"events-{PROFILE}.jsonl").read_text(encoding="utf-8").splitlines()
        types = [json.loads(line)["type"] for line in events]
        assert types[0] == "session_start"
        assert types[-1] == "session_end"


class TestRecovery:
    """Test thread resets and failures"""

    def test_reasoning_mismatch_resets_thread(self, build, store):
        store.save(PROFILE, [{"role": "user", "content": "old"}])
        mismatch = InvalidRequestError(
            "Item 'fc_1' of type 'function_call' was provided without its required 'reasoning' item",
            "openai",
            "fake-model",
            status=400,
        )
        llm = ScriptedLLM([mismatch, text_reply("Fresh start.")])

        result = asyncio.run(build(llm).run_session())

        assert result.final_text == "Fresh start."
        assert len(llm.threads[1]) == 1
        path = store.path_for(PROFILE)
        assert len(list(path.parent.glob(f"{path.name}.reasoning-error-*"))) == 1
        assert {"role": "user", "content": "old"} not in store.load(PROFILE)

    def test_corrupted_thread_starts_fresh(self, build, store):
        path = store.path_for(PROFILE)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps([{"type": "function_call_output", "call_id": "x", "output": "y"}]))
        llm = ScriptedLLM([text_reply("ok")])

        asyncio.run(build(llm).run_session())

        assert len(llm.threads[0]) == 1

    def test_provider_error_fails_session(self, build, store):
        llm = ScriptedLLM([AuthenticationError("Incorrect API key", "openai", "fake-model", status=401)])
        orchestrator = build(llm)

        with pytest.raises(AuthenticationError):
            asyncio.run(orchestrator.run_session())

        assert orchestrator.state == SessionState.FAILED
        assert not store.path_for(PROFILE).exists()


class TestCredentialValidation:
    """Test startup credential checks"""

    def test_valid(self, build, fake_broker):
        orchestrator = build(ScriptedLLM([]))
        asyncio.run(orchestrator.validate_credentials())
        assert orchestrator.state == SessionState.IDLE
        assert fake_broker.credential_checks == 1

    def test_invalid_model_key(self, build):
        error = AuthenticationError("Incorrect API key", "openai", "fake-model", status=401)
        orchestrator = build(ScriptedLLM([], validation_error=error))

        with pytest.raises(ConfigurationError) as exc_info:
            asyncio.run(orchestrator.validate_credentials())

        assert "invalid or expired" in str(exc_info.value)
        assert orchestrator.state == SessionState.FAILED

    def test_broker_unreachable(self, build, fake_broker):
        fake_broker.account_error = ConnectionError("connection refused")
        orchestrator = build(ScriptedLLM([]))

        with pytest.raises(ConfigurationError) as exc_info:
            asyncio.run(orchestrator.validate_credentials())

        assert "brokerage (Alpaca)" in str(exc_info.value)
        assert "network problem" in str(exc_info.value)
