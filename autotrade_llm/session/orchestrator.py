"""
Session Orchestrator: one trading session end-to-end.

validating_credentials -> loading_thread -> conversing <-> dispatching_tools
-> persisting -> reporting -> idle, with ``failed`` reachable from any step.

Remote calls inside a session are retried only through the retry policy;
a failed session propagates to the caller (scheduler or CLI).
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from autotrade_llm.errors import ConfigurationError
from autotrade_llm.execution.models import BrokerPort
from autotrade_llm.llm.llm_client import LLMClient, LLMError, is_reasoning_mismatch
from autotrade_llm.memory.thread_store import Thread, ThreadStore
from autotrade_llm.portfolio.models import Portfolio
from autotrade_llm.portfolio.reconciler import PortfolioReconciler
from autotrade_llm.session.context import CacheStats, SessionContext
from autotrade_llm.tools.catalog import TOOL_CATALOG
from autotrade_llm.tools.dispatcher import ToolDispatcher
from autotrade_llm.tools.normalizer import looks_like_tool_call, parse_text_tool_calls
from autotrade_llm.utils.logging_json import SessionEventLogger
from autotrade_llm.utils.retry import NETWORK_ERRORS, RetryPolicy, extract_status

logger = logging.getLogger(__name__)

SESSION_PROMPT = (
    "It's {now}. Time for your trading analysis! Review your portfolio, scan the "
    "markets for opportunities, and make strategic trades to grow your "
    "${net_worth:,.2f} portfolio. Good luck!"
)

MALFORMED_CALL_MESSAGE = (
    "Your last message looked like a tool call, but it could not be parsed, so no "
    "action was taken. Use the function-calling interface, or reply with JSON such as "
    '{"tool": "get_stock_price", "parameters": {"ticker": "AAPL"}}.'
)

CREDENTIAL_HINTS = {
    401: "the API key is invalid or expired; check the key in your .env file",
    403: "the key lacks permission for this account or model",
    404: "the configured model or endpoint does not exist",
    429: "rate limit or quota exceeded; wait or check your plan's billing",
}


class SessionState(str, Enum):
    VALIDATING_CREDENTIALS = "validating_credentials"
    LOADING_THREAD = "loading_thread"
    CONVERSING = "conversing"
    DISPATCHING_TOOLS = "dispatching_tools"
    PERSISTING = "persisting"
    REPORTING = "reporting"
    IDLE = "idle"
    FAILED = "failed"


@dataclass
class SessionResult:
    final_text: str
    updated_thread: Thread
    cache_stats: CacheStats
    turns: int = 0
    tool_calls: List[str] = field(default_factory=list)
    portfolio: Optional[Portfolio] = None
    net_worth: Optional[float] = None


def build_session_prompt(now: datetime, net_worth: float) -> str:
    return SESSION_PROMPT.format(now=now.strftime("%Y-%m-%d %H:%M:%S %Z").strip(), net_worth=net_worth)


def credential_hint(error: BaseException) -> str:
    status = extract_status(error)
    if status in CREDENTIAL_HINTS:
        return CREDENTIAL_HINTS[status]
    if isinstance(error, NETWORK_ERRORS) or getattr(error, "retryable", False) is True:
        return "network problem reaching the provider; check connectivity and proxy settings"
    return "see the error message above"


class SessionOrchestrator:
    """Drives sessions for one profile; never runs two sessions at once"""

    def __init__(
        self,
        profile: str,
        llm_client: LLMClient,
        broker: BrokerPort,
        thread_store: ThreadStore,
        dispatcher: ToolDispatcher,
        reconciler: PortfolioReconciler,
        retry_policy: Optional[RetryPolicy] = None,
        instructions: str = "",
        temperature: float = 0.3,
        max_turns: int = 100,
        tools: Optional[List[Dict[str, Any]]] = None,
        reporter=None,
        event_logger: Optional[SessionEventLogger] = None,
    ):
        self.profile = profile
        self.llm_client = llm_client
        self.broker = broker
        self.thread_store = thread_store
        self.dispatcher = dispatcher
        self.reconciler = reconciler
        self.retry_policy = retry_policy or RetryPolicy()
        self.instructions = instructions
        self.temperature = temperature
        self.max_turns = max_turns
        self.tools = tools if tools is not None else TOOL_CATALOG
        self.reporter = reporter
        self.event_logger = event_logger
        self.state = SessionState.IDLE
        self._lock = asyncio.Lock()

    def _transition(self, state: SessionState):
        if state != self.state:
            logger.info(f"[{self.profile}] {self.state.value} -> {state.value}")
        self.state = state

    async def validate_credentials(self) -> None:
        """
        Check model-provider and brokerage credentials.

        Raises:
            ConfigurationError: With an actionable hint per failing provider
        """
        self._transition(SessionState.VALIDATING_CREDENTIALS)
        checks = {
            f"model provider ({self.llm_client.provider_name}/{self.llm_client.model})":
                self.llm_client.validate_credentials(),
            "brokerage (Alpaca)": self.broker.validate_credentials(),
        }
        results = await asyncio.gather(*checks.values(), return_exceptions=True)

        failures = []
        for name, result in zip(checks, results):
            if isinstance(result, Exception):
                logger.error(f"Credential check failed for {name}: {result}")
                failures.append(f"{name}: {result} (hint: {credential_hint(result)})")
        if failures:
            self._transition(SessionState.FAILED)
            raise ConfigurationError("Credential validation failed: " + "; ".join(failures))

        logger.info("All credentials validated")
        self._transition(SessionState.IDLE)

    async def run_session(self, now: Optional[datetime] = None) -> SessionResult:
        """
        Run one session: load thread, converse with tools, persist, report.

        Raises:
            Exception: Any session-level failure, after moving to ``failed``
        """
        async with self._lock:
            context = SessionContext(profile=self.profile)
            now = now or datetime.now(timezone.utc)
            try:
                return await self._run(context, now)
            except Exception as e:
                self._transition(SessionState.FAILED)
                logger.error(f"[{self.profile}] Session {context.session_id} failed: {e}")
                if self.event_logger is not None:
                    self.event_logger.log_error(
                        context.session_id, type(e).__name__, str(e), {"state": self.state.value}
                    )
                raise

    async def _run(self, context: SessionContext, now: datetime) -> SessionResult:
        self._transition(SessionState.LOADING_THREAD)
        thread = self.thread_store.load(self.profile)
        net_worth = await self.reconciler.calculate_net_worth()
        prompt = build_session_prompt(now, net_worth)
        logger.info(f"[{self.profile}] Session {context.session_id} starting with {len(thread)} thread items")
        if self.event_logger is not None:
            self.event_logger.log_session_start(context.session_id, self.profile, self.llm_client.model, len(thread))

        try:
            final_text, updated = await self._converse(thread, prompt, context)
        except LLMError as e:
            if not is_reasoning_mismatch(e):
                raise
            logger.warning(f"[{self.profile}] Provider rejected thread reasoning items, resetting thread: {e}")
            backup = self.thread_store.quarantine(self.profile, "reasoning-error")
            if self.event_logger is not None:
                self.event_logger.log_thread_reset(context.session_id, "reasoning-error", str(backup) if backup else None)
            final_text, updated = await self._converse([], prompt, context)

        self._transition(SessionState.PERSISTING)
        saved = self.thread_store.save(self.profile, updated)

        self._transition(SessionState.REPORTING)
        portfolio, net_worth = await self._report(context)

        stats = context.cache_stats
        logger.info(
            f"[{self.profile}] Session complete: {context.turns} turns, {len(context.tool_calls)} tool calls, "
            f"{context.orders_submitted} orders; cache: {stats.openai_cached_tokens} OpenAI cached tokens, "
            f"{stats.gemini_cache_hits}/{stats.total_requests} Gemini cache hits"
        )
        if self.event_logger is not None:
            self.event_logger.log_session_end(
                context.session_id, context.turns, len(context.tool_calls), net_worth, stats.as_dict()
            )

        self._transition(SessionState.IDLE)
        return SessionResult(
            final_text=final_text,
            updated_thread=saved,
            cache_stats=stats,
            turns=context.turns,
            tool_calls=list(context.tool_calls),
            portfolio=portfolio,
            net_worth=net_worth,
        )

    async def _converse(self, thread: Thread, prompt: str, context: SessionContext) -> Tuple[str, Thread]:
        working: Thread = list(thread)
        working.append({"role": "user", "content": prompt})
        final_text = ""
        corrected = False

        self._transition(SessionState.CONVERSING)
        for _ in range(self.max_turns):
            context.turns += 1
            response = await self.retry_policy.run(
                lambda: self.llm_client.generate(
                    working, self.tools, instructions=self.instructions, temperature=self.temperature
                ),
                description=f"{self.llm_client.provider_name}.generate",
            )
            context.cache_stats.record(response.provider, response.cached_tokens, response.cache_hit)
            working.extend(response.items)
            if response.content:
                final_text = response.content

            calls = response.tool_calls or parse_text_tool_calls(response.content)
            if not calls:
                if not corrected and looks_like_tool_call(response.content):
                    corrected = True
                    logger.warning(f"[{self.profile}] Unparseable tool call in model text; asking model to retry")
                    working.append({"role": "user", "content": MALFORMED_CALL_MESSAGE})
                    continue
                return final_text, working

            self._transition(SessionState.DISPATCHING_TOOLS)
            results = await self.dispatcher.dispatch_all(calls, context)

            text_results = []
            for call, result in zip(calls, results):
                if call.call_id:
                    working.append({"type": "function_call_output", "call_id": call.call_id, "output": result})
                else:
                    text_results.append(f"{call.name}: {result}")
            if text_results:
                working.append({"role": "user", "content": "Function results:\n" + "\n\n".join(text_results)})
            self._transition(SessionState.CONVERSING)

        logger.warning(f"[{self.profile}] Reached the {self.max_turns}-turn limit without a final answer")
        return final_text, working

    async def _report(self, context: SessionContext) -> Tuple[Optional[Portfolio], Optional[float]]:
        """Reconcile and hand results to the reporter; never raises"""
        try:
            portfolio = await self.reconciler.get_portfolio()
            net_worth = await self.reconciler.calculate_net_worth(portfolio)
        except Exception as e:
            logger.error(f"[{self.profile}] Could not reconcile portfolio for reporting: {e}")
            return None, None

        if self.reporter is not None:
            try:
                self.reporter.publish(context, portfolio, net_worth)
            except Exception as e:
                logger.error(f"[{self.profile}] Reporting failed: {e}", exc_info=True)
        return portfolio, net_worth
