#!/usr/bin/env python3
"""
AutoTrade-LLM Main Entry Point

Wires the trading agent together for one profile:
1. Credential validation (model provider + Alpaca)
2. Thread load and corruption checks
3. Model conversation with tool dispatch
4. Thread persistence
5. CSV/JSONL reporting

Runs a single session by default, or a market-hours loop with --continuous.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from autotrade_llm.config.config_schema import Config
from autotrade_llm.config.loader import load_config
from autotrade_llm.errors import ConfigurationError
from autotrade_llm.execution.alpaca_broker import AlpacaBroker
from autotrade_llm.llm.llm_client import get_llm_client
from autotrade_llm.memory.thread_store import ThreadStore
from autotrade_llm.portfolio.reconciler import PortfolioReconciler
from autotrade_llm.pricing.price_resolver import PriceResolver
from autotrade_llm.reporting.csv_report import SessionReporter
from autotrade_llm.session.orchestrator import SessionOrchestrator
from autotrade_llm.session.scheduler import MarketScheduler, is_market_open
from autotrade_llm.tools.dispatcher import ToolDispatcher
from autotrade_llm.tools.web_search import WebSearchClient
from autotrade_llm.utils.logging_json import SessionEventLogger
from autotrade_llm.utils.retry import RetryPolicy
from autotrade_llm.utils.secrets import mask_api_key

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(results_dir: str, profile: str, level: int = logging.INFO) -> Path:
    """Console plus per-profile log file at <results>/<profile>/agent-<profile>.log"""
    log_path = Path(results_dir) / profile / f"agent-{profile}.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(), logging.FileHandler(log_path, encoding='utf-8')],
        force=True,
    )
    return log_path


class AutoTraderApp:
    """
    Builds and runs the session orchestrator for one profile.
    """

    def __init__(self, config: Config, environ=None):
        """
        Initialize the trading agent.

        Args:
            config: Validated configuration
            environ: Environment mapping holding API keys (defaults to os.environ)

        Raises:
            ConfigurationError: If required credentials are missing
        """
        environ = os.environ if environ is None else environ
        self.config = config
        self.profile = config.profile
        credentials = config.require_credentials(environ)

        llm_key = credentials[config.llm.api_key_env]
        logger.info(
            f"Profile '{self.profile}': {config.llm.provider}/{config.llm.model} "
            f"(key {mask_api_key(llm_key)}), paper={config.execution.paper_trading}"
        )

        self.retry_policy = RetryPolicy.from_config(config.retry)
        self.event_logger = SessionEventLogger.for_profile(config.results_dir, self.profile)

        self.llm_client = get_llm_client(
            config.llm.provider,
            config.llm.model,
            llm_key,
            timeout=config.llm.timeout_seconds,
        )
        self.broker = AlpacaBroker(
            api_key=credentials[config.execution.api_key_env],
            secret_key=credentials[config.execution.secret_key_env],
            paper=config.execution.paper_trading,
            base_url=config.execution.base_url,
            retry_policy=self.retry_policy,
        )
        self.price_resolver = PriceResolver.from_config(self.broker, config.pricing, self.retry_policy)
        self.reconciler = PortfolioReconciler(
            self.broker,
            self.price_resolver,
            order_history_limit=config.execution.order_history_limit,
            starting_capital=config.starting_capital,
        )
        self.web_search = WebSearchClient(
            environ.get(config.search.api_key_env),
            endpoint=config.search.endpoint,
            result_count=config.search.result_count,
            max_results=config.search.max_results,
            timeout=config.search.timeout_seconds,
            retry_policy=self.retry_policy,
        )
        self.dispatcher = ToolDispatcher(
            self.broker,
            self.price_resolver,
            self.reconciler,
            web_search=self.web_search,
            time_in_force=config.execution.time_in_force,
            min_short_equity=config.execution.min_short_equity,
            short_margin_ratio=config.execution.short_margin_ratio,
            starting_capital=config.starting_capital,
            event_logger=self.event_logger,
        )
        self.orchestrator = SessionOrchestrator(
            self.profile,
            self.llm_client,
            self.broker,
            ThreadStore(config.results_dir, config.thread.max_items, config.thread.hard_ceiling),
            self.dispatcher,
            self.reconciler,
            retry_policy=self.retry_policy,
            instructions=config.llm.instructions,
            temperature=config.llm.temperature,
            max_turns=config.llm.max_turns,
            reporter=SessionReporter(
                config.results_dir,
                self.profile,
                config.llm.model,
                cache_enabled=config.llm.prompt_cache_enabled,
                cache_ttl=config.llm.prompt_cache_ttl,
            ),
            event_logger=self.event_logger,
        )

    async def run_once(self):
        """Validate credentials and run a single session"""
        await self.orchestrator.validate_credentials()
        if not is_market_open(force_open=self.config.schedule.testing_mode, tz=ZoneInfo(self.config.schedule.timezone)):
            logger.info("Market is currently closed; running session anyway (single-run mode)")
        result = await self.orchestrator.run_session()
        logger.info(f"Final answer:\n{result.final_text}")
        return result

    async def run_continuous(self, max_sessions: Optional[int] = None):
        """Validate credentials, then run sessions around market hours until signalled"""
        await self.orchestrator.validate_credentials()
        scheduler = MarketScheduler(
            self.orchestrator.run_session,
            interval_minutes=self.config.schedule.interval_minutes,
            force_open=self.config.schedule.testing_mode,
            tz=ZoneInfo(self.config.schedule.timezone),
        )
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.request_stop)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported on this platform")
        await scheduler.run_forever(max_sessions=max_sessions)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="AutoTrade-LLM: language-model trading agent")
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to configuration file (defaults to config.yaml if present)'
    )
    parser.add_argument(
        '-c', '--continuous',
        action='store_true',
        help='Run sessions repeatedly during market hours'
    )
    parser.add_argument(
        '--interval',
        type=int,
        default=None,
        help='Minutes between sessions in continuous mode (minimum 5)'
    )
    parser.add_argument('--profile', type=str, default=None, help='Profile name (isolates thread, logs, reports)')
    parser.add_argument('--model', type=str, default=None, help='Model identifier, e.g. gpt-4o or gemini-2.5-flash')
    parser.add_argument('--provider', choices=['openai', 'google'], default=None, help='Model provider')
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point"""
    load_dotenv()
    args = parse_args(argv)

    config_path = args.config
    if config_path is None and Path('config.yaml').exists():
        config_path = 'config.yaml'

    try:
        config = load_config(
            config_path,
            profile=args.profile,
            **{
                'llm.model': args.model,
                'llm.provider': args.provider,
                'schedule.interval_minutes': args.interval,
            }
        )
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error(str(e))
        sys.exit(1)

    log_path = configure_logging(config.results_dir, config.profile)
    logger.info(f"Logging to {log_path}")

    try:
        app = AutoTraderApp(config)
        if args.continuous:
            asyncio.run(app.run_continuous())
        else:
            asyncio.run(app.run_once())
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception as e:
        logger.error(f"Session failed: {e}", exc_info=True)
        sys.exit(1)

    logger.info("AutoTrade-LLM finished")


if __name__ == "__main__":
    main()
