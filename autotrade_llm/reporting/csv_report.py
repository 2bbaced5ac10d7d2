"""
CSV P&L report per profile.

One row per filled trade, with realized P&L against the weighted-average
cost basis and the prompt-cache settings the session ran with.
"""

import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from autotrade_llm.portfolio.models import Portfolio
from autotrade_llm.portfolio.performance import pnl_table
from autotrade_llm.session.context import SessionContext

logger = logging.getLogger(__name__)

CSV_COLUMNS = [
    "Date", "Type", "Ticker", "Shares", "Price", "Total",
    "Model", "P&L", "P&L_Percent", "Cache_Enabled", "Cache_TTL",
]


def model_safe_name(model: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "_", model).strip("_").lower()


def write_pnl_report(
    portfolio: Portfolio,
    path: Path,
    model: str,
    cache_enabled: bool = True,
    cache_ttl: str = "5m",
) -> Path:
    """
    Write the trade history with realized P&L to CSV.

    Unreported P&L (buys, shorts without prior buys) is left blank.
    """
    table = pnl_table(portfolio.history)
    table["Model"] = model
    table["Cache_Enabled"] = cache_enabled
    table["Cache_TTL"] = cache_ttl
    table = table.reindex(columns=CSV_COLUMNS)

    path.parent.mkdir(parents=True, exist_ok=True)
    table.to_csv(path, index=False)
    logger.info(f"Wrote P&L report with {len(table)} trades to {path}")
    return path


class SessionReporter:
    """Writes the per-profile CSV report after each session"""

    def __init__(
        self,
        results_dir: str,
        profile: str,
        model: str,
        cache_enabled: bool = True,
        cache_ttl: str = "5m",
    ):
        self.profile_dir = Path(results_dir) / profile
        self.model = model
        self.cache_enabled = cache_enabled
        self.cache_ttl = cache_ttl

    def report_path(self, day: Optional[datetime] = None) -> Path:
        day = day or datetime.now(timezone.utc)
        return self.profile_dir / f"pnl_{model_safe_name(self.model)}_{day.strftime('%Y-%m-%d')}.csv"

    def publish(self, context: SessionContext, portfolio: Portfolio, net_worth: Optional[float]) -> Path:
        path = self.report_path(context.started_at)
        write_pnl_report(portfolio, path, self.model, self.cache_enabled, self.cache_ttl)
        if net_worth is not None:
            logger.info(f"[{self.profile_dir.name}] Net worth after session: ${net_worth:,.2f}")
        return path
