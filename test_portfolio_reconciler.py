"""
Tests for portfolio reconciliation, P&L and annualized return
"""

import asyncio
import math
from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from autotrade_llm.execution.models import OrderSnapshot
from autotrade_llm.portfolio.models import Portfolio, Trade, TradeSide
from autotrade_llm.portfolio.performance import PNL_COLUMNS, calculate_cagr, pnl_table, trade_pnl
from autotrade_llm.portfolio.reconciler import PortfolioReconciler, orders_to_trades
from autotrade_llm.pricing.price_resolver import PriceResolver
from autotrade_llm.reporting.csv_report import CSV_COLUMNS, SessionReporter, write_pnl_report

T0 = datetime(2024, 6, 3, 14, 0, tzinfo=timezone.utc)


def trade(side, ticker, shares, price, when):
    return Trade(date=when, side=side, ticker=ticker, shares=shares, price=price)


def filled(symbol, side, qty, price, when):
    return OrderSnapshot(
        symbol=symbol, side=side, filled_qty=qty, filled_avg_price=price, filled_at=when, status="filled"
    )


# Test fixtures
@pytest.fixture
def reconciler(fake_broker, no_retry):
    resolver = PriceResolver(fake_broker, retry_policy=no_retry, known_prices={})
    return PortfolioReconciler(fake_broker, resolver, starting_capital=1000.0)


@pytest.fixture
def two_buys_one_sell():
    return [
        trade(TradeSide.BUY, "AAPL", 10, 100.0, T0),
        trade(TradeSide.BUY, "AAPL", 10, 120.0, T0 + timedelta(hours=1)),
        trade(TradeSide.SELL, "AAPL", 5, 120.0, T0 + timedelta(days=1)),
    ]


class TestCAGR:
    """Test compound annual growth rate"""

    def test_one_year(self):
        assert calculate_cagr(365, 1100, 1000) == pytest.approx(0.10)

    def test_half_year_doubles_annualized(self):
        assert calculate_cagr(182.5, 1100, 1000) == pytest.approx(0.21)

    def test_zero_days_is_infinite(self):
        assert calculate_cagr(0, 1100, 1000) == math.inf

    def test_invalid_inputs(self):
        with pytest.raises(ValueError):
            calculate_cagr(-1, 1100, 1000)
        with pytest.raises(ValueError):
            calculate_cagr(10, 0, 1000)
        with pytest.raises(ValueError):
            calculate_cagr(10, 1000, 0)

    def test_monotonic_in_value(self):
        values = [500, 900, 1000, 1100, 2000]
        rates = [calculate_cagr(200, v, 1000) for v in values]
        assert rates == sorted(rates)
        assert calculate_cagr(200, 1000, 1000) == 0

    def test_recovers_current_value(self):
        days, start, current = 400, 1000.0, 1234.0
        rate = calculate_cagr(days, current, start)
        assert start * (1 + rate) ** (days / 365) == pytest.approx(current)

    def test_overflow_is_infinite(self):
        assert calculate_cagr(0.001, 1e6, 1) == math.inf


class TestTradePnL:
    """Test realized P&L against weighted-average cost"""

    def test_weighted_average_cost(self, two_buys_one_sell):
        result = trade_pnl(two_buys_one_sell[2], two_buys_one_sell)

        assert result.avg_buy_price == pytest.approx(110.0)
        assert result.pnl == pytest.approx(50.0)
        assert round(result.pnl_percent, 2) == 9.09

    def test_buy_has_no_pnl(self, two_buys_one_sell):
        assert trade_pnl(two_buys_one_sell[0], two_buys_one_sell) is None

    def test_sell_without_prior_buys(self):
        short = trade(TradeSide.SELL, "TSLA", 2, 250.0, T0)
        assert trade_pnl(short, [short]) is None

    def test_same_timestamp_buy_excluded(self):
        buy = trade(TradeSide.BUY, "NVDA", 5, 100.0, T0)
        sell = trade(TradeSide.SELL, "NVDA", 5, 110.0, T0)
        assert trade_pnl(sell, [buy, sell]) is None

    def test_other_tickers_ignored(self):
        history = [
            trade(TradeSide.BUY, "MSFT", 1, 400.0, T0),
            trade(TradeSide.BUY, "AAPL", 2, 100.0, T0),
        ]
        sell = trade(TradeSide.SELL, "AAPL", 2, 90.0, T0 + timedelta(days=2))
        result = trade_pnl(sell, history + [sell])
        assert result.pnl == pytest.approx(-20.0)
        assert result.pnl_percent == pytest.approx(-10.0)

    def test_pnl_table(self, two_buys_one_sell):
        table = pnl_table(list(reversed(two_buys_one_sell)))

        assert list(table.columns) == PNL_COLUMNS
        assert list(table["Type"]) == ["buy", "buy", "sell"]
        assert table["P&L"].iloc[2] == 50.0
        assert table["P&L_Percent"].iloc[2] == 9.09
        assert pd.isna(table["P&L"].iloc[0])


def test_trade_total_computed():
    assert trade(TradeSide.BUY, "AAPL", 3, 10.5, T0).total == 31.5


def test_orders_to_trades_only_filled():
    orders = [
        filled("AAPL", "sell", 1, 110.0, T0 + timedelta(days=1)),
        filled("AAPL", "buy", 2, 100.0, T0),
        OrderSnapshot(symbol="MSFT", side="buy", status="canceled"),
        filled("GME", "hold", 1, 20.0, T0),
    ]
    trades = orders_to_trades(orders)

    assert [(t.side, t.ticker) for t in trades] == [(TradeSide.BUY, "AAPL"), (TradeSide.SELL, "AAPL")]
    assert trades[0].total == 200.0


class TestReconciler:
    """Test portfolio view built from brokerage snapshots"""

    def test_get_portfolio(self, fake_broker, reconciler):
        fake_broker.positions = {"AAPL": 2.0, "MSFT": 0.0}
        fake_broker.orders = [filled("AAPL", "buy", 2, 200.0, T0)]

        portfolio = asyncio.run(reconciler.get_portfolio())

        assert portfolio.cash == 1000.0
        assert portfolio.holdings == {"AAPL": 2.0}
        assert len(portfolio.history) == 1
        assert portfolio.history[0].total == 400.0

    def test_fetch_failure_gives_empty_portfolio(self, fake_broker, reconciler):
        fake_broker.positions_error = ConnectionError("broker down")

        portfolio = asyncio.run(reconciler.get_portfolio())

        assert portfolio.cash == 0
        assert portfolio.holdings == {}
        assert portfolio.history == []

    def test_net_worth_prefers_account_value(self, fake_broker, reconciler):
        fake_broker.portfolio_value = 1523.456
        assert asyncio.run(reconciler.calculate_net_worth()) == 1523.46

    def test_net_worth_falls_back_to_holdings(self, fake_broker, reconciler):
        fake_broker.account_error = ConnectionError("account unavailable")
        portfolio = Portfolio(cash=500.0, holdings={"AAPL": 2.0})

        assert asyncio.run(reconciler.calculate_net_worth(portfolio)) == 900.0

    def test_short_holdings_reduce_value(self, reconciler):
        assert asyncio.run(reconciler.holdings_value({"AAPL": -1.0})) == -200.0

    def test_annualized_return_without_trades(self, reconciler):
        assert asyncio.run(reconciler.calculate_annualized_return(Portfolio(cash=1000.0))) == 0.0

    def test_annualized_return_needs_a_day(self, reconciler):
        portfolio = Portfolio(cash=1000.0, history=[trade(TradeSide.BUY, "AAPL", 1, 100.0, T0)])
        now = T0 + timedelta(hours=6)
        assert asyncio.run(reconciler.calculate_annualized_return(portfolio, now)) is None

    def test_annualized_return_after_a_year(self, reconciler):
        portfolio = Portfolio(cash=1100.0, history=[trade(TradeSide.BUY, "AAPL", 1, 100.0, T0)])
        now = T0 + timedelta(days=365)
        assert asyncio.run(reconciler.calculate_annualized_return(portfolio, now)) == pytest.approx(10.0)


class TestCsvReport:
    """Test the per-profile P&L CSV"""

    def test_write_report(self, tmp_path, two_buys_one_sell):
        path = write_pnl_report(
            Portfolio(history=two_buys_one_sell), tmp_path / "out" / "pnl.csv", "gpt-4o", True, "1h"
        )

        table = pd.read_csv(path)
        assert list(table.columns) == CSV_COLUMNS
        assert len(table) == 3
        assert table["Model"].iloc[0] == "gpt-4o"
        assert table["Cache_TTL"].iloc[0] == "1h"
        assert table["P&L"].iloc[2] == 50.0
        assert pd.isna(table["P&L"].iloc[0])

    def test_report_path(self, tmp_path):
        reporter = SessionReporter(str(tmp_path), "gpt4o", "gpt-4o")
        path = reporter.report_path(datetime(2024, 6, 3, tzinfo=timezone.utc))
        assert path == tmp_path / "gpt4o" / "pnl_gpt_4o_2024-06-03.csv"

    def test_empty_history(self, tmp_path):
        path = write_pnl_report(Portfolio(), tmp_path / "pnl.csv", "gemini-2.5-flash")
        table = pd.read_csv(path)
        assert list(table.columns) == CSV_COLUMNS
        assert table.empty
