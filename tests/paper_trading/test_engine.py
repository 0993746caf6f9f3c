# tests/paper_trading/test_engine.py
"""Tests for the copytrading engine loop."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from copysim.exceptions import AccountingError
from copysim.execution.models import ExecutionOutcome
from copysim.feeds.trade_fetcher import TradeFetcher
from copysim.paper_trading.engine import CopyTradingEngine
from copysim.paper_trading.portfolio import recompute_portfolio


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestCopyTradingEngine:
    @pytest.fixture
    def source(self):
        src = MagicMock()
        src.fetch_trades_for_address = AsyncMock(return_value=[])
        return src

    @pytest.fixture
    def executor(self):
        ex = MagicMock()
        ex.executed = []

        async def _execute(trade, portfolio, balance):
            ex.executed.append((trade.id, balance))
            return ExecutionOutcome("executed", trade.id)

        ex.execute_trade = AsyncMock(side_effect=_execute)
        return ex

    @pytest.fixture
    def resolver(self):
        res = MagicMock()
        res.check_and_resolve_markets = AsyncMock(return_value=[])
        res.resolved_summary.return_value = {}
        return res

    @pytest.fixture
    def observer(self):
        obs = MagicMock()
        obs.update_position_prices = AsyncMock(return_value=0)
        return obs

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def engine(self, repository, source, executor, resolver, observer, clock):
        fetcher = TradeFetcher(source, repository, address="0xtarget", target_balance=50000.0)
        return CopyTradingEngine(
            repository,
            fetcher,
            executor,
            resolver,
            observer,
            initial_capital=1000.0,
            polling_interval=0.01,
            balance_interval=300,
            resolution_interval=300,
            error_backoff=0.01,
            clock=clock,
        )

    def _trades(self, make_trade):
        now = datetime.now(timezone.utc)
        older = make_trade(trade_id="old", timestamp=now - timedelta(seconds=30))
        newer = make_trade(trade_id="new", timestamp=now - timedelta(seconds=5))
        return [newer, older]

    def test_load_portfolio_creates_then_resumes(self, engine, repository):
        portfolio = engine.load_portfolio()

        assert portfolio.total_value == 1000.0
        assert repository.get_latest_portfolio_snapshot() is not None

        portfolio.available_cash = 900.0
        recompute_portfolio(portfolio, [], 1000.0)
        repository.save_portfolio_snapshot(portfolio)

        assert engine.load_portfolio().available_cash == 900.0

    @pytest.mark.asyncio
    async def test_cycle_executes_oldest_first(self, engine, source, executor, observer, repository, make_trade):
        source.fetch_trades_for_address.return_value = self._trades(make_trade)

        outcomes = await engine.run_cycle()

        assert [o.source_trade_id for o in outcomes] == ["old", "new"]
        assert executor.executed == [("old", 50000.0), ("new", 50000.0)]
        assert observer.update_position_prices.await_count == 2
        assert repository.is_source_processed("old")
        assert repository.is_source_processed("new")

    @pytest.mark.asyncio
    async def test_trades_not_executed_twice(self, engine, source, executor, make_trade):
        source.fetch_trades_for_address.return_value = self._trades(make_trade)

        await engine.run_cycle()
        await engine.run_cycle()

        assert len(executor.executed) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", ["feed_error", "persistence_error"])
    async def test_transient_failure_retried_next_cycle(
        self, engine, source, executor, repository, make_trade, reason
    ):
        source.fetch_trades_for_address.return_value = [make_trade(trade_id="flaky")]
        results = [
            ExecutionOutcome("failed", "flaky", reason=reason),
            ExecutionOutcome("executed", "flaky"),
        ]
        executor.execute_trade = AsyncMock(side_effect=results)

        await engine.run_cycle()
        assert not repository.is_source_processed("flaky")

        await engine.run_cycle()
        assert executor.execute_trade.await_count == 2
        assert repository.is_source_processed("flaky")

    @pytest.mark.asyncio
    async def test_maintenance_runs_on_its_own_interval(self, engine, resolver, clock):
        await engine.run_cycle()
        await engine.run_cycle()
        assert resolver.check_and_resolve_markets.await_count == 1

        clock.now += 301
        await engine.run_cycle()
        assert resolver.check_and_resolve_markets.await_count == 2

    @pytest.mark.asyncio
    async def test_run_until_stopped(self, engine, source):
        calls = []

        def _fetch(*args, **kwargs):
            calls.append(1)
            if len(calls) >= 2:
                engine.stop()
            return []

        source.fetch_trades_for_address.side_effect = _fetch

        await engine.run()

        assert not engine.is_running
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_cycle_errors_back_off_and_continue(self, engine, source):
        calls = []

        def _fetch(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            engine.stop()
            return []

        source.fetch_trades_for_address.side_effect = _fetch

        await engine.run()

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_accounting_error_stops_engine(self, engine, source, executor, make_trade):
        source.fetch_trades_for_address.return_value = [make_trade()]
        executor.execute_trade = AsyncMock(side_effect=AccountingError("ledger broken"))

        with pytest.raises(AccountingError):
            await engine.run()

        assert not engine.is_running

    @pytest.mark.asyncio
    async def test_report_mentions_portfolio(self, engine):
        await engine.startup()

        assert "COPYTRADING PERFORMANCE SUMMARY" in engine.report()
