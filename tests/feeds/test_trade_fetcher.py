# tests/feeds/test_trade_fetcher.py
"""Tests for polling the target wallet."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from copysim.execution.models import ExecutionOutcome
from copysim.feeds.trade_fetcher import CURSOR_OVERLAP, MAX_FEED_RETRIES, TradeFetcher

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def source():
    src = MagicMock()
    src.fetch_trades_for_address = AsyncMock(return_value=[])
    return src


@pytest.fixture
def fetcher(source, repository):
    return TradeFetcher(source, repository, address="0xtarget", target_balance=25000.0)


class TestTradeFetcher:
    @pytest.mark.asyncio
    async def test_returns_trades_oldest_first(self, fetcher, source, make_trade):
        source.fetch_trades_for_address.return_value = [
            make_trade(trade_id="b", timestamp=T0 + timedelta(seconds=20)),
            make_trade(trade_id="a", timestamp=T0),
        ]

        trades = await fetcher.fetch_new_trades()

        assert [t.id for t in trades] == ["a", "b"]
        assert fetcher.last_fetched_time is None

        for trade in trades:
            fetcher.record_outcome(trade, ExecutionOutcome("executed", trade.id))
        assert fetcher.last_fetched_time == T0 + timedelta(seconds=20)

    @pytest.mark.asyncio
    async def test_cursor_overlaps_previous_poll(self, fetcher, source, make_trade):
        trade = make_trade(timestamp=T0)
        source.fetch_trades_for_address.return_value = [trade]
        await fetcher.fetch_new_trades()
        fetcher.record_outcome(trade, ExecutionOutcome("executed", trade.id))

        await fetcher.fetch_new_trades()

        kwargs = source.fetch_trades_for_address.await_args.kwargs
        assert kwargs["since"] == T0 - CURSOR_OVERLAP

    @pytest.mark.asyncio
    async def test_recorded_trade_returned_once(self, fetcher, source, make_trade):
        trade = make_trade(timestamp=T0)
        source.fetch_trades_for_address.return_value = [trade]

        assert len(await fetcher.fetch_new_trades()) == 1
        fetcher.record_outcome(trade, ExecutionOutcome("executed", trade.id))

        assert await fetcher.fetch_new_trades() == []

    @pytest.mark.asyncio
    async def test_unrecorded_trades_fetched_again(self, fetcher, source, make_trade):
        first = make_trade(trade_id="a", timestamp=T0)
        second = make_trade(trade_id="b", timestamp=T0 + timedelta(seconds=10))
        source.fetch_trades_for_address.return_value = [first, second]

        await fetcher.fetch_new_trades()
        # Cycle dies after the first trade
        fetcher.record_outcome(first, ExecutionOutcome("executed", first.id))

        again = await fetcher.fetch_new_trades()

        assert [t.id for t in again] == ["b"]
        assert fetcher.last_fetched_time == T0

    @pytest.mark.asyncio
    async def test_database_failure_retried(self, fetcher, source, repository, make_trade):
        trade = make_trade(trade_id="sell_1", side="SELL", timestamp=T0)
        source.fetch_trades_for_address.return_value = [trade]

        await fetcher.fetch_new_trades()
        fetcher.record_outcome(
            trade, ExecutionOutcome("failed", trade.id, reason="persistence_error")
        )

        assert not repository.is_source_processed(trade.id)
        assert [t.id for t in await fetcher.fetch_new_trades()] == ["sell_1"]

    @pytest.mark.asyncio
    async def test_processed_trades_skipped_after_restart(self, source, repository, make_trade):
        trade = make_trade(timestamp=T0)
        repository.mark_source_processed(trade, "skipped", "stale_trade")
        source.fetch_trades_for_address.return_value = [trade]

        fresh = TradeFetcher(source, repository, address="0xtarget", target_balance=25000.0)
        fresh.restore()

        assert fresh.last_fetched_time == T0
        assert await fresh.fetch_new_trades() == []

    @pytest.mark.asyncio
    async def test_feed_failures_retried_until_limit(self, fetcher, source, repository, make_trade):
        trade = make_trade(timestamp=T0)
        source.fetch_trades_for_address.return_value = [trade]
        failed = ExecutionOutcome("failed", trade.id, reason="feed_error")

        for _ in range(MAX_FEED_RETRIES - 1):
            batch = await fetcher.fetch_new_trades()
            assert [t.id for t in batch] == [trade.id]
            fetcher.record_outcome(trade, failed)
            assert not repository.is_source_processed(trade.id)

        batch = await fetcher.fetch_new_trades()
        fetcher.record_outcome(batch[0], failed)

        assert repository.is_source_processed(trade.id)
        assert await fetcher.fetch_new_trades() == []

    @pytest.mark.asyncio
    async def test_skip_outcome_persisted(self, fetcher, repository, make_trade):
        trade = make_trade(timestamp=T0)

        fetcher.record_outcome(trade, ExecutionOutcome("skipped", trade.id, reason="price_drift"))

        assert repository.is_source_processed(trade.id)
        assert repository.get_last_processed_source_time() == T0

    @pytest.mark.asyncio
    async def test_update_target_balance_snapshots(self, fetcher, repository):
        balance = await fetcher.update_target_balance()

        assert balance == 25000.0
        assert fetcher.get_current_target_balance() == 25000.0
        snapshot = repository.get_latest_balance_snapshot("0xtarget")
        assert snapshot.total_balance == 25000.0
        assert snapshot.source == "calculated"

    def test_start_date_sets_initial_cursor(self, source, repository):
        fetcher = TradeFetcher(
            source, repository, address="0xtarget", target_balance=1.0, start_date=T0
        )

        assert fetcher.last_fetched_time == T0
