"""Poll the target wallet for new trades and track its balance.

Dedup is persisted: a source trade is never evaluated twice once it has
been recorded as processed (or mirrored by a saved trade), even across
restarts. Trades that failed on a transient feed or database error are
retried on the next poll instead. The cursor only moves past a trade once
its outcome is recorded, so a cycle that dies mid-batch refetches the rest.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

import structlog

from copysim.db.repository import Repository
from copysim.execution.models import ExecutionOutcome, Trade, TraderBalance
from copysim.feeds.base import TradeSource
from copysim.utils.parsing import _parse_datetime

logger = structlog.get_logger()

CURSOR_OVERLAP = timedelta(seconds=1)
MAX_FEED_RETRIES = 5
RETRYABLE_REASONS = ("feed_error", "persistence_error")


class TradeFetcher:
    """Cursor-based polling of one wallet's trades."""

    def __init__(
        self,
        source: TradeSource,
        repository: Repository,
        address: str,
        target_balance: float,
        start_date: Optional[datetime] = None,
        fetch_limit: int = 100,
    ) -> None:
        self.source = source
        self.repository = repository
        self.address = address
        self.target_balance = target_balance
        self.fetch_limit = fetch_limit
        self.last_fetched_time: Optional[datetime] = start_date
        self._retry: dict[str, Trade] = {}
        self._attempts: dict[str, int] = {}

    @classmethod
    def from_settings(cls, source: TradeSource, repository: Repository) -> "TradeFetcher":
        from config.settings import settings
        return cls(
            source=source,
            repository=repository,
            address=settings.TARGET_TRADER_ADDRESS,
            target_balance=settings.TARGET_TRADER_BALANCE,
            start_date=_parse_datetime(settings.START_DATE) if settings.START_DATE else None,
            fetch_limit=settings.TRADE_FETCH_LIMIT,
        )

    def restore(self) -> None:
        """Resume the cursor from the last processed source trade."""
        last = self.repository.get_last_processed_source_time()
        if last is not None and (self.last_fetched_time is None or last > self.last_fetched_time):
            self.last_fetched_time = last
            logger.info("trade_cursor_restored", last_trade_time=last.isoformat())

    async def fetch_new_trades(self) -> list[Trade]:
        """New source trades plus pending retries, oldest first."""
        since = self.last_fetched_time - CURSOR_OVERLAP if self.last_fetched_time else None
        fetched = await self.source.fetch_trades_for_address(
            self.address,
            since=since,
            limit=self.fetch_limit,
        )

        new_trades = []
        for trade in fetched:
            if trade.id in self._retry:
                continue
            if self.repository.is_source_processed(trade.id):
                continue
            new_trades.append(trade)

        if new_trades:
            logger.info(
                "new_trades_found",
                count=len(new_trades),
                oldest=min(t.timestamp for t in new_trades).isoformat(),
                newest=max(t.timestamp for t in new_trades).isoformat(),
            )

        batch = new_trades + list(self._retry.values())
        batch.sort(key=lambda t: t.timestamp)
        return batch

    def record_outcome(self, trade: Trade, outcome: ExecutionOutcome) -> None:
        """Persist the outcome, or queue the trade again after a transient error."""
        if outcome.status == "failed" and outcome.reason in RETRYABLE_REASONS:
            attempts = self._attempts.get(trade.id, 0) + 1
            self._attempts[trade.id] = attempts
            if attempts < MAX_FEED_RETRIES:
                self._retry[trade.id] = trade
                logger.info("trade_queued_for_retry", source_trade_id=trade.id, attempts=attempts)
                return

        self._retry.pop(trade.id, None)
        self._attempts.pop(trade.id, None)
        self.repository.mark_source_processed(trade, outcome.status, outcome.reason)
        if self.last_fetched_time is None or trade.timestamp > self.last_fetched_time:
            self.last_fetched_time = trade.timestamp

    async def update_target_balance(self) -> float:
        """Snapshot the copied wallet's balance. Uses the configured estimate."""
        balance = TraderBalance(
            address=self.address,
            total_balance=self.target_balance,
            available_cash=0.0,
            positions_value=self.target_balance,
            source="calculated",
        )
        self.repository.save_balance_snapshot(balance)
        logger.info("target_balance_updated", balance=round(self.target_balance, 2))
        return self.target_balance

    def get_current_target_balance(self) -> float:
        return self.target_balance
