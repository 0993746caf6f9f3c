"""Copytrading engine: the polling loop tying everything together."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

import structlog

from copysim.db.repository import Repository
from copysim.exceptions import AccountingError, CopySimError
from copysim.execution.executor import TradeExecutor
from copysim.execution.models import ExecutionOutcome
from copysim.execution.resolver import MarketResolver
from copysim.feeds.base import TradeSource
from copysim.feeds.trade_fetcher import TradeFetcher
from copysim.paper_trading.market_observer import MarketObserver
from copysim.paper_trading.metrics import CopyTradingMetrics, format_report
from copysim.paper_trading.portfolio import Portfolio, create_portfolio, recompute_portfolio

logger = structlog.get_logger()


class CopyTradingEngine:
    """Single-task driver. Nothing else mutates the ledger while it runs.

    Each cycle polls for new source trades, executes them oldest first,
    re-marks open positions after every trade and reports after the batch.
    Balance refresh and resolution sweeps run from the same loop on their
    own, longer periods.
    """

    def __init__(
        self,
        repository: Repository,
        fetcher: TradeFetcher,
        executor: TradeExecutor,
        resolver: MarketResolver,
        observer: MarketObserver,
        *,
        initial_capital: float,
        polling_interval: float = 10.0,
        balance_interval: float = 300.0,
        resolution_interval: float = 300.0,
        error_backoff: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.repository = repository
        self.fetcher = fetcher
        self.executor = executor
        self.resolver = resolver
        self.observer = observer
        self.initial_capital = initial_capital
        self.polling_interval = polling_interval
        self.balance_interval = balance_interval
        self.resolution_interval = resolution_interval
        self.error_backoff = error_backoff
        self._clock = clock

        self.portfolio: Optional[Portfolio] = None
        self._running = False
        self._stop_event = asyncio.Event()
        self._last_balance_update: Optional[float] = None
        self._last_resolution_check: Optional[float] = None

    @classmethod
    def from_settings(cls, source: TradeSource, repository: Repository) -> "CopyTradingEngine":
        from config.settings import settings
        return cls(
            repository=repository,
            fetcher=TradeFetcher.from_settings(source, repository),
            executor=TradeExecutor.from_settings(repository, source),
            resolver=MarketResolver(source, repository, settings.INITIAL_CAPITAL),
            observer=MarketObserver(source=source, repository=repository),
            initial_capital=settings.INITIAL_CAPITAL,
            polling_interval=settings.POLLING_INTERVAL_SECONDS,
            balance_interval=settings.UPDATE_BALANCE_INTERVAL_SECONDS,
            resolution_interval=settings.RESOLUTION_CHECK_INTERVAL_SECONDS,
            error_backoff=settings.ERROR_BACKOFF_SECONDS,
        )

    @property
    def is_running(self) -> bool:
        return self._running

    def load_portfolio(self) -> Portfolio:
        """Resume from the latest snapshot, or start fresh with the initial capital."""
        portfolio = self.repository.get_latest_portfolio_snapshot()
        if portfolio is None:
            portfolio = create_portfolio(self.initial_capital)
            self.repository.save_portfolio_snapshot(portfolio)
            logger.info("portfolio_created", initial_capital=self.initial_capital)
        else:
            recompute_portfolio(portfolio, self.repository.get_all_positions(), self.initial_capital)
            logger.info(
                "portfolio_loaded",
                value=round(portfolio.total_value, 2),
                pnl_pct=round(portfolio.total_pnl_percent, 2),
            )
        self.portfolio = portfolio
        return portfolio

    async def startup(self) -> None:
        self.load_portfolio()
        self.fetcher.restore()
        await self.fetcher.update_target_balance()
        self._last_balance_update = self._clock()
        logger.info(
            "engine_ready",
            target=self.fetcher.address,
            polling_interval=self.polling_interval,
        )

    async def run(self) -> None:
        """Loop until ``stop()``. Only AccountingError escapes."""
        await self.startup()
        self._running = True
        self._stop_event.clear()
        logger.info(self.report())

        while self._running:
            try:
                await self.run_cycle()
            except AccountingError:
                self._running = False
                raise
            except Exception as exc:
                logger.error("cycle_error", error=str(exc), error_type=type(exc).__name__)
                await self._sleep(self.error_backoff)
                continue
            await self._sleep(self.polling_interval)

        logger.info("engine_stopped")

    def stop(self) -> None:
        logger.info("engine_stopping")
        self._running = False
        self._stop_event.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run_cycle(self) -> list[ExecutionOutcome]:
        """One poll: execute new trades, then periodic maintenance."""
        if self.portfolio is None:
            self.load_portfolio()

        trades = await self.fetcher.fetch_new_trades()
        outcomes: list[ExecutionOutcome] = []

        if trades:
            logger.info("processing_trades", count=len(trades))
        for trade in trades:
            balance = self.fetcher.get_current_target_balance()
            outcome = await self.executor.execute_trade(trade, self.portfolio, balance)
            self.fetcher.record_outcome(trade, outcome)
            outcomes.append(outcome)
            await self.refresh_marks()

        if outcomes:
            logger.info(
                "batch_complete",
                executed=sum(1 for o in outcomes if o.status == "executed"),
                skipped=sum(1 for o in outcomes if o.status == "skipped"),
                failed=sum(1 for o in outcomes if o.status == "failed"),
            )
            logger.info(self.report())

        await self.run_maintenance()
        return outcomes

    async def refresh_marks(self) -> None:
        """Re-mark open positions and recompute the portfolio."""
        try:
            await self.observer.update_position_prices()
        except CopySimError as exc:
            logger.warning("mark_refresh_failed", error=str(exc))
        recompute_portfolio(self.portfolio, self.repository.get_all_positions(), self.initial_capital)
        self.repository.save_portfolio_snapshot(self.portfolio)

    async def run_maintenance(self, force: bool = False) -> None:
        """Balance refresh and resolution sweep, each on its own period."""
        now = self._clock()

        if force or self._due(self._last_balance_update, self.balance_interval, now):
            self._last_balance_update = now
            await self.fetcher.update_target_balance()

        if force or self._due(self._last_resolution_check, self.resolution_interval, now):
            self._last_resolution_check = now
            settled = await self.resolver.check_and_resolve_markets(self.portfolio)
            recompute_portfolio(
                self.portfolio, self.repository.get_all_positions(), self.initial_capital
            )
            if settled:
                self.repository.save_portfolio_snapshot(self.portfolio)
                logger.info("positions_resolved", count=len(settled), **self.resolver.resolved_summary())

    @staticmethod
    def _due(last: Optional[float], interval: float, now: float) -> bool:
        return last is None or now - last >= interval

    def report(self) -> str:
        """Text performance report for the current portfolio."""
        metrics = CopyTradingMetrics(
            trades=self.repository.get_all_trades(),
            positions=self.repository.get_all_positions(),
            history=self.repository.get_portfolio_history(),
        )
        return format_report(self.portfolio, metrics)
