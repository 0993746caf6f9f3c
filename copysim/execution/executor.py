"""Mirror one observed trade onto our portfolio.

The executor scales the source trade by portfolio percentage, re-prices
it against the live market (walking the order book when slippage
simulation is on), charges the taker fee and applies it to the ledger.
Every trade ends as executed, skipped or failed. Feed and database read
errors before the ledger is touched are failures the caller may retry.
Only a failure while updating the ledger escapes, as AccountingError.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog

from copysim.db.repository import Repository
from copysim.exceptions import (
    AccountingError,
    EmptyBookError,
    FeedError,
    InsufficientCapitalError,
    InsufficientLiquidityError,
    MarketUnavailableError,
    NoPositionError,
    PersistenceError,
    PriceDriftError,
    StaleTradeError,
    TradeSkipped,
)
from copysim.execution.models import (
    BUY,
    ExecutionOutcome,
    Fill,
    Trade,
    TradeMetadata,
    create_trade_id,
)
from copysim.feeds.base import MarketInfo, TradeSource
from copysim.paper_trading.execution_sim import ExecutionSimulator
from copysim.paper_trading.orderbook import OrderBook
from copysim.paper_trading.portfolio import Portfolio, recompute_portfolio, reconcile_pnl
from copysim.paper_trading.position_manager import (
    Position,
    apply_buy,
    apply_sell,
    new_position,
    position_id,
)

logger = structlog.get_logger()


@dataclass(slots=True)
class _Pricing:
    """Our fill before fees."""

    shares: float
    average_price: float
    cost: float
    price_impact: float
    slippage_cost: float
    fills: Optional[list[Fill]] = None
    book: Optional[OrderBook] = None


class TradeExecutor:
    """Scale, price and book one copied trade."""

    def __init__(
        self,
        repository: Repository,
        source: TradeSource,
        simulator: ExecutionSimulator,
        *,
        initial_capital: float,
        copy_ratio: float = 1.0,
        max_buy_age_seconds: float = 120.0,
        max_price_drift: float = 0.02,
        max_position_size_pct: float = 0.0,
        enable_slippage_simulation: bool = True,
        store_order_book_snapshots: bool = True,
        pnl_tolerance: float = 0.01,
        strict_accounting: bool = False,
    ) -> None:
        self.repository = repository
        self.source = source
        self.simulator = simulator
        self.initial_capital = initial_capital
        self.copy_ratio = copy_ratio
        self.max_buy_age_seconds = max_buy_age_seconds
        self.max_price_drift = max_price_drift
        self.max_position_size_pct = max_position_size_pct
        self.enable_slippage_simulation = enable_slippage_simulation
        self.store_order_book_snapshots = store_order_book_snapshots
        self.pnl_tolerance = pnl_tolerance
        self.strict_accounting = strict_accounting

    @classmethod
    def from_settings(
        cls,
        repository: Repository,
        source: TradeSource,
        simulator: Optional[ExecutionSimulator] = None,
    ) -> "TradeExecutor":
        from config.settings import settings
        return cls(
            repository,
            source,
            simulator or ExecutionSimulator.from_settings(),
            initial_capital=settings.INITIAL_CAPITAL,
            copy_ratio=settings.COPY_RATIO,
            max_buy_age_seconds=settings.MAX_BUY_AGE_SECONDS,
            max_price_drift=settings.MAX_PRICE_DRIFT,
            max_position_size_pct=settings.MAX_POSITION_SIZE_PCT,
            enable_slippage_simulation=settings.ENABLE_SLIPPAGE_SIMULATION,
            store_order_book_snapshots=settings.STORE_ORDER_BOOK_SNAPSHOTS,
            pnl_tolerance=settings.PNL_RECONCILE_TOLERANCE,
            strict_accounting=settings.STRICT_ACCOUNTING,
        )

    async def execute_trade(
        self,
        source_trade: Trade,
        portfolio: Portfolio,
        source_balance: float,
        now: Optional[datetime] = None,
    ) -> ExecutionOutcome:
        """Process one observed trade. Mutates ``portfolio`` when executed."""
        log = logger.bind(
            source_trade_id=source_trade.id,
            side=source_trade.side,
            market=source_trade.market_question[:60],
        )
        try:
            trade, book = await self._build_trade(
                source_trade, portfolio, source_balance, now, log
            )
        except TradeSkipped as exc:
            log.warning("trade_skipped", reason=exc.reason, detail=str(exc))
            return ExecutionOutcome("skipped", source_trade.id, reason=exc.reason)
        except FeedError as exc:
            log.error("trade_failed", reason="feed_error", error=str(exc))
            return ExecutionOutcome("failed", source_trade.id, reason="feed_error")
        except PersistenceError as exc:
            # Read failed before anything was written; safe to retry
            log.error("trade_failed", reason="persistence_error", error=str(exc))
            return ExecutionOutcome("failed", source_trade.id, reason="persistence_error")

        self._apply(trade, portfolio, book)

        log.info(
            "trade_executed",
            trade_id=trade.id,
            shares=round(trade.shares, 2),
            average_price=round(trade.price, 4),
            total_cost=round(trade.total_cost, 2),
            fee=round(trade.fee, 2),
            slippage_cost=round(trade.metadata.slippage_cost or 0.0, 2),
            cash=round(portfolio.available_cash, 2),
            portfolio_value=round(portfolio.total_value, 2),
        )
        log.info(
            "portfolio_pnl",
            total_pnl=round(portfolio.total_pnl, 2),
            total_pnl_pct=round(portfolio.total_pnl_percent, 2),
            open_positions=len(portfolio.positions),
            win_rate=round(portfolio.win_rate, 1),
        )
        return ExecutionOutcome("executed", source_trade.id, trade=trade)

    # ------------------------------------------------------------------
    # Decide and price. Raises TradeSkipped or FeedError.
    # ------------------------------------------------------------------

    async def _build_trade(
        self,
        source_trade: Trade,
        portfolio: Portfolio,
        source_balance: float,
        now: Optional[datetime],
        log,
    ) -> tuple[Trade, Optional[OrderBook]]:
        is_buy = source_trade.side == BUY
        age = source_trade.age_seconds(now or datetime.now(timezone.utc))

        if is_buy and age > self.max_buy_age_seconds:
            raise StaleTradeError(
                f"BUY is {age:.0f}s old, max {self.max_buy_age_seconds:.0f}s"
            )

        if source_balance <= 0:
            raise TradeSkipped(f"Source balance {source_balance} is not positive")

        target_percent = source_trade.total_cost / source_balance
        our_portfolio_value = portfolio.total_value
        scaled_cost = our_portfolio_value * target_percent * self.copy_ratio
        if is_buy and self.max_position_size_pct > 0:
            scaled_cost = min(scaled_cost, our_portfolio_value * self.max_position_size_pct)

        log.info(
            "trade_scaled",
            target_trade_pct=round(target_percent * 100, 4),
            source_balance=source_balance,
            our_portfolio_value=round(our_portfolio_value, 2),
            scaled_cost=round(scaled_cost, 2),
            age_s=round(age),
        )

        market = await self.source.fetch_market(source_trade.market_id)
        current_price = self._current_price(market, source_trade)

        if is_buy:
            drift = abs(current_price - source_trade.price)
            if drift > self.max_price_drift:
                raise PriceDriftError(
                    f"Price moved {drift:.4f} from {source_trade.price:.4f} "
                    f"(max {self.max_price_drift})"
                )

        desired_shares = scaled_cost / current_price
        if desired_shares <= 0:
            raise TradeSkipped("Scaled trade size is zero")

        if not is_buy:
            position = self._open_position_for(source_trade)
            if position.shares < desired_shares:
                log.warning(
                    "sell_clamped",
                    our_shares=round(position.shares, 4),
                    requested=round(desired_shares, 4),
                )
                desired_shares = position.shares

        pricing = await self._price(source_trade, desired_shares, current_price, market, log)
        fee = self.simulator.calculate_fee(pricing.cost, is_maker=False)

        if is_buy and portfolio.available_cash < pricing.cost + fee:
            raise InsufficientCapitalError(
                f"Need {pricing.cost + fee:.2f}, have {portfolio.available_cash:.2f}"
            )

        metadata = TradeMetadata(
            original_trade_id=source_trade.id,
            target_trade_percent=target_percent,
            target_trader_balance=source_balance,
            our_portfolio_value=our_portfolio_value,
            scaling_ratio=(
                pricing.cost / source_trade.total_cost if source_trade.total_cost else None
            ),
            target_price=source_trade.price,
            our_average_price=pricing.average_price,
            price_impact=pricing.price_impact,
            slippage_cost=pricing.slippage_cost,
            fills=pricing.fills,
        )
        trade = Trade(
            id=create_trade_id(),
            timestamp=datetime.now(timezone.utc),
            trader_address=source_trade.trader_address,
            market_id=source_trade.market_id,
            market_question=source_trade.market_question,
            outcome_id=source_trade.outcome_id,
            side=source_trade.side,
            shares=pricing.shares,
            price=pricing.average_price,
            total_cost=pricing.cost,
            fee=fee,
            transaction_hash=source_trade.transaction_hash,
            source="simulated",
            metadata=metadata,
        )
        return trade, pricing.book

    @staticmethod
    def _current_price(market: MarketInfo, source_trade: Trade) -> float:
        if not market.active or not market.accepting_orders:
            raise MarketUnavailableError(
                f"Market {source_trade.market_id} inactive or not accepting orders"
            )
        price = market.price_for(source_trade.outcome_id)
        if price is None or price <= 0:
            raise MarketUnavailableError(
                f"No current price for outcome {source_trade.outcome_id}"
            )
        return price

    def _open_position_for(self, source_trade: Trade) -> Position:
        position = self.repository.get_position(
            position_id(source_trade.market_id, source_trade.outcome_id)
        )
        if position is None or not position.is_open or position.shares <= 0:
            raise NoPositionError(
                f"No open position in {source_trade.market_id}/{source_trade.outcome_id}"
            )
        return position

    async def _price(
        self,
        source_trade: Trade,
        shares: float,
        current_price: float,
        market: MarketInfo,
        log,
    ) -> _Pricing:
        if self.enable_slippage_simulation:
            try:
                book = await self.source.fetch_order_book(
                    source_trade.market_id, source_trade.outcome_id
                )
                return self._price_from_book(source_trade, shares, book)
            except (FeedError, EmptyBookError) as exc:
                estimate = self.simulator.estimate_slippage_from_size(
                    shares * current_price, market.volume_24h, source_trade.side
                )
                log.warning(
                    "book_unavailable_using_market_price",
                    error=str(exc),
                    estimated_slippage_pct=round(estimate * 100, 4),
                )

        return _Pricing(
            shares=shares,
            average_price=current_price,
            cost=shares * current_price,
            price_impact=(current_price - source_trade.price) / source_trade.price * 100
            if source_trade.price
            else 0.0,
            slippage_cost=(current_price - source_trade.price) * shares,
        )

    def _price_from_book(self, source_trade: Trade, shares: float, book: OrderBook) -> _Pricing:
        result = self.simulator.simulate(
            source_trade.side, shares, book, preceding_trade=source_trade
        )
        if result.executed_shares <= 0:
            raise InsufficientLiquidityError(0.0)
        return _Pricing(
            shares=result.executed_shares,
            average_price=result.average_price,
            cost=result.total_cost,
            price_impact=result.price_impact,
            slippage_cost=(result.average_price - source_trade.price) * result.executed_shares,
            fills=result.fills,
            book=book,
        )

    # ------------------------------------------------------------------
    # Ledger and persistence. Runs to completion or raises.
    # ------------------------------------------------------------------

    def _apply(self, trade: Trade, portfolio: Portfolio, book: Optional[OrderBook]) -> None:
        try:
            with self.repository.unit_of_work():
                pos_id = position_id(trade.market_id, trade.outcome_id)
                position = self.repository.get_position(pos_id)

                if trade.is_buy:
                    if position is not None and not position.is_open:
                        self.repository.archive_position(position)
                        position = None
                    if position is None:
                        position = new_position(trade)
                    apply_buy(position, trade)
                    portfolio.available_cash -= trade.total_cost + trade.fee
                else:
                    if position is None:
                        raise AccountingError(f"Position {pos_id} vanished before SELL")
                    apply_sell(position, trade)
                    portfolio.available_cash += trade.total_cost - trade.fee

                self.repository.save_trade(trade)
                self.repository.save_position(position)
                recompute_portfolio(
                    portfolio, self.repository.get_all_positions(), self.initial_capital
                )
                self.repository.save_portfolio_snapshot(portfolio)
                if book is not None and self.store_order_book_snapshots:
                    self.repository.save_order_book_snapshot(book)

                reconcile_pnl(
                    portfolio,
                    self.repository.get_all_positions(),
                    tolerance=self.pnl_tolerance,
                    strict=self.strict_accounting,
                )
        except AccountingError:
            raise
        except Exception as exc:
            raise AccountingError(f"Ledger update failed for {trade.id}: {exc}") from exc
