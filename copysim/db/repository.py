"""Persistence for the copied portfolio.

Every public method opens its own short session unless a
``unit_of_work()`` is active, in which case all writes join that single
transaction and are committed together when it exits.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from copysim.db.database import get_sync_session, init_db
from copysim.db.models import (
    ClosedPositionRecord,
    OrderBookSnapshot,
    PortfolioSnapshot,
    PositionRecord,
    ProcessedSourceTrade,
    TradeRecord,
    TraderBalanceSnapshot,
)
from copysim.exceptions import PersistenceError
from copysim.execution.models import Trade, TradeMetadata, TraderBalance
from copysim.paper_trading.orderbook import OrderBook, total_depth
from copysim.paper_trading.portfolio import Portfolio
from copysim.paper_trading.position_manager import Position
from copysim.utils.parsing import _as_utc, _ensure_sync_db_url as _ensure_sync_url

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Row <-> domain conversion
# ---------------------------------------------------------------------------

def trade_to_record(trade: Trade) -> TradeRecord:
    meta = trade.metadata or TradeMetadata()
    return TradeRecord(
        id=trade.id,
        timestamp=trade.timestamp,
        trader_address=trade.trader_address,
        market_id=trade.market_id,
        market_question=trade.market_question,
        outcome_id=trade.outcome_id,
        side=trade.side,
        shares=trade.shares,
        price=trade.price,
        total_cost=trade.total_cost,
        fee=trade.fee,
        transaction_hash=trade.transaction_hash,
        source=trade.source,
        original_trade_id=meta.original_trade_id,
        target_trade_percent=meta.target_trade_percent,
        target_trader_balance=meta.target_trader_balance,
        our_portfolio_value=meta.our_portfolio_value,
        scaling_ratio=meta.scaling_ratio,
        target_price=meta.target_price,
        our_average_price=meta.our_average_price,
        price_impact=meta.price_impact,
        slippage_cost=meta.slippage_cost,
        fills=meta.fills_as_dicts(),
    )


def record_to_trade(row: TradeRecord) -> Trade:
    metadata = None
    if row.original_trade_id is not None:
        metadata = TradeMetadata(
            original_trade_id=row.original_trade_id,
            target_trade_percent=row.target_trade_percent,
            target_trader_balance=row.target_trader_balance,
            our_portfolio_value=row.our_portfolio_value,
            scaling_ratio=row.scaling_ratio,
            target_price=row.target_price,
            our_average_price=row.our_average_price,
            price_impact=row.price_impact,
            slippage_cost=row.slippage_cost,
            fills=TradeMetadata.fills_from_dicts(row.fills),
        )
    return Trade(
        id=row.id,
        timestamp=_as_utc(row.timestamp),
        trader_address=row.trader_address,
        market_id=row.market_id,
        market_question=row.market_question or "",
        outcome_id=row.outcome_id,
        side=row.side,
        shares=row.shares,
        price=row.price,
        total_cost=row.total_cost,
        fee=row.fee or 0.0,
        transaction_hash=row.transaction_hash,
        source=row.source,
        metadata=metadata,
    )


def position_to_record(position: Position) -> PositionRecord:
    return PositionRecord(
        id=position.id,
        market_id=position.market_id,
        market_question=position.market_question,
        outcome_id=position.outcome_id,
        shares=position.shares,
        average_entry_price=position.average_entry_price,
        total_invested=position.total_invested,
        current_price=position.current_price,
        unrealized_pnl=position.unrealized_pnl,
        realized_pnl=position.realized_pnl,
        is_open=position.is_open,
        opened_at=position.opened_at,
        closed_at=position.closed_at,
        updated_at=position.updated_at,
        average_exit_price=position.average_exit_price,
    )


def record_to_position(row: PositionRecord) -> Position:
    return Position(
        id=row.id,
        market_id=row.market_id,
        outcome_id=row.outcome_id,
        market_question=row.market_question or "",
        shares=row.shares,
        average_entry_price=row.average_entry_price,
        total_invested=row.total_invested,
        current_price=row.current_price,
        unrealized_pnl=row.unrealized_pnl,
        realized_pnl=row.realized_pnl,
        is_open=bool(row.is_open),
        opened_at=_as_utc(row.opened_at),
        closed_at=_as_utc(row.closed_at) if row.closed_at else None,
        updated_at=_as_utc(row.updated_at),
        average_exit_price=row.average_exit_price,
    )


class Repository:
    """Record store for trades, positions and snapshots."""

    def __init__(self, db_url: str = "") -> None:
        self._db_url = _ensure_sync_url(db_url)
        self._uow_session: Optional[Session] = None

    def bootstrap(self) -> None:
        """Create tables."""
        init_db(self._db_url)

    # -- transaction handling ---------------------------------------------

    @contextmanager
    def _session(self) -> Iterator[Session]:
        if self._uow_session is not None:
            yield self._uow_session
            return

        session = get_sync_session(self._db_url)
        try:
            yield session
            session.commit()
        except Exception as exc:
            session.rollback()
            if isinstance(exc, PersistenceError):
                raise
            raise PersistenceError(str(exc)) from exc
        finally:
            session.close()

    @contextmanager
    def unit_of_work(self) -> Iterator["Repository"]:
        """Group several writes into one transaction.

        Anything raised inside rolls the whole group back and propagates
        unchanged, except database errors which become PersistenceError.
        Nested calls join the outer unit.
        """
        if self._uow_session is not None:
            yield self
            return

        session = get_sync_session(self._db_url)
        self._uow_session = session
        try:
            yield self
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            self._uow_session = None
            session.close()

    # -- trades ------------------------------------------------------------

    def save_trade(self, trade: Trade) -> bool:
        """Insert a trade. Returns False if the id already exists."""
        with self._session() as session:
            if session.get(TradeRecord, trade.id) is not None:
                logger.debug("trade_already_saved", trade_id=trade.id)
                return False
            session.add(trade_to_record(trade))
            session.flush()
            return True

    def get_trade(self, trade_id: str) -> Optional[Trade]:
        with self._session() as session:
            row = session.get(TradeRecord, trade_id)
            return record_to_trade(row) if row else None

    def get_all_trades(self, limit: Optional[int] = None) -> list[Trade]:
        """Most recent first."""
        with self._session() as session:
            query = session.query(TradeRecord).order_by(TradeRecord.timestamp.desc())
            if limit:
                query = query.limit(limit)
            return [record_to_trade(r) for r in query.all()]

    def get_trades_by_market(self, market_id: str) -> list[Trade]:
        with self._session() as session:
            rows = (
                session.query(TradeRecord)
                .filter(TradeRecord.market_id == market_id)
                .order_by(TradeRecord.timestamp.asc())
                .all()
            )
            return [record_to_trade(r) for r in rows]

    def has_trade_for_source(self, source_trade_id: str) -> bool:
        with self._session() as session:
            return (
                session.query(TradeRecord.id)
                .filter(TradeRecord.original_trade_id == source_trade_id)
                .first()
                is not None
            )

    # -- positions ---------------------------------------------------------

    def save_position(self, position: Position) -> None:
        """Upsert by id. A reopened (market, outcome) overwrites its closed row."""
        with self._session() as session:
            session.merge(position_to_record(position))
            session.flush()

    def get_position(self, pos_id: str) -> Optional[Position]:
        with self._session() as session:
            row = session.get(PositionRecord, pos_id)
            return record_to_position(row) if row else None

    def get_all_positions(self) -> list[Position]:
        """Live rows plus archived closed positions, oldest first."""
        with self._session() as session:
            rows = session.query(PositionRecord).all()
            archived = session.query(ClosedPositionRecord).all()
            positions = [record_to_position(r) for r in rows + archived]
        positions.sort(key=lambda p: p.opened_at)
        return positions

    def archive_position(self, position: Position) -> None:
        """Keep a closed position before a new BUY overwrites its row."""
        closed_at = position.closed_at or position.updated_at
        with self._session() as session:
            record = ClosedPositionRecord(
                id=f"{position.id}@{closed_at.isoformat()}",
                position_id=position.id,
                market_id=position.market_id,
                market_question=position.market_question,
                outcome_id=position.outcome_id,
                shares=position.shares,
                average_entry_price=position.average_entry_price,
                total_invested=position.total_invested,
                current_price=position.current_price,
                unrealized_pnl=position.unrealized_pnl,
                realized_pnl=position.realized_pnl,
                is_open=False,
                opened_at=position.opened_at,
                closed_at=position.closed_at,
                updated_at=position.updated_at,
                average_exit_price=position.average_exit_price,
            )
            session.merge(record)
            session.flush()
        logger.debug("position_archived", position_id=position.id)

    def get_open_positions(self) -> list[Position]:
        with self._session() as session:
            rows = (
                session.query(PositionRecord)
                .filter(PositionRecord.is_open.is_(True))
                .order_by(PositionRecord.opened_at.asc())
                .all()
            )
            return [record_to_position(r) for r in rows]

    # -- portfolio ---------------------------------------------------------

    def save_portfolio_snapshot(self, portfolio: Portfolio) -> None:
        with self._session() as session:
            session.merge(
                PortfolioSnapshot(
                    id=portfolio.id,
                    timestamp=portfolio.timestamp,
                    total_invested=portfolio.total_invested,
                    total_value=portfolio.total_value,
                    available_cash=portfolio.available_cash,
                    total_pnl=portfolio.total_pnl,
                    total_pnl_percent=portfolio.total_pnl_percent,
                    open_positions_count=len(portfolio.positions),
                    closed_positions_count=portfolio.closed_positions_count,
                    win_rate=portfolio.win_rate,
                )
            )
            session.flush()

    def get_latest_portfolio_snapshot(self) -> Optional[Portfolio]:
        """Latest snapshot, with its open positions re-queried."""
        with self._session() as session:
            row = (
                session.query(PortfolioSnapshot)
                .order_by(PortfolioSnapshot.timestamp.desc())
                .first()
            )
            if row is None:
                return None
            portfolio = Portfolio(
                id=row.id,
                timestamp=_as_utc(row.timestamp),
                total_invested=row.total_invested,
                total_value=row.total_value,
                available_cash=row.available_cash,
                total_pnl=row.total_pnl,
                total_pnl_percent=row.total_pnl_percent,
                closed_positions_count=row.closed_positions_count,
                win_rate=row.win_rate,
            )
        portfolio.positions = self.get_open_positions()
        return portfolio

    def get_portfolio_history(self, limit: Optional[int] = None) -> list[Portfolio]:
        """Snapshots oldest first, without positions. Used for metrics."""
        with self._session() as session:
            query = session.query(PortfolioSnapshot).order_by(PortfolioSnapshot.timestamp.asc())
            if limit:
                query = query.limit(limit)
            return [
                Portfolio(
                    id=row.id,
                    timestamp=_as_utc(row.timestamp),
                    total_invested=row.total_invested,
                    total_value=row.total_value,
                    available_cash=row.available_cash,
                    total_pnl=row.total_pnl,
                    total_pnl_percent=row.total_pnl_percent,
                    closed_positions_count=row.closed_positions_count,
                    win_rate=row.win_rate,
                )
                for row in query.all()
            ]

    # -- source trader -----------------------------------------------------

    def save_balance_snapshot(self, balance: TraderBalance) -> None:
        with self._session() as session:
            session.add(
                TraderBalanceSnapshot(
                    timestamp=balance.timestamp,
                    address=balance.address,
                    total_balance=balance.total_balance,
                    available_cash=balance.available_cash,
                    positions_value=balance.positions_value,
                    source=balance.source,
                )
            )
            session.flush()

    def get_latest_balance_snapshot(self, address: str) -> Optional[TraderBalance]:
        with self._session() as session:
            row = (
                session.query(TraderBalanceSnapshot)
                .filter(TraderBalanceSnapshot.address == address)
                .order_by(TraderBalanceSnapshot.timestamp.desc(), TraderBalanceSnapshot.id.desc())
                .first()
            )
            if row is None:
                return None
            return TraderBalance(
                address=row.address,
                total_balance=row.total_balance,
                available_cash=row.available_cash,
                positions_value=row.positions_value,
                source=row.source,
                timestamp=_as_utc(row.timestamp),
            )

    def mark_source_processed(
        self,
        source_trade: Trade,
        status: str,
        reason: str = "",
    ) -> None:
        """Remember that a source trade was evaluated so restarts never redo it."""
        with self._session() as session:
            session.merge(
                ProcessedSourceTrade(
                    source_trade_id=source_trade.id,
                    source_timestamp=source_trade.timestamp,
                    status=status,
                    reason=reason or None,
                    processed_at=datetime.now(timezone.utc),
                )
            )
            session.flush()

    def is_source_processed(self, source_trade_id: str) -> bool:
        with self._session() as session:
            if session.get(ProcessedSourceTrade, source_trade_id) is not None:
                return True
        return self.has_trade_for_source(source_trade_id)

    def get_last_processed_source_time(self) -> Optional[datetime]:
        with self._session() as session:
            row = (
                session.query(ProcessedSourceTrade)
                .order_by(ProcessedSourceTrade.source_timestamp.desc())
                .first()
            )
            return _as_utc(row.source_timestamp) if row else None

    # -- order books -------------------------------------------------------

    def save_order_book_snapshot(self, book: OrderBook) -> None:
        with self._session() as session:
            session.add(
                OrderBookSnapshot(
                    timestamp=book.timestamp,
                    market_id=book.market_id,
                    outcome_id=book.outcome_id,
                    best_bid=book.best_bid,
                    best_ask=book.best_ask,
                    spread=book.spread,
                    bid_depth_10=total_depth(book.bids, 10),
                    ask_depth_10=total_depth(book.asks, 10),
                    book_data={
                        "bids": [[lvl.price, lvl.size] for lvl in book.bids],
                        "asks": [[lvl.price, lvl.size] for lvl in book.asks],
                    },
                )
            )
            session.flush()
