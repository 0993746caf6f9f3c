"""SQLAlchemy ORM models for copied trades, positions and snapshots."""

from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TradeRecord(Base):
    """Model for trades we executed (source trades are never stored here)."""

    __tablename__ = "trades"

    id = Column(String(100), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    trader_address = Column(String(64), nullable=False)
    market_id = Column(String(255), nullable=False, index=True)
    market_question = Column(Text, nullable=False, default="")
    outcome_id = Column(String(255), nullable=False)
    side = Column(String(4), nullable=False)  # "BUY" or "SELL"
    shares = Column(Float, nullable=False)
    price = Column(Float, nullable=False)
    total_cost = Column(Float, nullable=False)
    fee = Column(Float, nullable=False, default=0.0)
    transaction_hash = Column(String(255), nullable=True)
    source = Column(String(20), nullable=False, default="simulated")

    # Scaling metadata
    original_trade_id = Column(String(255), nullable=True, index=True)
    target_trade_percent = Column(Float, nullable=True)
    target_trader_balance = Column(Float, nullable=True)
    our_portfolio_value = Column(Float, nullable=True)
    scaling_ratio = Column(Float, nullable=True)

    # Slippage metadata
    target_price = Column(Float, nullable=True)
    our_average_price = Column(Float, nullable=True)
    price_impact = Column(Float, nullable=True)
    slippage_cost = Column(Float, nullable=True)
    fills = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def __repr__(self) -> str:
        return f"<TradeRecord(id={self.id}, side={self.side}, shares={self.shares})>"


class PositionRecord(Base):
    """One row per (market, outcome). Closed rows stay as history."""

    __tablename__ = "positions"

    id = Column(String(600), primary_key=True)  # pos_<market>_<outcome>
    market_id = Column(String(255), nullable=False, index=True)
    market_question = Column(Text, nullable=False, default="")
    outcome_id = Column(String(255), nullable=False)
    shares = Column(Float, nullable=False, default=0.0)
    average_entry_price = Column(Float, nullable=False, default=0.0)
    total_invested = Column(Float, nullable=False, default=0.0)
    current_price = Column(Float, nullable=False, default=0.0)
    unrealized_pnl = Column(Float, nullable=False, default=0.0)
    realized_pnl = Column(Float, nullable=False, default=0.0)
    is_open = Column(Boolean, nullable=False, default=True, index=True)
    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    average_exit_price = Column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<PositionRecord(id={self.id}, shares={self.shares}, open={self.is_open})>"


class ClosedPositionRecord(Base):
    """Closed position copied aside before a new BUY reuses its id."""

    __tablename__ = "closed_positions"

    id = Column(String(700), primary_key=True)  # <position id>@<closed_at iso>
    position_id = Column(String(600), nullable=False, index=True)
    market_id = Column(String(255), nullable=False)
    market_question = Column(Text, nullable=False, default="")
    outcome_id = Column(String(255), nullable=False)
    shares = Column(Float, nullable=False, default=0.0)
    average_entry_price = Column(Float, nullable=False, default=0.0)
    total_invested = Column(Float, nullable=False, default=0.0)
    current_price = Column(Float, nullable=False, default=0.0)
    unrealized_pnl = Column(Float, nullable=False, default=0.0)
    realized_pnl = Column(Float, nullable=False, default=0.0)
    is_open = Column(Boolean, nullable=False, default=False)
    opened_at = Column(DateTime(timezone=True), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    average_exit_price = Column(Float, nullable=True)


class PortfolioSnapshot(Base):
    __tablename__ = "portfolio_snapshots"

    id = Column(String(100), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    total_invested = Column(Float, nullable=False)
    total_value = Column(Float, nullable=False)
    available_cash = Column(Float, nullable=False)
    total_pnl = Column(Float, nullable=False)
    total_pnl_percent = Column(Float, nullable=False)
    open_positions_count = Column(Integer, nullable=False, default=0)
    closed_positions_count = Column(Integer, nullable=False, default=0)
    win_rate = Column(Float, nullable=False, default=0.0)


class TraderBalanceSnapshot(Base):
    """Estimate of the copied wallet's portfolio value, used for scaling."""

    __tablename__ = "trader_balance_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    address = Column(String(64), nullable=False, index=True)
    total_balance = Column(Float, nullable=False)
    available_cash = Column(Float, nullable=False, default=0.0)
    positions_value = Column(Float, nullable=False, default=0.0)
    source = Column(String(20), nullable=False)  # "api" or "calculated"


class OrderBookSnapshot(Base):
    """Book seen at execution time, kept for slippage analysis."""

    __tablename__ = "order_book_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    market_id = Column(String(255), nullable=False, index=True)
    outcome_id = Column(String(255), nullable=False)
    best_bid = Column(Float, nullable=True)
    best_ask = Column(Float, nullable=True)
    spread = Column(Float, nullable=True)
    bid_depth_10 = Column(Float, nullable=True)
    ask_depth_10 = Column(Float, nullable=True)
    book_data = Column(JSON, nullable=True)


class ProcessedSourceTrade(Base):
    """Every source trade we evaluated, executed or not. Restart-safe dedup."""

    __tablename__ = "processed_source_trades"

    source_trade_id = Column(String(255), primary_key=True)
    source_timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String(20), nullable=False)  # executed, skipped, failed
    reason = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), default=_utcnow)
