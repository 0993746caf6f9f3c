"""Database module for the copytrading simulator."""

from .models import (
    Base,
    ClosedPositionRecord,
    OrderBookSnapshot,
    PortfolioSnapshot,
    PositionRecord,
    ProcessedSourceTrade,
    TradeRecord,
    TraderBalanceSnapshot,
)
from .database import get_sync_session, init_db, reset_engines

__all__ = [
    "Base",
    "ClosedPositionRecord",
    "OrderBookSnapshot",
    "PortfolioSnapshot",
    "PositionRecord",
    "ProcessedSourceTrade",
    "TradeRecord",
    "TraderBalanceSnapshot",
    "get_sync_session",
    "init_db",
    "reset_engines",
]
