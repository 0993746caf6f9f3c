"""Interfaces the copy engine consumes, and the market shapes they return."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from copysim.execution.models import Trade
from copysim.paper_trading.orderbook import OrderBook


@dataclass(slots=True)
class TokenInfo:
    """One outcome token of a market."""

    token_id: str
    outcome: str = ""
    price: Optional[float] = None
    winner: bool = False


@dataclass(slots=True)
class MarketInfo:
    condition_id: str
    question: str = ""
    active: bool = False
    accepting_orders: bool = False
    closed: bool = False
    tokens: list[TokenInfo] = field(default_factory=list)
    volume_24h: float = 0.0

    def token(self, token_id: str) -> Optional[TokenInfo]:
        for tok in self.tokens:
            if tok.token_id == token_id:
                return tok
        return None

    def price_for(self, token_id: str) -> Optional[float]:
        tok = self.token(token_id)
        return tok.price if tok is not None else None

    @property
    def winning_token(self) -> Optional[TokenInfo]:
        for tok in self.tokens:
            if tok.winner:
                return tok
        return None

    @property
    def is_tradeable(self) -> bool:
        return self.active and self.accepting_orders and not self.closed


class TradeSource(Protocol):
    """Where observed trades, books and market state come from."""

    async def fetch_trades_for_address(
        self,
        address: str,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[Trade]: ...

    async def fetch_order_book(self, market_id: str, outcome_id: str) -> OrderBook: ...

    async def fetch_market(self, market_id: str) -> MarketInfo: ...

    async def fetch_markets(self) -> list[MarketInfo]: ...
