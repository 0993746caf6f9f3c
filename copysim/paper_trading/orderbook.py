"""Point-in-time order book snapshot and depth queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from copysim.exceptions import EmptyBookError


@dataclass(slots=True)
class OrderLevel:
    price: float
    size: float
    cumulative_size: float = 0.0


@dataclass
class OrderBook:
    """Snapshot of one (market, outcome) book.

    Bids are ordered best (highest) first, asks best (lowest) first.
    """

    market_id: str
    outcome_id: str
    bids: list[OrderLevel] = field(default_factory=list)
    asks: list[OrderLevel] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_levels(
        cls,
        market_id: str,
        outcome_id: str,
        bids: Iterable[tuple[float, float]],
        asks: Iterable[tuple[float, float]],
        timestamp: Optional[datetime] = None,
    ) -> "OrderBook":
        """Build a book from raw (price, size) pairs in any order."""
        return cls(
            market_id=market_id,
            outcome_id=outcome_id,
            bids=build_levels(bids, descending=True),
            asks=build_levels(asks, descending=False),
            timestamp=timestamp or datetime.now(timezone.utc),
        )

    @property
    def best_bid(self) -> Optional[float]:
        return self.bids[0].price if self.bids else None

    @property
    def best_ask(self) -> Optional[float]:
        return self.asks[0].price if self.asks else None

    @property
    def spread(self) -> float:
        return spread(self)

    @property
    def is_empty(self) -> bool:
        return not self.bids and not self.asks


def build_levels(
    pairs: Iterable[tuple[float, float]],
    descending: bool,
) -> list[OrderLevel]:
    """Sort raw levels best-first and fill in cumulative sizes."""
    ordered = sorted(pairs, key=lambda p: p[0], reverse=descending)
    levels: list[OrderLevel] = []
    cumulative = 0.0
    for price, size in ordered:
        cumulative += size
        levels.append(OrderLevel(price=price, size=size, cumulative_size=cumulative))
    return levels


def mid_price(book: OrderBook) -> float:
    if not book.asks or not book.bids:
        raise EmptyBookError("Order book is empty")
    return (book.asks[0].price + book.bids[0].price) / 2


def spread(book: OrderBook) -> float:
    if not book.asks or not book.bids:
        return 0.0
    return book.asks[0].price - book.bids[0].price


def total_depth(levels: list[OrderLevel], num_levels: int = 10) -> float:
    return sum(level.size for level in levels[:num_levels])
