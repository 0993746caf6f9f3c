"""Shared data structures for trade execution."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from copysim.utils.parsing import generate_id

BUY = "BUY"
SELL = "SELL"


def create_trade_id() -> str:
    return generate_id("trade")


@dataclass(slots=True)
class Fill:
    """Shares taken at a single order book level."""

    price: float
    shares: float
    cost: float


@dataclass(slots=True)
class FillResult:
    """Result of walking the book for one simulated order."""

    requested_shares: float
    executed_shares: float
    average_price: float
    price_impact: float  # percent vs. mid price
    total_cost: float
    fills: list[Fill] = field(default_factory=list)

    @property
    def fill_percentage(self) -> float:
        if self.requested_shares <= 0:
            return 0.0
        return self.executed_shares / self.requested_shares * 100

    @property
    def is_partial(self) -> bool:
        return self.executed_shares < self.requested_shares


@dataclass(slots=True)
class TradeMetadata:
    """How a copied trade was scaled and priced."""

    # Scaling
    original_trade_id: Optional[str] = None
    target_trade_percent: Optional[float] = None
    target_trader_balance: Optional[float] = None
    our_portfolio_value: Optional[float] = None
    scaling_ratio: Optional[float] = None

    # Slippage
    target_price: Optional[float] = None
    our_average_price: Optional[float] = None
    price_impact: Optional[float] = None
    slippage_cost: Optional[float] = None
    fills: Optional[list[Fill]] = None

    def fills_as_dicts(self) -> Optional[list[dict[str, float]]]:
        if self.fills is None:
            return None
        return [asdict(f) for f in self.fills]

    @staticmethod
    def fills_from_dicts(raw: Any) -> Optional[list[Fill]]:
        if not isinstance(raw, list):
            return None
        return [
            Fill(price=float(f["price"]), shares=float(f["shares"]), cost=float(f["cost"]))
            for f in raw
        ]


@dataclass(slots=True)
class Trade:
    """An executed trade, either observed from the target or simulated for us."""

    id: str
    timestamp: datetime
    trader_address: str
    market_id: str
    market_question: str
    outcome_id: str
    side: str  # "BUY" or "SELL"
    shares: float
    price: float
    total_cost: float
    fee: float = 0.0
    transaction_hash: Optional[str] = None
    source: str = "api"  # "api", "blockchain" or "simulated"
    metadata: Optional[TradeMetadata] = None

    @property
    def is_buy(self) -> bool:
        return self.side == BUY

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or datetime.now(timezone.utc)
        return (now - self.timestamp).total_seconds()


@dataclass(slots=True)
class TraderBalance:
    """Estimated portfolio value of the copied wallet."""

    address: str
    total_balance: float
    available_cash: float = 0.0
    positions_value: float = 0.0
    source: str = "calculated"  # "api" or "calculated"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(slots=True)
class ExecutionOutcome:
    """Terminal state of processing one observed trade."""

    status: str  # "executed", "skipped" or "failed"
    source_trade_id: str
    reason: str = ""
    trade: Optional[Trade] = None

    @property
    def executed(self) -> bool:
        return self.status == "executed"
