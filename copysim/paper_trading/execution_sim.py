"""Simulate trade execution against an order book."""

from __future__ import annotations

import copy
import math
from dataclasses import dataclass
from typing import Optional

import structlog

from copysim.exceptions import (
    EmptyBookError,
    ExcessiveSlippageError,
    InsufficientLiquidityError,
)
from copysim.execution.models import BUY, Fill, FillResult, Trade
from copysim.paper_trading.orderbook import OrderBook, OrderLevel, mid_price

logger = structlog.get_logger()


@dataclass
class ExecutionSimulator:
    """Simulate realistic fills by walking the book level by level.

    The copied trader's own fill already took liquidity from the front of
    the book, so that volume is removed before our order is walked.
    """

    max_slippage_percent: float = 10.0
    skip_on_insufficient_liquidity: bool = True
    maker_fee_rate: float = 0.0
    taker_fee_rate: float = 0.01

    @classmethod
    def from_settings(cls) -> "ExecutionSimulator":
        from config.settings import settings
        return cls(
            max_slippage_percent=settings.MAX_SLIPPAGE_PERCENT,
            skip_on_insufficient_liquidity=settings.SKIP_TRADE_IF_INSUFFICIENT_LIQUIDITY,
            maker_fee_rate=settings.MAKER_FEE_RATE,
            taker_fee_rate=settings.TAKER_FEE_RATE,
        )

    def simulate(
        self,
        side: str,
        desired_shares: float,
        book: OrderBook,
        preceding_trade: Optional[Trade] = None,
    ) -> FillResult:
        """Fill ``desired_shares`` against one side of ``book``.

        Args:
            side: "BUY" walks the asks, "SELL" walks the bids
            desired_shares: Shares we want to trade
            book: Snapshot; it is never modified
            preceding_trade: The copied trade, whose shares were already consumed

        Raises:
            EmptyBookError: Selected side has no levels
            InsufficientLiquidityError: Partial fill with the skip policy on
            ExcessiveSlippageError: Impact above the max with the skip policy on
        """
        levels = book.asks if side.upper() == BUY else book.bids
        if not levels:
            raise EmptyBookError(f"No {'asks' if side.upper() == BUY else 'bids'} in book")

        if preceding_trade is not None and preceding_trade.shares > 0:
            levels = self._remove_consumed_liquidity(levels, preceding_trade.shares)

        fills: list[Fill] = []
        remaining = desired_shares
        total_cost = 0.0

        for level in levels:
            if remaining <= 0:
                break
            if level.size <= 0:
                continue
            taken = min(remaining, level.size)
            cost = taken * level.price
            fills.append(Fill(price=level.price, shares=taken, cost=cost))
            total_cost += cost
            remaining -= taken

        executed = desired_shares - remaining

        if remaining > 0:
            fill_pct = executed / desired_shares * 100 if desired_shares > 0 else 0.0
            if self.skip_on_insufficient_liquidity:
                raise InsufficientLiquidityError(fill_pct)
            logger.warning(
                "partial_fill",
                market_id=book.market_id,
                requested=desired_shares,
                executed=executed,
                fill_pct=round(fill_pct, 2),
            )

        average_price = total_cost / executed if executed > 0 else 0.0
        mid = mid_price(book)
        price_impact = (average_price - mid) / mid * 100 if mid else 0.0

        if abs(price_impact) > self.max_slippage_percent:
            if self.skip_on_insufficient_liquidity:
                raise ExcessiveSlippageError(price_impact, self.max_slippage_percent)
            logger.warning(
                "high_slippage",
                market_id=book.market_id,
                price_impact=round(price_impact, 4),
                max_slippage=self.max_slippage_percent,
            )

        return FillResult(
            requested_shares=desired_shares,
            executed_shares=executed,
            average_price=average_price,
            price_impact=price_impact,
            total_cost=total_cost,
            fills=fills,
        )

    @staticmethod
    def _remove_consumed_liquidity(
        levels: list[OrderLevel],
        consumed_shares: float,
    ) -> list[OrderLevel]:
        """Return a copy of ``levels`` with the front ``consumed_shares`` taken out."""
        remaining_levels = [copy.copy(level) for level in levels]
        to_consume = consumed_shares

        while to_consume > 0 and remaining_levels:
            level = remaining_levels[0]
            if level.size <= to_consume:
                to_consume -= level.size
                remaining_levels.pop(0)
            else:
                level.size -= to_consume
                to_consume = 0

        cumulative = 0.0
        for level in remaining_levels:
            cumulative += level.size
            level.cumulative_size = cumulative

        return remaining_levels

    def calculate_fee(self, notional: float, is_maker: bool = False) -> float:
        rate = self.maker_fee_rate if is_maker else self.taker_fee_rate
        return notional * rate

    def estimate_slippage_from_size(
        self,
        trade_size: float,
        volume_24h: float,
        side: str,
    ) -> float:
        """Rough slippage fraction when no book is available.

        ``0.005 + sqrt(size / volume) * 0.05``. Degraded mode only, never
        used for accounting.
        """
        if volume_24h <= 0:
            return self.max_slippage_percent / 100
        ratio = trade_size / volume_24h
        estimate = 0.005 + math.sqrt(ratio) * 0.05
        logger.debug(
            "slippage_estimated",
            side=side,
            trade_size=trade_size,
            volume_24h=volume_24h,
            estimate=round(estimate, 6),
        )
        return estimate
