"""Settle open positions once their market resolves."""

from __future__ import annotations

import structlog

from copysim.db.repository import Repository
from copysim.exceptions import FeedError, PersistenceError
from copysim.feeds.base import TradeSource
from copysim.paper_trading.portfolio import Portfolio, recompute_portfolio
from copysim.paper_trading.position_manager import Position, settle_position

logger = structlog.get_logger()


class MarketResolver:
    """Force-close positions at 1.0 (won) or 0.0 (lost) after resolution.

    Settlement is not a trade: no fee, no counterparty. The payout is
    credited to the portfolio's cash in the same unit of work.
    """

    def __init__(
        self,
        source: TradeSource,
        repository: Repository,
        initial_capital: float,
    ) -> None:
        self.source = source
        self.repository = repository
        self.initial_capital = initial_capital

    async def check_and_resolve_markets(self, portfolio: Portfolio) -> list[Position]:
        """Sweep open positions and return the ones settled this pass."""
        open_positions = self.repository.get_open_positions()
        if not open_positions:
            return []

        logger.info("resolution_check", open_positions=len(open_positions))
        settled = []
        for position in open_positions:
            if await self._check_position(position, portfolio):
                settled.append(position)
        return settled

    async def _check_position(self, position: Position, portfolio: Portfolio) -> bool:
        try:
            market = await self.source.fetch_market(position.market_id)
        except FeedError as exc:
            logger.warning("resolution_fetch_failed", position_id=position.id, error=str(exc))
            return False

        if not market.closed:
            return False

        winner = market.winning_token
        if winner is None:
            logger.warning("market_closed_no_winner", market_id=position.market_id)
            return False

        won = winner.token_id == position.outcome_id
        settlement_price = 1.0 if won else 0.0
        invested = position.total_invested
        shares = position.shares
        cash_before = portfolio.available_cash

        try:
            with self.repository.unit_of_work():
                settlement_value = settle_position(position, settlement_price)
                self.repository.save_position(position)
                portfolio.available_cash += settlement_value
                recompute_portfolio(
                    portfolio, self.repository.get_all_positions(), self.initial_capital
                )
                self.repository.save_portfolio_snapshot(portfolio)
        except PersistenceError as exc:
            portfolio.available_cash = cash_before
            logger.error("settlement_failed", position_id=position.id, error=str(exc))
            return False

        logger.info(
            "position_settled",
            market=position.market_question[:60],
            outcome="WON" if won else "LOST",
            shares=round(shares, 2),
            invested=round(invested, 2),
            settlement_value=round(settlement_value, 2),
            final_pnl=round(settlement_value - invested, 2),
        )
        return True

    def resolved_summary(self) -> dict[str, float]:
        """Totals over every closed position, settled or sold."""
        closed = [p for p in self.repository.get_all_positions() if not p.is_open]
        return {
            "total_resolved": len(closed),
            "wins": sum(1 for p in closed if p.realized_pnl > 0),
            "losses": sum(1 for p in closed if p.realized_pnl < 0),
            "total_pnl": sum(p.realized_pnl for p in closed),
        }
