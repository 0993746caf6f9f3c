"""Refresh mark prices of open positions."""

from dataclasses import dataclass
from datetime import datetime, timezone

import structlog

from copysim.db.repository import Repository
from copysim.exceptions import FeedError, PersistenceError
from copysim.feeds.base import MarketInfo, TradeSource
from copysim.paper_trading.position_manager import Position

logger = structlog.get_logger()


@dataclass
class MarketObserver:
    """Re-mark open positions from current market prices.

    Few distinct markets are fetched one by one; past ``bulk_threshold``
    the full market listing is pulled once instead.
    """

    source: TradeSource
    repository: Repository
    bulk_threshold: int = 20

    async def update_position_prices(self) -> int:
        """Returns how many positions changed price."""
        open_positions = self.repository.get_open_positions()
        if not open_positions:
            return 0

        markets = await self._load_markets({p.market_id for p in open_positions})

        updated = 0
        for position in open_positions:
            market = markets.get(position.market_id)
            if market is None:
                logger.debug("market_not_found_for_position", market_id=position.market_id)
                continue
            price = market.price_for(position.outcome_id)
            if price is None or price == position.current_price:
                continue
            try:
                self._remark(position, price)
                updated += 1
            except PersistenceError as exc:
                logger.warning("price_update_failed", position_id=position.id, error=str(exc))

        if updated:
            logger.info("position_prices_updated", updated=updated, total=len(open_positions))
        return updated

    async def _load_markets(self, market_ids: set[str]) -> dict[str, MarketInfo]:
        markets: dict[str, MarketInfo] = {}
        if len(market_ids) > self.bulk_threshold:
            try:
                for market in await self.source.fetch_markets():
                    if market.condition_id in market_ids:
                        markets[market.condition_id] = market
            except FeedError as exc:
                logger.warning("market_listing_failed", error=str(exc))
            return markets

        for market_id in market_ids:
            try:
                markets[market_id] = await self.source.fetch_market(market_id)
            except FeedError as exc:
                logger.warning("market_fetch_failed", market_id=market_id, error=str(exc))
        return markets

    def _remark(self, position: Position, price: float) -> float:
        position.current_price = price
        # Re-derive cost basis from the average to stop float drift
        if position.shares > 0 and position.average_entry_price > 0:
            position.total_invested = position.shares * position.average_entry_price
        position.unrealized_pnl = position.shares * price - position.total_invested
        position.updated_at = datetime.now(timezone.utc)
        self.repository.save_position(position)
        logger.debug(
            "position_price_updated",
            market=position.market_question[:30],
            price=round(price, 4),
            unrealized_pnl=round(position.unrealized_pnl, 2),
        )
        return position.unrealized_pnl
