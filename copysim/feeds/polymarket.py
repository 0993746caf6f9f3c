"""Polymarket REST client: Data API activity plus CLOB books and markets.

All calls are serialized behind a minimum inter-request interval. Trade
polling degrades to an empty list on network failure ("no data this
cycle"); book and market lookups raise FeedError so the caller can skip
the trade they were needed for.
"""

from __future__ import annotations

import asyncio
import time
from datetime import datetime
from typing import Any, Optional

import httpx
import structlog

from copysim.exceptions import FeedError
from copysim.execution.models import BUY, SELL, Trade
from copysim.feeds.base import MarketInfo, TokenInfo
from copysim.paper_trading.orderbook import OrderBook
from copysim.utils.parsing import _parse_datetime, _to_bool, _to_float

logger = structlog.get_logger()

CLOB_API = "https://clob.polymarket.com"
DATA_API = "https://data-api.polymarket.com"
END_CURSOR = "LTE="
MAX_MARKET_PAGES = 20


def parse_activity(activity: dict[str, Any]) -> Optional[Trade]:
    """Data API activity row -> Trade. Returns None for non-trade rows."""
    if activity.get("type") != "TRADE":
        return None
    timestamp = _parse_datetime(activity.get("timestamp"))
    if timestamp is None:
        return None
    tx_hash = str(activity.get("transactionHash") or "")
    raw_ts = activity.get("timestamp")
    return Trade(
        id=f"{tx_hash}_{raw_ts}",
        timestamp=timestamp,
        trader_address=str(activity.get("proxyWallet") or activity.get("user") or ""),
        market_id=str(activity.get("conditionId") or ""),
        market_question=str(activity.get("title") or ""),
        outcome_id=str(activity.get("asset") or ""),
        side=BUY if str(activity.get("side", "")).upper() == BUY else SELL,
        shares=_to_float(activity.get("size")),
        price=_to_float(activity.get("price")),
        total_cost=_to_float(activity.get("usdcSize")),
        fee=0.0,
        transaction_hash=tx_hash or None,
        source="api",
    )


def _parse_levels(levels: Any) -> list[tuple[float, float]]:
    pairs: list[tuple[float, float]] = []
    if not isinstance(levels, list):
        return pairs
    for level in levels:
        if isinstance(level, dict):
            price = _to_float(level.get("price"), default=-1.0)
            size = _to_float(level.get("size"))
        elif isinstance(level, (list, tuple)) and len(level) >= 2:
            price = _to_float(level[0], default=-1.0)
            size = _to_float(level[1])
        else:
            continue
        if price < 0:
            continue
        pairs.append((price, size))
    return pairs


def parse_order_book(payload: Any, market_id: str, outcome_id: str) -> OrderBook:
    payload = payload if isinstance(payload, dict) else {}
    return OrderBook.from_levels(
        market_id=market_id,
        outcome_id=outcome_id,
        bids=_parse_levels(payload.get("bids")),
        asks=_parse_levels(payload.get("asks")),
        timestamp=_parse_datetime(payload.get("timestamp")),
    )


def parse_market(payload: dict[str, Any]) -> MarketInfo:
    tokens = []
    for raw in payload.get("tokens") or []:
        price = raw.get("price")
        tokens.append(
            TokenInfo(
                token_id=str(raw.get("token_id", "")),
                outcome=str(raw.get("outcome", "")),
                price=_to_float(price) if price is not None else None,
                winner=_to_bool(raw.get("winner")),
            )
        )
    return MarketInfo(
        condition_id=str(payload.get("condition_id", "")),
        question=str(payload.get("question", "")),
        active=_to_bool(payload.get("active")),
        accepting_orders=_to_bool(payload.get("accepting_orders")),
        closed=_to_bool(payload.get("closed")),
        tokens=tokens,
        volume_24h=_to_float(payload.get("volume_24hr", payload.get("volume24hr"))),
    )


class PolymarketClient:
    """Rate-limited access to the public Polymarket endpoints."""

    def __init__(
        self,
        clob_url: str = CLOB_API,
        data_url: str = DATA_API,
        timeout: float = 10.0,
        min_interval: float = 0.1,
        api_key: str = "",
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.clob_url = clob_url.rstrip("/")
        self.data_url = data_url.rstrip("/")
        self.min_interval = min_interval
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(timeout=timeout, headers=headers)
        self._lock = asyncio.Lock()
        self._last_request = 0.0

    @classmethod
    def from_settings(cls) -> "PolymarketClient":
        from config.settings import settings
        return cls(
            clob_url=settings.POLYMARKET_CLOB_HTTP,
            data_url=settings.POLYMARKET_DATA_API,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
            min_interval=settings.MIN_REQUEST_INTERVAL_SECONDS,
            api_key=settings.POLYMARKET_API_KEY,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _get(self, url: str, params: Optional[dict[str, Any]] = None) -> Any:
        async with self._lock:
            wait = self.min_interval - (time.monotonic() - self._last_request)
            if wait > 0:
                await asyncio.sleep(wait)
            try:
                response = await self._client.get(url, params=params)
            finally:
                self._last_request = time.monotonic()
        response.raise_for_status()
        return response.json()

    # -- Data API ----------------------------------------------------------

    async def fetch_activity(
        self,
        address: str,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Trade]:
        """Recent TRADE activity for ``address``, newest first."""
        try:
            rows = await self._get(
                f"{self.data_url}/activity",
                params={"user": address, "limit": limit, "offset": offset},
            )
        except httpx.HTTPStatusError as exc:
            logger.error(
                "activity_fetch_failed",
                address=address,
                status=exc.response.status_code,
            )
            return []
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("activity_fetch_failed", address=address, error=str(exc))
            return []

        if not isinstance(rows, list):
            return []
        trades = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            trade = parse_activity(row)
            if trade is not None:
                trades.append(trade)
        return trades

    async def fetch_trades_for_address(
        self,
        address: str,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[Trade]:
        trades = await self.fetch_activity(address, limit=limit)
        if since is not None:
            trades = [t for t in trades if t.timestamp > since]
        if trades:
            logger.info(
                "recent_trades_found",
                address=address,
                count=len(trades),
                since=since.isoformat() if since else None,
            )
        return trades

    # -- CLOB --------------------------------------------------------------

    async def fetch_order_book(self, market_id: str, outcome_id: str) -> OrderBook:
        try:
            payload = await self._get(f"{self.clob_url}/book", params={"token_id": outcome_id})
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("book_fetch_error", market_id=market_id, token_id=outcome_id, error=str(exc))
            raise FeedError(f"Failed to fetch order book for {outcome_id}: {exc}") from exc
        return parse_order_book(payload, market_id, outcome_id)

    async def fetch_market(self, market_id: str) -> MarketInfo:
        try:
            payload = await self._get(f"{self.clob_url}/markets/{market_id}")
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("market_fetch_error", market_id=market_id, error=str(exc))
            raise FeedError(f"Failed to fetch market {market_id}: {exc}") from exc
        if not isinstance(payload, dict):
            raise FeedError(f"Unexpected market payload for {market_id}")
        market = parse_market(payload)
        if not market.condition_id:
            market.condition_id = market_id
        return market

    async def fetch_markets(self) -> list[MarketInfo]:
        """Walk the paginated ``/markets`` listing."""
        markets: list[MarketInfo] = []
        cursor = ""
        for _ in range(MAX_MARKET_PAGES):
            params = {"next_cursor": cursor} if cursor else None
            try:
                payload = await self._get(f"{self.clob_url}/markets", params=params)
            except (httpx.HTTPError, ValueError) as exc:
                raise FeedError(f"Failed to list markets: {exc}") from exc
            rows = payload.get("data", []) if isinstance(payload, dict) else []
            markets.extend(parse_market(row) for row in rows if isinstance(row, dict))
            cursor = payload.get("next_cursor", "") if isinstance(payload, dict) else ""
            if not cursor or cursor == END_CURSOR or not rows:
                break
        return markets
