from .base import MarketInfo, TokenInfo, TradeSource
from .polymarket import PolymarketClient

__all__ = [
    "MarketInfo",
    "TokenInfo",
    "TradeSource",
    "PolymarketClient",
]
