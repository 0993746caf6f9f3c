"""Custom exceptions for the copytrading simulator."""


class CopySimError(Exception):
    """Base exception for all copysim errors."""


class TradeSkipped(CopySimError):
    """A copied trade was not executed. Carries a short machine-readable reason."""

    reason = "skipped"


class EmptyBookError(TradeSkipped):
    """The order book has no levels on the side we need."""

    reason = "empty_book"


class InsufficientLiquidityError(TradeSkipped):
    """Only part of the order could be filled and the policy forbids partial fills."""

    reason = "insufficient_liquidity"

    def __init__(self, fill_percentage: float):
        self.fill_percentage = fill_percentage
        super().__init__(
            f"Insufficient liquidity: only {fill_percentage:.1f}% of order could be filled"
        )


class ExcessiveSlippageError(TradeSkipped):
    """Price impact exceeds the configured maximum."""

    reason = "excessive_slippage"

    def __init__(self, price_impact: float, max_slippage_percent: float):
        self.price_impact = price_impact
        self.max_slippage_percent = max_slippage_percent
        super().__init__(
            f"Price impact {price_impact:.2f}% exceeds max {max_slippage_percent}%"
        )


class MarketUnavailableError(TradeSkipped):
    """Market inactive, not accepting orders, or without a price for the outcome."""

    reason = "market_unavailable"


class PriceDriftError(TradeSkipped):
    """The market moved too far from the copied BUY price."""

    reason = "price_drift"


class InsufficientCapitalError(TradeSkipped):
    """Not enough cash for a BUY including fees."""

    reason = "insufficient_capital"


class NoPositionError(TradeSkipped):
    """SELL copied for a position we do not hold."""

    reason = "no_position"


class InsufficientSharesError(TradeSkipped):
    """SELL for more shares than held."""

    reason = "insufficient_shares"


class StaleTradeError(TradeSkipped):
    """Copied BUY is older than the maximum allowed age."""

    reason = "stale_trade"


class FeedError(CopySimError):
    """Error connecting to or reading from a data feed."""


class PersistenceError(CopySimError):
    """Database persistence failure."""


class ConfigError(CopySimError):
    """Missing or invalid configuration."""


class AccountingError(CopySimError):
    """Ledger state could not be reconciled. Fatal to the process."""
