"""Trade models, executor and market resolver.

Import the executor and resolver from their modules
(``copysim.execution.executor``, ``copysim.execution.resolver``).
"""

from copysim.execution.models import (
    BUY,
    SELL,
    ExecutionOutcome,
    Fill,
    FillResult,
    Trade,
    TradeMetadata,
    TraderBalance,
)

__all__ = [
    "BUY",
    "SELL",
    "ExecutionOutcome",
    "Fill",
    "FillResult",
    "Trade",
    "TradeMetadata",
    "TraderBalance",
]
