"""Performance metrics for the copied portfolio."""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from copysim.execution.models import BUY, SELL, Trade
from copysim.paper_trading.portfolio import Portfolio
from copysim.paper_trading.position_manager import Position

HIGH_SLIPPAGE_PCT = 1.0


class CopyTradingMetrics:
    """Calculate performance metrics from our trades, positions and snapshots."""

    def __init__(
        self,
        trades: list[Trade],
        positions: Optional[list[Position]] = None,
        history: Optional[list[Portfolio]] = None,
    ):
        self.trades = trades
        self.positions = positions or []
        self.history = history or []

    @property
    def n_trades(self) -> int:
        return len(self.trades)

    @property
    def n_buys(self) -> int:
        return sum(1 for t in self.trades if t.side == BUY)

    @property
    def n_sells(self) -> int:
        return sum(1 for t in self.trades if t.side == SELL)

    @property
    def avg_trade_size(self) -> float:
        if not self.trades:
            return 0.0
        return float(np.mean([t.total_cost for t in self.trades]))

    @property
    def total_fees(self) -> float:
        return sum(t.fee for t in self.trades)

    def _with_slippage(self) -> list[Trade]:
        return [
            t for t in self.trades
            if t.metadata is not None and t.metadata.slippage_cost is not None
        ]

    @property
    def total_slippage_cost(self) -> float:
        return sum(t.metadata.slippage_cost for t in self._with_slippage())

    @property
    def avg_slippage_cost(self) -> float:
        trades = self._with_slippage()
        if not trades:
            return 0.0
        return self.total_slippage_cost / len(trades)

    @property
    def avg_price_impact(self) -> float:
        """Mean absolute price impact in percent."""
        trades = self._with_slippage()
        if not trades:
            return 0.0
        return float(np.mean([abs(t.metadata.price_impact or 0.0) for t in trades]))

    @property
    def high_slippage_count(self) -> int:
        return sum(
            1 for t in self._with_slippage()
            if abs(t.metadata.price_impact or 0.0) > HIGH_SLIPPAGE_PCT
        )

    @property
    def closed_positions(self) -> list[Position]:
        return [p for p in self.positions if not p.is_open]

    @property
    def realized_pnl(self) -> float:
        return sum(p.realized_pnl for p in self.positions)

    @property
    def unrealized_pnl(self) -> float:
        return sum(p.unrealized_pnl for p in self.positions if p.is_open)

    @property
    def win_rate(self) -> float:
        closed = self.closed_positions
        if not closed:
            return 0.0
        return sum(1 for p in closed if p.realized_pnl > 0) / len(closed)

    @property
    def profit_factor(self) -> float:
        """Gross profit / gross loss over closed positions."""
        closed = self.closed_positions
        if not closed:
            return 0.0

        gross_profit = sum(p.realized_pnl for p in closed if p.realized_pnl > 0)
        gross_loss = abs(sum(p.realized_pnl for p in closed if p.realized_pnl < 0))

        if gross_loss == 0:
            return float("inf") if gross_profit > 0 else 0.0

        return gross_profit / gross_loss

    @property
    def sharpe_ratio(self) -> float:
        """Per-snapshot Sharpe ratio of portfolio value (no risk-free rate)."""
        values = np.array([p.total_value for p in self.history], dtype=float)
        if len(values) < 3:
            return 0.0
        returns = np.diff(values) / values[:-1]
        if np.std(returns) == 0:
            return 0.0
        return float(np.mean(returns) / np.std(returns) * np.sqrt(len(returns)))

    @property
    def max_drawdown(self) -> float:
        """Largest peak-to-trough drop in portfolio value, in dollars."""
        if not self.history:
            return 0.0
        values = np.array([p.total_value for p in self.history], dtype=float)
        peaks = np.maximum.accumulate(values)
        return float(np.max(peaks - values))

    def as_dict(self) -> dict[str, Any]:
        """Return all metrics as dictionary."""
        return {
            "n_trades": self.n_trades,
            "n_buys": self.n_buys,
            "n_sells": self.n_sells,
            "avg_trade_size": self.avg_trade_size,
            "total_fees": self.total_fees,
            "total_slippage_cost": self.total_slippage_cost,
            "avg_slippage_cost": self.avg_slippage_cost,
            "avg_price_impact": self.avg_price_impact,
            "high_slippage_count": self.high_slippage_count,
            "realized_pnl": self.realized_pnl,
            "unrealized_pnl": self.unrealized_pnl,
            "win_rate": self.win_rate,
            "profit_factor": self.profit_factor,
            "sharpe_ratio": self.sharpe_ratio,
            "max_drawdown": self.max_drawdown,
        }


def format_report(portfolio: Portfolio, metrics: CopyTradingMetrics) -> str:
    """Plain-text performance summary."""
    sign = "+" if portfolio.total_pnl >= 0 else ""
    lines = [
        "=" * 60,
        "  COPYTRADING PERFORMANCE SUMMARY",
        "=" * 60,
        "PORTFOLIO",
        f"  Initial Capital:  ${portfolio.total_invested:,.2f}",
        f"  Current Value:    ${portfolio.total_value:,.2f}",
        f"  Available Cash:   ${portfolio.available_cash:,.2f}",
        f"  Total P&L:        {sign}${portfolio.total_pnl:,.2f}",
        f"  ROI:              {sign}{portfolio.total_pnl_percent:.2f}%",
        f"  Win Rate:         {portfolio.win_rate:.1f}% "
        f"({portfolio.closed_positions_count} closed)",
        "-" * 60,
    ]

    if metrics.n_trades:
        lines += [
            "TRADES",
            f"  Total:            {metrics.n_trades}",
            f"  Buys / Sells:     {metrics.n_buys} / {metrics.n_sells}",
            f"  Avg Size:         ${metrics.avg_trade_size:,.2f}",
            f"  Fees Paid:        ${metrics.total_fees:,.2f}",
            "SLIPPAGE",
            f"  Avg Cost/Trade:   ${metrics.avg_slippage_cost:,.2f}",
            f"  Total Cost:       ${metrics.total_slippage_cost:,.2f}",
            f"  Avg Price Impact: {metrics.avg_price_impact:.2f}%",
            f"  High (>1%):       {metrics.high_slippage_count}",
            "RISK",
            f"  Sharpe:           {metrics.sharpe_ratio:.2f}",
            f"  Max Drawdown:     ${metrics.max_drawdown:,.2f}",
            f"  Profit Factor:    {metrics.profit_factor:.2f}",
        ]
    else:
        lines.append("No trades executed yet.")
    lines.append("-" * 60)

    if portfolio.positions:
        lines.append("OPEN POSITIONS")
        for pos in portfolio.positions:
            label = pos.market_question
            if len(label) > 40:
                label = label[:37] + "..."
            pnl_sign = "+" if pos.unrealized_pnl >= 0 else ""
            lines.append(
                f"  {label:<40} {pos.shares:>10.2f} sh  "
                f"entry ${pos.average_entry_price:.3f}  "
                f"now ${pos.current_price:.3f}  "
                f"{pnl_sign}${pos.unrealized_pnl:.2f}"
            )
    else:
        lines.append("No open positions.")
    lines.append("=" * 60)
    return "\n".join(lines)
