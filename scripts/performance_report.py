#!/usr/bin/env python3
# scripts/performance_report.py
"""Print the copytrading performance report from the database.

Safe to run while the simulator is writing (SQLite WAL). An empty or
missing database prints the default state.

Usage:
    python scripts/performance_report.py --db sqlite:///data/trades.db
"""

import argparse
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from copysim.db.repository import Repository
from copysim.paper_trading.metrics import CopyTradingMetrics, format_report
from copysim.paper_trading.portfolio import create_portfolio, recompute_portfolio


def main():
    parser = argparse.ArgumentParser(description="Generate copytrading performance report")
    parser.add_argument(
        "--db",
        type=str,
        default=settings.DATABASE_URL,
        help="SQLAlchemy database URL",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print metrics as JSON instead of text",
    )

    args = parser.parse_args()

    repository = Repository(args.db)
    repository.bootstrap()

    positions = repository.get_all_positions()
    portfolio = repository.get_latest_portfolio_snapshot()
    if portfolio is None:
        portfolio = create_portfolio(settings.INITIAL_CAPITAL)
    else:
        recompute_portfolio(portfolio, positions, portfolio.total_invested)

    metrics = CopyTradingMetrics(
        trades=repository.get_all_trades(),
        positions=positions,
        history=repository.get_portfolio_history(),
    )

    if args.json:
        summary = metrics.as_dict()
        summary.update(
            total_value=portfolio.total_value,
            available_cash=portfolio.available_cash,
            total_pnl=portfolio.total_pnl,
            total_pnl_percent=portfolio.total_pnl_percent,
        )
        print(json.dumps(summary, indent=2, default=str))
        return

    print(format_report(portfolio, metrics))


if __name__ == "__main__":
    main()
