#!/usr/bin/env python3
# scripts/run_copytrader.py
"""Copy a Polymarket wallet's trades onto a simulated portfolio.

Usage:
    python scripts/run_copytrader.py \
        --target 0xabc...def \
        --capital 10000 \
        --copy-ratio 1.0

This script:
1. Validates configuration (.env or environment)
2. Creates the database and loads or creates the portfolio
3. Polls the target wallet and mirrors each trade, scaled to our capital
4. Settles positions when markets resolve, until Ctrl+C
"""

import argparse
import asyncio
import signal
import sys
from pathlib import Path

# Add project root to path for imports
_project_root = Path(__file__).parent.parent
sys.path.insert(0, str(_project_root))

import structlog

from config.settings import settings
from copysim.utils.logging import configure_logging

configure_logging(settings.LOG_LEVEL)
logger = structlog.get_logger()

from config.validators import validate_all
from copysim.db.repository import Repository
from copysim.exceptions import AccountingError, ConfigError
from copysim.feeds.polymarket import PolymarketClient
from copysim.paper_trading.engine import CopyTradingEngine


async def run_copytrader() -> int:
    """Run the engine until a shutdown signal. Returns the exit code."""
    repository = Repository(settings.DATABASE_URL)
    repository.bootstrap()

    client = PolymarketClient.from_settings()
    engine = CopyTradingEngine.from_settings(client, repository)

    print(f"\n{'='*60}")
    print("COPYTRADING SIMULATOR STARTED")
    print(f"{'='*60}")
    print(f"Target:      {settings.TARGET_TRADER_ADDRESS}")
    print(f"Capital:     ${settings.INITIAL_CAPITAL:,.2f}")
    print(f"Copy Ratio:  {settings.COPY_RATIO}")
    print(f"Slippage:    {'Simulated' if settings.ENABLE_SLIPPAGE_SIMULATION else 'Market price'}")
    print(f"Database:    {settings.DATABASE_URL}")
    print(f"{'='*60}")
    print("\nPolling for trades... (Press Ctrl+C to stop)\n")

    loop = asyncio.get_running_loop()

    def signal_handler() -> None:
        logger.info("shutdown_signal_received")
        engine.stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await engine.run()
    except AccountingError as exc:
        logger.error("accounting_error_fatal", error=str(exc))
        return 1
    finally:
        await client.close()
        if engine.portfolio is not None:
            print(engine.report())

    return 0


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Run the Polymarket copytrading simulator",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--target",
        type=str,
        default=settings.TARGET_TRADER_ADDRESS,
        help="Wallet address to copy",
    )
    parser.add_argument(
        "--capital",
        type=float,
        default=settings.INITIAL_CAPITAL,
        help="Starting capital of the simulated portfolio",
    )
    parser.add_argument(
        "--copy-ratio",
        type=float,
        default=settings.COPY_RATIO,
        help="Multiplier on the target's portfolio percentage",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=settings.DATABASE_URL,
        help="SQLAlchemy database URL",
    )

    args = parser.parse_args()
    settings.TARGET_TRADER_ADDRESS = args.target
    settings.INITIAL_CAPITAL = args.capital
    settings.COPY_RATIO = args.copy_ratio
    settings.DATABASE_URL = args.db

    try:
        validate_all()
    except ConfigError as exc:
        print(f"\nConfiguration error: {exc}")
        sys.exit(2)

    sys.exit(asyncio.run(run_copytrader()))


if __name__ == "__main__":
    main()
