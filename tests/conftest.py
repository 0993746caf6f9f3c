# tests/conftest.py
"""Shared fixtures: a throwaway SQLite repository and a trade factory."""

from datetime import datetime, timezone

import pytest

from copysim.db.database import reset_engines
from copysim.db.repository import Repository
from copysim.execution.models import Trade


@pytest.fixture
def repository(tmp_path):
    """Repository on a fresh SQLite file."""
    reset_engines()
    repo = Repository(f"sqlite:///{tmp_path}/test.db")
    repo.bootstrap()
    yield repo
    reset_engines()


@pytest.fixture
def make_trade():
    """Build a Trade with sensible defaults. ``total_cost`` defaults to shares * price."""

    def _make(
        side="BUY",
        shares=100.0,
        price=1.0,
        total_cost=None,
        fee=0.0,
        trade_id="src_1",
        market_id="m1",
        outcome_id="t1",
        timestamp=None,
        trader="0xtarget",
        question="Will it happen?",
    ):
        return Trade(
            id=trade_id,
            timestamp=timestamp or datetime.now(timezone.utc),
            trader_address=trader,
            market_id=market_id,
            market_question=question,
            outcome_id=outcome_id,
            side=side,
            shares=shares,
            price=price,
            total_cost=shares * price if total_cost is None else total_cost,
            fee=fee,
        )

    return _make
