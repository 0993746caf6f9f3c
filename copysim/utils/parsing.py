"""Pure parsing and conversion utilities.

Used at the boundary with external payloads so the core only ever sees
typed domain objects.
"""

from __future__ import annotations

import json
import random
import string
import time
from datetime import datetime, timezone
from typing import Any, Optional

_BASE36 = string.digits + string.ascii_lowercase


def parse_json_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
            return decoded if isinstance(decoded, list) else []
        except json.JSONDecodeError:
            return []
    return []


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return False


def _ensure_sync_db_url(database_url: str) -> str:
    if not database_url:
        from config.settings import settings
        return settings.DATABASE_URL
    if "://" not in database_url:
        return database_url
    return database_url.replace("+aiosqlite", "").replace("+aiomysql", "+pymysql")


def _parse_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # Unix seconds; millisecond values are detected by magnitude
        ts = float(value)
        if ts > 1e12:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=timezone.utc)
    if isinstance(value, str) and value:
        raw = value.strip()
        try:
            return _parse_datetime(float(raw))
        except ValueError:
            pass
        if raw.endswith("Z"):
            raw = raw.replace("Z", "+00:00")
        try:
            dt = datetime.fromisoformat(raw)
            return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    return None


def _as_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored datetimes are always UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def generate_id(prefix: str) -> str:
    """``<prefix>_<epoch ms>_<9 base36 chars>``."""
    suffix = "".join(random.choices(_BASE36, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"
