"""Configuration validators."""

import re

from copysim.exceptions import ConfigError

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def validate_target_trader() -> None:
    """Raise ConfigError if the copied wallet is missing or malformed."""
    from config.settings import settings
    if not settings.TARGET_TRADER_ADDRESS:
        raise ConfigError("TARGET_TRADER_ADDRESS is required")
    if not _ADDRESS_RE.match(settings.TARGET_TRADER_ADDRESS):
        raise ConfigError("TARGET_TRADER_ADDRESS must be a 0x-prefixed 40-hex address")
    if settings.TARGET_TRADER_BALANCE <= 0:
        raise ConfigError("TARGET_TRADER_BALANCE must be positive")


def validate_capital() -> None:
    """Raise ConfigError if capital or scaling parameters are out of range."""
    from config.settings import settings
    if settings.INITIAL_CAPITAL <= 0:
        raise ConfigError("INITIAL_CAPITAL must be positive")
    if not 0 <= settings.COPY_RATIO <= 10:
        raise ConfigError("COPY_RATIO must be between 0 and 10")
    if not 0 <= settings.MAX_SLIPPAGE_PERCENT <= 100:
        raise ConfigError("MAX_SLIPPAGE_PERCENT must be between 0 and 100")
    if settings.POLLING_INTERVAL_SECONDS < 1:
        raise ConfigError("POLLING_INTERVAL_SECONDS must be at least 1")


def validate_all() -> None:
    validate_target_trader()
    validate_capital()
