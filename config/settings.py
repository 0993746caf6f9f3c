"""Configuration - values are read from the environment or a local .env file."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # === Target Trader ===
    TARGET_TRADER_ADDRESS: str = ""
    TARGET_TRADER_BALANCE: float = 100000.0  # Estimated portfolio of the copied wallet
    START_DATE: str = ""  # ISO date, only trades after it are copied on first run

    # === Capital & Scaling ===
    INITIAL_CAPITAL: float = 10000.0
    COPY_RATIO: float = 1.0  # 1.0 = same % of portfolio as the target
    MAX_POSITION_SIZE_PCT: float = 0.0  # 0 disables the cap

    # === Timing ===
    POLLING_INTERVAL_SECONDS: float = 10.0
    UPDATE_BALANCE_INTERVAL_SECONDS: float = 300.0
    RESOLUTION_CHECK_INTERVAL_SECONDS: float = 300.0
    ERROR_BACKOFF_SECONDS: float = 5.0
    TRADE_FETCH_LIMIT: int = 100

    # === Copy Filters ===
    MAX_BUY_AGE_SECONDS: float = 120.0  # Older BUYs carry no edge
    MAX_PRICE_DRIFT: float = 0.02  # $0.02 between target fill and current price

    # === Slippage Simulation ===
    ENABLE_SLIPPAGE_SIMULATION: bool = True
    MAX_SLIPPAGE_PERCENT: float = 10.0
    SKIP_TRADE_IF_INSUFFICIENT_LIQUIDITY: bool = True
    STORE_ORDER_BOOK_SNAPSHOTS: bool = True
    MAKER_FEE_RATE: float = 0.0
    TAKER_FEE_RATE: float = 0.01

    # === Accounting ===
    PNL_RECONCILE_TOLERANCE: float = 0.01
    STRICT_ACCOUNTING: bool = False  # Raise instead of logging on P&L mismatch

    # === Polymarket ===
    POLYMARKET_API_KEY: str = ""
    POLYMARKET_CLOB_HTTP: str = "https://clob.polymarket.com"
    POLYMARKET_DATA_API: str = "https://data-api.polymarket.com"
    HTTP_TIMEOUT_SECONDS: float = 10.0
    MIN_REQUEST_INTERVAL_SECONDS: float = 0.1

    # === Database ===
    DATABASE_URL: str = "sqlite:///data/trades.db"

    # === Logging ===
    LOG_LEVEL: str = "info"

    model_config = {"env_file": ".env"}


settings = Settings()
