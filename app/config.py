from pydantic_settings import BaseSettings


class GlobalConfig(BaseSettings):
    # Database
    database_url: str = ""
    slow_query_threshold_ms: int = 500

    # App
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "production"
    sentry_dsn: str = ""
    default_timezone: str = "Asia/Shanghai"

    # Binance (public market data only, keys optional)
    binance_api_key: str = ""
    binance_api_secret: str = ""
    binance_market: str = "futures"  # futures | spot
    quote_asset: str = "USDT"
    api_rate_limit: int = 1000  # request weight per minute
    request_interval_ms: int = 100  # pause between kline pages during backfill
    rate_limit_cooldown_sec: int = 60

    # Ingestion
    thread_pool_size: int = 20
    backfill_days: int = 7
    backfill_concurrency: int = 5
    collector_enabled: bool = True
    collect_offset_sec: int = 20
    failure_backoff_every: int = 10
    failure_backoff_sec: float = 5.0

    # Uptrend wave detection
    wave_pool_size: int = 4
    wave_timeout_sec: float = 120.0

    # Caches
    uptrend_cache_size: int = 10
    uptrend_cache_ttl_sec: float = 300.0
    price_cache_size: int = 1000
    price_cache_ttl_sec: float = 60.0
    closest_price_tolerance_min: int = 30

    # Alerts (Telegram)
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    alert_rate_limit_per_hour: int = 10

    @property
    def is_futures(self) -> bool:
        return self.binance_market.lower() == "futures"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
