"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
Pump Signal Tracker application, loading and validating environment
variables at startup. Every threshold used by the stream, state store,
signal engine, alert engine and outcome tracker is enumerated here and
injected into the component that needs it.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"

DEFAULT_SMART_MONEY_WALLETS = (
    "AArPXm8JatJiuyEffuC1un2Sc835SULa4uQqDcaGpAjV",
    "Drcw57AaWYQ7PdNS7B1oAgjYfVxRjheL46KNbbfjb9CT",
)
DEFAULT_MILESTONES = (2, 3, 5, 10, 20, 50, 100, 500, 1000)
DEFAULT_CHECK_OFFSETS_MINUTES = (1, 5, 15, 30, 60, 120, 240, 480, 720, 1440, 2880, 4320)


def _split_csv(v: object, *, name: str) -> tuple[str, ...]:
    if isinstance(v, str):
        return tuple(p.strip() for p in v.split(",") if p.strip())
    if isinstance(v, (list, tuple)):
        return tuple(str(x).strip() for x in v if str(x).strip())
    raise TypeError(f"Invalid {name} type")


class StreamSettings(BaseSettings):
    """Upstream PumpPortal feed connection settings."""

    model_config = SettingsConfigDict(env_prefix="STREAM_", extra="ignore", populate_by_name=True)

    ws_url: str = Field(
        default="wss://pumpportal.fun/api/data",
        alias="STREAM_WS_URL",
        description="WebSocket URL of the upstream data feed",
    )
    reconnect_delay_seconds: float = Field(
        default=5.0,
        alias="STREAM_RECONNECT_DELAY_SECONDS",
        ge=0.0,
        le=300.0,
        description="Fixed delay before reconnecting after any connection failure",
    )
    stale_after_seconds: float = Field(
        default=300.0,
        alias="STREAM_STALE_AFTER_SECONDS",
        gt=0.0,
        le=3600.0,
        description="Inbound silence after which a liveness ping is sent",
    )
    ping_grace_seconds: float = Field(
        default=10.0,
        alias="STREAM_PING_GRACE_SECONDS",
        gt=0.0,
        le=120.0,
        description="Time to wait for the liveness pong before force-closing",
    )
    stuck_timeout_seconds: float = Field(
        default=30.0,
        alias="STREAM_STUCK_TIMEOUT_SECONDS",
        gt=0.0,
        le=600.0,
        description="Maximum time allowed in CONNECTING or CLOSING before forced termination",
    )
    subscribe_batch_size: int = Field(
        default=50,
        alias="STREAM_SUBSCRIBE_BATCH_SIZE",
        ge=1,
        le=500,
        description="Maximum number of keys per subscription request",
    )

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v


class StoreSettings(BaseSettings):
    """Per-entity state bounds and sweep settings."""

    model_config = SettingsConfigDict(env_prefix="STORE_", extra="ignore", populate_by_name=True)

    max_price_points: int = Field(
        default=1000,
        alias="STORE_MAX_PRICE_POINTS",
        ge=10,
        le=100_000,
        description="Retained price points per entity (oldest evicted)",
    )
    max_trades: int = Field(
        default=1000,
        alias="STORE_MAX_TRADES",
        ge=10,
        le=100_000,
        description="Retained trades per entity (oldest evicted)",
    )
    bucket_minutes: int = Field(
        default=5,
        alias="STORE_BUCKET_MINUTES",
        ge=1,
        le=60,
        description="Width of the per-entity volume buckets",
    )
    bucket_retention_hours: int = Field(
        default=24,
        alias="STORE_BUCKET_RETENTION_HOURS",
        ge=1,
        le=168,
        description="Volume buckets older than this window are pruned",
    )
    max_tracking_hours: float = Field(
        default=24.0,
        alias="STORE_MAX_TRACKING_HOURS",
        gt=0.0,
        le=24 * 30,
        description="Entities older than this are evicted and unsubscribed",
    )
    sweep_interval_seconds: int = Field(
        default=3600,
        alias="STORE_SWEEP_INTERVAL_SECONDS",
        ge=10,
        le=86_400,
        description="How often the max-age eviction sweep runs",
    )
    stale_subscription_minutes: int = Field(
        default=15,
        alias="STORE_STALE_SUBSCRIPTION_MINUTES",
        ge=1,
        le=1440,
        description="Entities without trades for this long are re-subscribed",
    )
    resubscribe_interval_seconds: int = Field(
        default=300,
        alias="STORE_RESUBSCRIBE_INTERVAL_SECONDS",
        ge=10,
        le=86_400,
        description="How often stale subscriptions are re-issued",
    )
    smart_money_log_size: int = Field(
        default=100,
        alias="STORE_SMART_MONEY_LOG_SIZE",
        ge=1,
        le=10_000,
        description="Retained smart-money activity entries per entity",
    )
    initial_pump_window_minutes: int = Field(
        default=5,
        alias="STORE_INITIAL_PUMP_WINDOW_MINUTES",
        ge=1,
        le=120,
        description="Window after creation in which the initial pump is tracked",
    )
    initial_pump_threshold_percent: float = Field(
        default=35.0,
        alias="STORE_INITIAL_PUMP_THRESHOLD_PERCENT",
        ge=0.0,
        description="Increase over the initial price that flags an initial pump",
    )
    rug_high_market_cap: float = Field(
        default=60.0,
        alias="STORE_RUG_HIGH_MARKET_CAP",
        ge=0.0,
        description="Highest market-cap an entity must have reached before a rug can be flagged",
    )
    rug_low_market_cap: float = Field(
        default=32.0,
        alias="STORE_RUG_LOW_MARKET_CAP",
        ge=0.0,
        description="Market-cap at or below which a previously high entity is flagged as rugged",
    )


class SignalSettings(BaseSettings):
    """Composite signal score thresholds."""

    model_config = SettingsConfigDict(env_prefix="SIGNAL_", extra="ignore", populate_by_name=True)

    buy_sell_ratio_threshold: float = Field(
        default=1.3,
        alias="SIGNAL_BUY_SELL_RATIO_THRESHOLD",
        gt=0.0,
        description="Buy/sell ratio that yields a factor of 1.0",
    )
    price_increase_threshold: float = Field(
        default=40.0,
        alias="SIGNAL_PRICE_INCREASE_THRESHOLD",
        gt=0.0,
        description="Percent price change that yields a factor of 1.0",
    )
    volume_velocity_threshold: float = Field(
        default=1.1,
        alias="SIGNAL_VOLUME_VELOCITY_THRESHOLD",
        gt=0.0,
        description="Volume per minute that yields a factor of 1.0",
    )
    holder_growth_threshold: float = Field(
        default=45.0,
        alias="SIGNAL_HOLDER_GROWTH_THRESHOLD",
        gt=0.0,
        description="Holder count that yields a factor of 1.0",
    )
    whale_buy_threshold: float = Field(
        default=1.8,
        alias="SIGNAL_WHALE_BUY_THRESHOLD",
        gt=0.0,
        description="Buy size (base currency) counted as a whale trade",
    )
    score_scale: float = Field(
        default=7.0,
        alias="SIGNAL_SCORE_SCALE",
        gt=0.0,
        description="Linear rescale applied to the raw weighted score",
    )


class AlertSettings(BaseSettings):
    """Alert gating, deduplication and quota settings."""

    model_config = SettingsConfigDict(env_prefix="ALERT_", extra="ignore", populate_by_name=True)

    min_age_minutes: float = Field(
        default=3.0,
        alias="ALERT_MIN_AGE_MINUTES",
        ge=0.0,
        description="Minimum entity age before any alert",
    )
    min_market_cap: float = Field(
        default=90.0,
        alias="ALERT_MIN_MARKET_CAP",
        ge=0.0,
        description="Minimum market-cap (base currency) before any alert",
    )
    min_volume: float = Field(
        default=90.0,
        alias="ALERT_MIN_VOLUME",
        ge=0.0,
        description="Minimum cumulative volume for a bullish alert",
    )
    bullish_min_score: int = Field(
        default=85,
        alias="ALERT_BULLISH_MIN_SCORE",
        ge=0,
        le=100,
        description="Composite score required for a bullish alert (very bullish tier)",
    )
    rearm_gain_percent: float = Field(
        default=200.0,
        alias="ALERT_REARM_GAIN_PERCENT",
        gt=0.0,
        description="Gain over the prior cycle baseline that re-arms an alerted entity",
    )
    max_alerts_per_day: int = Field(
        default=100,
        alias="ALERT_MAX_ALERTS_PER_DAY",
        ge=1,
        le=100_000,
        description="Maximum alerts emitted per UTC day",
    )
    cooldown_minutes: float = Field(
        default=15.0,
        alias="ALERT_COOLDOWN_MINUTES",
        ge=0.0,
        description="Minimum time between same-type alerts for one entity",
    )
    smart_money_min_buy: float = Field(
        default=0.9,
        alias="ALERT_SMART_MONEY_MIN_BUY",
        ge=0.0,
        description="Minimum smart-money buy size (base currency) that can trigger an alert",
    )
    migration_baseline_market_cap: float | None = Field(
        default=None,
        alias="ALERT_MIGRATION_BASELINE_MARKET_CAP",
        gt=0.0,
        description="Fixed baseline market-cap for migration alerts (unset uses the current market-cap)",
    )
    smart_money_wallets: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_SMART_MONEY_WALLETS,
        alias="ALERT_SMART_MONEY_WALLETS",
        description="Known smart-money wallet addresses (comma-separated)",
    )

    @field_validator("smart_money_wallets", mode="before")
    @classmethod
    def _parse_wallets(cls, v: object) -> tuple[str, ...]:
        if v is None:
            return ()
        return _split_csv(v, name="ALERT_SMART_MONEY_WALLETS")


class OutcomeSettings(BaseSettings):
    """Alert outcome and milestone tracking settings."""

    model_config = SettingsConfigDict(env_prefix="OUTCOME_", extra="ignore", populate_by_name=True)

    win_threshold_percent: float = Field(
        default=50.0,
        alias="OUTCOME_WIN_THRESHOLD_PERCENT",
        gt=0.0,
        description="Gain over the baseline market-cap that resolves an alert as a win",
    )
    loss_floor_market_cap: float = Field(
        default=32.0,
        alias="OUTCOME_LOSS_FLOOR_MARKET_CAP",
        ge=0.0,
        description="Market-cap below which a pending alert resolves as a loss",
    )
    milestones: Annotated[tuple[int, ...], NoDecode] = Field(
        default=DEFAULT_MILESTONES,
        alias="OUTCOME_MILESTONES",
        description="Multiples of the baseline that trigger milestone notifications",
    )
    check_offsets_minutes: Annotated[tuple[int, ...], NoDecode] = Field(
        default=DEFAULT_CHECK_OFFSETS_MINUTES,
        alias="OUTCOME_CHECK_OFFSETS_MINUTES",
        description="Minutes after an alert at which its outcome is re-checked",
    )

    @field_validator("milestones", "check_offsets_minutes", mode="before")
    @classmethod
    def _parse_ints(cls, v: object) -> tuple[int, ...]:
        parts = _split_csv(v, name="OUTCOME integer list")
        values = tuple(sorted({int(p) for p in parts}))
        if not values or values[0] <= 0:
            raise ValueError("Integer lists must contain positive values")
        return values


class EnrichmentSettings(BaseSettings):
    """Risk-analysis enrichment collaborator settings."""

    model_config = SettingsConfigDict(env_prefix="ENRICHMENT_", extra="ignore", populate_by_name=True)

    enabled: bool = Field(
        default=True,
        alias="ENRICHMENT_ENABLED",
        description="Fetch bundle/creator risk analysis for alerts",
    )
    base_url: str = Field(
        default="https://trench.bot/api/bundle/bundle_advanced",
        alias="ENRICHMENT_BASE_URL",
        description="Base URL of the risk-analysis endpoint (entity id is appended)",
    )
    request_timeout_seconds: float = Field(
        default=2.0,
        alias="ENRICHMENT_REQUEST_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="HTTP timeout for a single risk-analysis request",
    )
    race_timeout_seconds: float = Field(
        default=2.5,
        alias="ENRICHMENT_RACE_TIMEOUT_SECONDS",
        gt=0.0,
        le=60.0,
        description="Hard timeout after which the alert is sent with neutral enrichment",
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("ENRICHMENT_BASE_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class RedisSettings(BaseSettings):
    """Redis connection settings."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore", populate_by_name=True)

    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class SnapshotSettings(BaseSettings):
    """Best-effort snapshot persistence settings."""

    model_config = SettingsConfigDict(env_prefix="SNAPSHOT_", extra="ignore", populate_by_name=True)

    enabled: bool = Field(
        default=True,
        alias="SNAPSHOT_ENABLED",
        description="Persist state snapshots to Redis and reload them on startup",
    )
    interval_seconds: int = Field(
        default=300,
        alias="SNAPSHOT_INTERVAL_SECONDS",
        ge=10,
        le=86_400,
        description="How often a snapshot is written",
    )
    key_prefix: str = Field(
        default="pump:snapshot:",
        alias="SNAPSHOT_KEY_PREFIX",
        description="Redis key prefix for snapshot documents",
    )


class TelegramSettings(BaseSettings):
    """Telegram notification settings."""

    model_config = SettingsConfigDict(env_prefix="TELEGRAM_", extra="ignore", populate_by_name=True)

    bot_token: SecretStr | None = Field(
        default=None,
        alias="TELEGRAM_BOT_TOKEN",
        description="Telegram bot token",
    )
    chat_id: str | None = Field(
        default=None,
        alias="TELEGRAM_CHAT_ID",
        description="Telegram chat ID for alerts",
    )

    @property
    def enabled(self) -> bool:
        """Check if Telegram notifications are enabled."""
        return self.bot_token is not None and self.chat_id is not None


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from pump_signal_tracker.config import get_settings

        settings = get_settings()
        print(settings.stream.ws_url)
        print(settings.alert.min_market_cap)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
        populate_by_name=True,
    )

    # Nested configuration groups
    #
    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    stream: StreamSettings = Field(
        default_factory=lambda: StreamSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    store: StoreSettings = Field(
        default_factory=lambda: StoreSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    signal: SignalSettings = Field(
        default_factory=lambda: SignalSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    alert: AlertSettings = Field(
        default_factory=lambda: AlertSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    outcome: OutcomeSettings = Field(
        default_factory=lambda: OutcomeSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    enrichment: EnrichmentSettings = Field(
        default_factory=lambda: EnrichmentSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    snapshot: SnapshotSettings = Field(
        default_factory=lambda: SnapshotSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    telegram: TelegramSettings = Field(
        default_factory=lambda: TelegramSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Run without sending actual alerts",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "redis_url": self._redact_url(self.redis.url),
            "stream": {
                "ws_url": self.stream.ws_url,
                "reconnect_delay_seconds": str(self.stream.reconnect_delay_seconds),
                "subscribe_batch_size": str(self.stream.subscribe_batch_size),
            },
            "alert": {
                "min_age_minutes": str(self.alert.min_age_minutes),
                "min_market_cap": str(self.alert.min_market_cap),
                "bullish_min_score": str(self.alert.bullish_min_score),
                "max_alerts_per_day": str(self.alert.max_alerts_per_day),
                "smart_money_wallets": str(len(self.alert.smart_money_wallets)),
            },
            "outcome": {
                "win_threshold_percent": str(self.outcome.win_threshold_percent),
                "loss_floor_market_cap": str(self.outcome.loss_floor_market_cap),
            },
            "enrichment_enabled": str(self.enrichment.enabled),
            "snapshot_enabled": str(self.snapshot.enabled),
            "telegram_enabled": str(self.telegram.enabled),
            "telegram_bot_token": "(set)" if self.telegram.bot_token else "(not set)",
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()
