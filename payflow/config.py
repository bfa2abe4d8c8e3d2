"""Runtime configuration read from the environment."""
import os
from dataclasses import dataclass
from typing import Optional


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return float(raw)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return int(raw)


@dataclass(frozen=True)
class Settings:
    """
    Settings shared by the store service and the client sessions.

    The store only cares about ``database_url``; everything else configures
    the client side (synchronization engine and cutoff evaluation).
    """
    database_url: str = "sqlite:///./payflow.db"

    # Client synchronization
    store_url: Optional[str] = None
    poll_interval: float = 5.0
    reconnect_interval: float = 15.0
    request_timeout: float = 5.0
    cache_dir: str = "./.payflow-cache"
    cache_key: str = "payflow_state"
    channel_name: str = "payflow-sync"

    # Compliance rules
    cutoff_mode: str = "deadline"  # "deadline" or "fixed-hour"
    cutoff_hour: int = 14
    cutoff_timezone: str = "UTC"
    similarity_window_days: int = 30

    log_level: str = "INFO"
    json_logs: bool = False


def load_settings() -> Settings:
    """Build settings from environment variables, falling back to defaults."""
    database_url = os.getenv("DATABASE_URL", Settings.database_url)

    # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)

    return Settings(
        database_url=database_url,
        store_url=os.getenv("PAYFLOW_STORE_URL") or None,
        poll_interval=_env_float("PAYFLOW_POLL_INTERVAL", Settings.poll_interval),
        reconnect_interval=_env_float("PAYFLOW_RECONNECT_INTERVAL", Settings.reconnect_interval),
        request_timeout=_env_float("PAYFLOW_REQUEST_TIMEOUT", Settings.request_timeout),
        cache_dir=os.getenv("PAYFLOW_CACHE_DIR", Settings.cache_dir),
        cache_key=os.getenv("PAYFLOW_CACHE_KEY", Settings.cache_key),
        channel_name=os.getenv("PAYFLOW_CHANNEL", Settings.channel_name),
        cutoff_mode=os.getenv("PAYFLOW_CUTOFF_MODE", Settings.cutoff_mode),
        cutoff_hour=_env_int("PAYFLOW_CUTOFF_HOUR", Settings.cutoff_hour),
        cutoff_timezone=os.getenv("PAYFLOW_CUTOFF_TZ", Settings.cutoff_timezone),
        similarity_window_days=_env_int(
            "PAYFLOW_SIMILARITY_WINDOW_DAYS", Settings.similarity_window_days
        ),
        log_level=os.getenv("LOG_LEVEL", Settings.log_level).upper(),
        json_logs=os.getenv("USE_JSON_LOGS", "false").lower() == "true",
    )
