"""Project-level configuration and path helpers."""

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "pulse.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_int(name: str, default: int | None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class StoreConfig:
    """Settings shared by the store, dispatcher and retention manager."""

    db_path: PathLike = DEFAULT_DB_PATH
    max_events: int | None = None
    max_age: timedelta | None = None
    strict_capacity: bool = False
    subscriber_queue_size: int = 1000
    sweep_interval: float = 60.0
    sweep_on_append: bool = False
    query_batch_size: int = 200

    def __post_init__(self) -> None:
        if self.max_events is not None and self.max_events <= 0:
            raise ValueError("max_events must be positive")
        if self.max_age is not None and self.max_age <= timedelta(0):
            raise ValueError("max_age must be positive")
        if self.subscriber_queue_size <= 0:
            raise ValueError("subscriber_queue_size must be positive")
        if self.sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")
        if self.query_batch_size <= 0:
            raise ValueError("query_batch_size must be positive")

    @classmethod
    def from_env(cls, db_path: PathLike | None = None) -> "StoreConfig":
        """Build config from environment variables."""
        env_db_path = os.getenv("DATABASE_URL") if db_path is None else db_path
        max_age_seconds = _env_int("PULSE_MAX_AGE_SECONDS", None)

        return cls(
            db_path=resolve_db_path(env_db_path),
            max_events=_env_int("PULSE_MAX_EVENTS", None),
            max_age=(
                timedelta(seconds=max_age_seconds) if max_age_seconds else None
            ),
            strict_capacity=_env_bool("PULSE_STRICT_CAPACITY", False),
            subscriber_queue_size=_env_int("PULSE_SUBSCRIBER_QUEUE_SIZE", 1000),
            sweep_interval=_env_float("PULSE_SWEEP_INTERVAL", 60.0),
            sweep_on_append=_env_bool("PULSE_SWEEP_ON_APPEND", False),
            query_batch_size=_env_int("PULSE_QUERY_BATCH_SIZE", 200),
        )
