from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class AppConfig:
    """
    Process-level settings for the replay server.
    Read once at startup; request handlers only see the resulting values.
    """

    db_path: str = "tick_data.db"
    pool_size: int = 10
    pool_timeout_s: float = 10.0
    page_size: int = 1000
    ticks_max_limit: int = 100_000
    ticks_default_limit: int = 10_000
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            db_path=(os.environ.get("TICK_DB_PATH") or "tick_data.db").strip(),
            pool_size=max(1, _env_int("TICK_POOL_SIZE", 10)),
            pool_timeout_s=max(0.1, _env_float("TICK_POOL_TIMEOUT", 10.0)),
            page_size=max(1, _env_int("REPLAY_PAGE_SIZE", 1000)),
            ticks_max_limit=max(1, _env_int("REPLAY_TICKS_MAX_LIMIT", 100_000)),
            log_level=(os.environ.get("LOG_LEVEL") or "INFO").strip().upper(),
        )
