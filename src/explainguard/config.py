from __future__ import annotations

import os
from dataclasses import dataclass


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    sqlite_path: str
    log_level: str
    state_backend: str  # "sqlite" | "memory"
    sweep_interval_seconds: int
    poll_interval_seconds: int
    # Overrides the enforcement config's sweep_limit when set (>0).
    sweep_limit: int = 0
    enforcement_config_path: str = ""
    sweep_on_start: bool = True


def load_settings() -> Settings:
    backend = os.getenv("STATE_BACKEND", "sqlite").strip().lower() or "sqlite"
    if backend not in {"sqlite", "memory"}:
        raise RuntimeError(f"STATE_BACKEND must be 'sqlite' or 'memory', got {backend!r}")

    return Settings(
        sqlite_path=os.getenv("EXPLAINGUARD_SQLITE_PATH", "data/explainguard.sqlite3").strip(),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip() or "INFO",
        state_backend=backend,
        sweep_interval_seconds=max(10, _get_int("SWEEP_INTERVAL_SECONDS", 300)),
        poll_interval_seconds=max(10, _get_int("POLL_INTERVAL_SECONDS", 60)),
        sweep_limit=max(0, _get_int("SWEEP_LIMIT", 0)),
        enforcement_config_path=os.getenv("EXPLAINGUARD_CONFIG_PATH", "").strip(),
        sweep_on_start=_get_bool("SWEEP_ON_START", True),
    )
