from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    items = tuple(p.strip() for p in raw.split(",") if p.strip())
    return items or default


@dataclass(frozen=True)
class Settings:
    # Storage
    data_dir: Path

    # Exclusive lock retry budget
    lock_attempts: int
    lock_wait_seconds: float

    # Advisory editing lock
    edit_lock_ttl_seconds: float

    # Backups
    default_tiers: tuple[str, ...]
    session_slots: int
    daily_slots: int

    # Logging
    log_level: str


def get_settings() -> Settings:
    data_dir = Path(os.getenv("DOCSTORE_DATA_DIR", "data")).expanduser()

    lock_attempts = max(1, _env_int("DOCSTORE_LOCK_ATTEMPTS", 50))
    lock_wait_seconds = max(0, _env_int("DOCSTORE_LOCK_WAIT_MS", 100)) / 1000.0

    edit_lock_ttl_seconds = float(max(1, _env_int("DOCSTORE_EDIT_LOCK_TTL_SECONDS", 10)))

    default_tiers = _env_list("DOCSTORE_DEFAULT_TIERS", ("recent",))
    session_slots = max(2, _env_int("DOCSTORE_SESSION_SLOTS", 2))
    daily_slots = max(1, _env_int("DOCSTORE_DAILY_SLOTS", 2))

    log_level = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

    return Settings(
        data_dir=data_dir,
        lock_attempts=lock_attempts,
        lock_wait_seconds=lock_wait_seconds,
        edit_lock_ttl_seconds=edit_lock_ttl_seconds,
        default_tiers=default_tiers,
        session_slots=session_slots,
        daily_slots=daily_slots,
        log_level=log_level,
    )
