from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration, read once from the environment (and `.env`).

    Entry points call `get_settings()`; services receive the values they
    need as plain arguments so tests can pass their own.
    """

    db_backend: str = "sqlite"
    db_path: str = "scoreroom.db"
    database_url: Optional[str] = None
    telegram_token: Optional[str] = None
    discord_token: Optional[str] = None
    log_level: str = "INFO"
    idle_settle_hours: float = 3
    balance_floor: int = -1000
    room_write_retries: int = 3
    join_readback_delay_sec: float = 0.0
    invite_link_base: str = "/pages/join-room/join-room"


@lru_cache
def get_settings() -> Settings:
    load_dotenv()
    return Settings(
        db_backend=os.environ.get("DB_BACKEND", "sqlite").lower(),
        db_path=os.environ.get("DB_PATH", "scoreroom.db"),
        database_url=os.environ.get("DATABASE_URL"),
        telegram_token=os.environ.get("TELEGRAM_TOKEN"),
        discord_token=os.environ.get("DISCORD_TOKEN"),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        idle_settle_hours=_env_float("IDLE_SETTLE_HOURS", 3),
        balance_floor=_env_int("BALANCE_FLOOR", -1000),
        room_write_retries=_env_int("ROOM_WRITE_RETRIES", 3),
        join_readback_delay_sec=_env_float("JOIN_READBACK_DELAY_SEC", 0.0),
        invite_link_base=os.environ.get("INVITE_LINK_BASE", "/pages/join-room/join-room"),
    )
