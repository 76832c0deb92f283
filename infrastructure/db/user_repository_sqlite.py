from __future__ import annotations

import json
import sqlite3
from typing import Optional

from domain.models import User, UserStats, parse_datetime, utcnow
from domain.repositories import UserRepository


class SqliteUserRepository(UserRepository):
    """
    SQLite-backed implementation of `UserRepository`.

    This repository owns the `users` table and maps rows to the `User`
    domain model. It is self-initialising: the table is created if needed.
    Lifetime stats are kept as a JSON object in the `stats` column.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    nickname TEXT NOT NULL,
                    avatar_url TEXT NOT NULL DEFAULT '',
                    stats TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> User:
        return User(
            id=str(row[0]),
            nickname=row[1],
            avatar_url=row[2] or "",
            stats=UserStats.from_document(json.loads(row[3] or "{}")),
            created_at=parse_datetime(row[4]),
            updated_at=parse_datetime(row[5]),
        )

    def get_user(self, user_id: str) -> Optional[User]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT id, nickname, avatar_url, stats, created_at, updated_at
                FROM users WHERE id = ?
                """,
                (user_id,),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def add_user(self, user: User) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT OR IGNORE INTO users
                    (id, nickname, avatar_url, stats, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user.id,
                    user.nickname,
                    user.avatar_url,
                    json.dumps(user.stats.to_document()),
                    user.created_at.isoformat(),
                    user.updated_at.isoformat(),
                ),
            )
            conn.commit()

    def update_profile(self, user_id: str, nickname: str, avatar_url: str) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE users
                SET nickname = ?, avatar_url = ?, updated_at = ?
                WHERE id = ?
                """,
                (nickname, avatar_url, utcnow().isoformat(), user_id),
            )
            conn.commit()

    def update_stats(self, user_id: str, stats: UserStats) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE users
                SET stats = ?, updated_at = ?
                WHERE id = ?
                """,
                (json.dumps(stats.to_document()), utcnow().isoformat(), user_id),
            )
            conn.commit()
