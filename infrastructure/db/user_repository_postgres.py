from __future__ import annotations

from typing import Optional

from psycopg2.extras import Json

from domain.models import User, UserStats, utcnow
from domain.repositories import UserRepository
from infrastructure.db.postgres import open_connection


class PostgresUserRepository(UserRepository):
    """
    Postgres-backed implementation of `UserRepository`.

    Lifetime stats live in a JSONB column using the same keys as the
    document shape (`totalGames`, `totalWins`, ...).
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn
        self._ensure_table()

    def _get_connection(self):
        return open_connection(self._dsn)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS users (
                        id TEXT PRIMARY KEY,
                        nickname TEXT NOT NULL,
                        avatar_url TEXT NOT NULL DEFAULT '',
                        stats JSONB NOT NULL DEFAULT '{}'::jsonb,
                        created_at TIMESTAMPTZ NOT NULL,
                        updated_at TIMESTAMPTZ NOT NULL
                    )
                    """
                )
                conn.commit()

    @staticmethod
    def _to_domain(row) -> User:
        return User(
            id=str(row[0]),
            nickname=row[1],
            avatar_url=row[2] or "",
            stats=UserStats.from_document(row[3]),
            created_at=row[4],
            updated_at=row[5],
        )

    def get_user(self, user_id: str) -> Optional[User]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT id, nickname, avatar_url, stats, created_at, updated_at
                    FROM users WHERE id = %s
                    """,
                    (user_id,),
                )
                row = cur.fetchone()
                if not row:
                    return None
                return self._to_domain(row)

    def add_user(self, user: User) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO users (id, nickname, avatar_url, stats, created_at, updated_at)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                    """,
                    (
                        user.id,
                        user.nickname,
                        user.avatar_url,
                        Json(user.stats.to_document()),
                        user.created_at,
                        user.updated_at,
                    ),
                )
                conn.commit()

    def update_profile(self, user_id: str, nickname: str, avatar_url: str) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE users
                    SET nickname = %s, avatar_url = %s, updated_at = %s
                    WHERE id = %s
                    """,
                    (nickname, avatar_url, utcnow(), user_id),
                )
                conn.commit()

    def update_stats(self, user_id: str, stats: UserStats) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE users
                    SET stats = %s, updated_at = %s
                    WHERE id = %s
                    """,
                    (Json(stats.to_document()), utcnow(), user_id),
                )
                conn.commit()
