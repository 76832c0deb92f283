from __future__ import annotations

import sqlite3
from typing import List, Optional, Sequence

from domain.models import User, utcnow
from domain.repositories import IdentityRepository, UserRepository


class SqliteIdentityRepository(IdentityRepository):
    """
    Maps chat accounts (provider + provider_user_id) to score-room users.

    A user may be reachable through several accounts of the same provider;
    `get_external_ids_for_user` returns the most recently linked first.
    """

    def __init__(self, db_path: str, user_repo: UserRepository) -> None:
        self._db_path = db_path
        self._user_repo = user_repo
        self._ensure_table()

    def _get_connection(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS user_identities (
                    provider TEXT NOT NULL,
                    provider_user_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    linked_at TEXT NOT NULL,
                    PRIMARY KEY (provider, provider_user_id)
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS ix_user_identities_user "
                "ON user_identities (provider, user_id)"
            )
            conn.commit()

    def _column(self, query: str, params: Sequence[str]) -> List[str]:
        with self._get_connection() as conn:
            return [str(row[0]) for row in conn.execute(query, params).fetchall()]

    def find_user_by_external(self, provider: str, provider_user_id: str) -> Optional[User]:
        user_ids = self._column(
            "SELECT user_id FROM user_identities WHERE provider = ? AND provider_user_id = ?",
            (provider, provider_user_id),
        )
        return self._user_repo.get_user(user_ids[0]) if user_ids else None

    def set_external_identity(self, provider: str, provider_user_id: str, user_id: str) -> None:
        # Relinking an account moves it to the new user.
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT INTO user_identities (provider, provider_user_id, user_id, linked_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (provider, provider_user_id)
                DO UPDATE SET user_id = excluded.user_id, linked_at = excluded.linked_at
                """,
                (provider, provider_user_id, user_id, utcnow().isoformat()),
            )
            conn.commit()

    def get_external_ids_for_user(self, provider: str, user_id: str) -> List[str]:
        return self._column(
            """
            SELECT provider_user_id FROM user_identities
            WHERE provider = ? AND user_id = ?
            ORDER BY linked_at DESC
            """,
            (provider, user_id),
        )
