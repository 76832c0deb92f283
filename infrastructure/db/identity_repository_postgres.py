from __future__ import annotations

from typing import List, Optional, Sequence

from domain.models import User
from domain.repositories import IdentityRepository, UserRepository
from infrastructure.db.postgres import open_connection


class PostgresIdentityRepository(IdentityRepository):
    """
    Postgres twin of `SqliteIdentityRepository`.

    `users` rows are owned by `PostgresUserRepository`; this table only
    points chat accounts at them.
    """

    def __init__(self, dsn: str, user_repo: UserRepository) -> None:
        self._dsn = dsn
        self._user_repo = user_repo
        self._ensure_table()

    def _get_connection(self):
        return open_connection(self._dsn)

    def _ensure_table(self) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    CREATE TABLE IF NOT EXISTS user_identities (
                        provider TEXT NOT NULL,
                        provider_user_id TEXT NOT NULL,
                        user_id TEXT NOT NULL,
                        linked_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        PRIMARY KEY (provider, provider_user_id)
                    )
                    """
                )
                cur.execute(
                    "CREATE INDEX IF NOT EXISTS ix_user_identities_user "
                    "ON user_identities (provider, user_id)"
                )
                conn.commit()

    def _column(self, query: str, params: Sequence[str]) -> List[str]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return [str(row[0]) for row in cur.fetchall()]

    def find_user_by_external(self, provider: str, provider_user_id: str) -> Optional[User]:
        user_ids = self._column(
            "SELECT user_id FROM user_identities WHERE provider = %s AND provider_user_id = %s",
            (provider, provider_user_id),
        )
        return self._user_repo.get_user(user_ids[0]) if user_ids else None

    def set_external_identity(self, provider: str, provider_user_id: str, user_id: str) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO user_identities (provider, provider_user_id, user_id)
                    VALUES (%s, %s, %s)
                    ON CONFLICT (provider, provider_user_id)
                    DO UPDATE SET user_id = EXCLUDED.user_id, linked_at = now()
                    """,
                    (provider, provider_user_id, user_id),
                )
                conn.commit()

    def get_external_ids_for_user(self, provider: str, user_id: str) -> List[str]:
        return self._column(
            """
            SELECT provider_user_id FROM user_identities
            WHERE provider = %s AND user_id = %s
            ORDER BY linked_at DESC
            """,
            (provider, user_id),
        )
