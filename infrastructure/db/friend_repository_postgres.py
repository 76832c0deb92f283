from __future__ import annotations

from typing import List, Optional

from domain.models import Friend, FriendStats
from domain.repositories import FriendRepository
from infrastructure.db.postgres import open_connection

_COLUMNS = (
    "owner_id, friend_id, friend_nickname, friend_avatar_url, frequency, "
    "games_played, wins, losses, total_score_change, last_played_at, added_at"
)


class PostgresFriendRepository(FriendRepository):
    """Postgres-backed implementation of `FriendRepository`."""

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
                    CREATE TABLE IF NOT EXISTS friends (
                        owner_id TEXT NOT NULL,
                        friend_id TEXT NOT NULL,
                        friend_nickname TEXT NOT NULL,
                        friend_avatar_url TEXT NOT NULL DEFAULT '',
                        frequency INTEGER NOT NULL DEFAULT 0,
                        games_played INTEGER NOT NULL DEFAULT 0,
                        wins INTEGER NOT NULL DEFAULT 0,
                        losses INTEGER NOT NULL DEFAULT 0,
                        total_score_change DOUBLE PRECISION NOT NULL DEFAULT 0,
                        last_played_at TIMESTAMPTZ,
                        added_at TIMESTAMPTZ NOT NULL,
                        PRIMARY KEY (owner_id, friend_id)
                    )
                    """
                )
                conn.commit()

    @staticmethod
    def _to_domain(row) -> Friend:
        return Friend(
            owner_id=row[0],
            friend_id=row[1],
            friend_nickname=row[2],
            friend_avatar_url=row[3] or "",
            frequency=int(row[4]),
            stats=FriendStats(
                games_played=int(row[5]),
                wins=int(row[6]),
                losses=int(row[7]),
                total_score_change=row[8],
            ),
            last_played_at=row[9],
            added_at=row[10],
        )

    def get_friend(self, owner_id: str, friend_id: str) -> Optional[Friend]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT {_COLUMNS} FROM friends WHERE owner_id = %s AND friend_id = %s",
                    (owner_id, friend_id),
                )
                row = cur.fetchone()
                if not row:
                    return None
                return self._to_domain(row)

    def save_friend(self, friend: Friend) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO friends ({_COLUMNS})
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (owner_id, friend_id) DO UPDATE SET
                        friend_nickname = EXCLUDED.friend_nickname,
                        friend_avatar_url = EXCLUDED.friend_avatar_url,
                        frequency = EXCLUDED.frequency,
                        games_played = EXCLUDED.games_played,
                        wins = EXCLUDED.wins,
                        losses = EXCLUDED.losses,
                        total_score_change = EXCLUDED.total_score_change,
                        last_played_at = EXCLUDED.last_played_at
                    """,
                    (
                        friend.owner_id,
                        friend.friend_id,
                        friend.friend_nickname,
                        friend.friend_avatar_url,
                        friend.frequency,
                        friend.stats.games_played,
                        friend.stats.wins,
                        friend.stats.losses,
                        friend.stats.total_score_change,
                        friend.last_played_at,
                        friend.added_at,
                    ),
                )
                conn.commit()

    def list_friends(self, owner_id: str) -> List[Friend]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS} FROM friends
                    WHERE owner_id = %s
                    ORDER BY frequency DESC, last_played_at DESC NULLS LAST
                    """,
                    (owner_id,),
                )
                return [self._to_domain(row) for row in cur.fetchall()]
