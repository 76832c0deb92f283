from __future__ import annotations

import sqlite3
from typing import List, Optional

from domain.models import Friend, FriendStats, format_datetime, parse_datetime
from domain.repositories import FriendRepository

_COLUMNS = (
    "owner_id, friend_id, friend_nickname, friend_avatar_url, frequency, "
    "games_played, wins, losses, total_score_change, last_played_at, added_at"
)


class SqliteFriendRepository(FriendRepository):
    """SQLite-backed implementation of `FriendRepository`."""

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
                CREATE TABLE IF NOT EXISTS friends (
                    owner_id TEXT NOT NULL,
                    friend_id TEXT NOT NULL,
                    friend_nickname TEXT NOT NULL,
                    friend_avatar_url TEXT NOT NULL DEFAULT '',
                    frequency INTEGER NOT NULL DEFAULT 0,
                    games_played INTEGER NOT NULL DEFAULT 0,
                    wins INTEGER NOT NULL DEFAULT 0,
                    losses INTEGER NOT NULL DEFAULT 0,
                    total_score_change REAL NOT NULL DEFAULT 0,
                    last_played_at TEXT,
                    added_at TEXT NOT NULL,
                    PRIMARY KEY (owner_id, friend_id)
                )
                """
            )
            conn.commit()

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> Friend:
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
            last_played_at=parse_datetime(row[9]),
            added_at=parse_datetime(row[10]),
        )

    def get_friend(self, owner_id: str, friend_id: str) -> Optional[Friend]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"SELECT {_COLUMNS} FROM friends WHERE owner_id = ? AND friend_id = ?",
                (owner_id, friend_id),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def save_friend(self, friend: Friend) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                INSERT OR REPLACE INTO friends ({_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
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
                    format_datetime(friend.last_played_at),
                    format_datetime(friend.added_at),
                ),
            )
            conn.commit()

    def list_friends(self, owner_id: str) -> List[Friend]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM friends
                WHERE owner_id = ?
                ORDER BY frequency DESC, last_played_at DESC
                """,
                (owner_id,),
            )
            return [self._to_domain(row) for row in cur.fetchall()]
