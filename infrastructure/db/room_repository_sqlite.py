from __future__ import annotations

import json
import sqlite3
from dataclasses import replace
from typing import List, Optional

from domain.errors import StaleRoomError
from domain.models import Room, RoomStatus, format_datetime
from domain.repositories import RoomRepository


class SqliteRoomRepository(RoomRepository):
    """
    SQLite-backed implementation of `RoomRepository`.

    Each room is one JSON document in `rooms.document`; the columns beside
    it exist only for lookups. `room_members` indexes which users appear in
    which rooms (members are never removed, so rows are only ever added).
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
                CREATE TABLE IF NOT EXISTS rooms (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    invite_code TEXT NOT NULL,
                    status TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    settled_at TEXT,
                    document TEXT NOT NULL
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS ix_rooms_code_status ON rooms (invite_code, status)"
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS room_members (
                    room_id TEXT NOT NULL,
                    user_id TEXT NOT NULL,
                    PRIMARY KEY (room_id, user_id)
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS ix_room_members_user ON room_members (user_id)"
            )
            conn.commit()

    @staticmethod
    def _to_domain(row: sqlite3.Row) -> Room:
        return Room.from_document(json.loads(row[0]))

    @staticmethod
    def _index_members(cur: sqlite3.Cursor, room: Room) -> None:
        cur.executemany(
            "INSERT OR IGNORE INTO room_members (room_id, user_id) VALUES (?, ?)",
            [(room.id, m.openid) for m in room.members],
        )

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT document FROM rooms WHERE id = ?", (room_id,))
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def add_room(self, room: Room) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO rooms
                    (id, owner_id, invite_code, status, version, created_at, settled_at, document)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    room.id,
                    room.owner_id,
                    room.invite_code,
                    room.status.value,
                    room.version,
                    format_datetime(room.created_at),
                    format_datetime(room.settled_at),
                    json.dumps(room.to_document()),
                ),
            )
            self._index_members(cur, room)
            conn.commit()

    def save_room(self, room: Room) -> Room:
        saved = replace(room, version=room.version + 1)
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                UPDATE rooms
                SET status = ?, version = ?, settled_at = ?, document = ?
                WHERE id = ? AND version = ?
                """,
                (
                    saved.status.value,
                    saved.version,
                    format_datetime(saved.settled_at),
                    json.dumps(saved.to_document()),
                    room.id,
                    room.version,
                ),
            )
            if cur.rowcount == 0:
                conn.rollback()
                raise StaleRoomError(room.id, room.version)
            self._index_members(cur, saved)
            conn.commit()
        return saved

    def find_active_by_invite_code(self, invite_code: str) -> Optional[Room]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT document FROM rooms
                WHERE invite_code = ? AND status = ?
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (invite_code, RoomStatus.ACTIVE.value),
            )
            row = cur.fetchone()
            if not row:
                return None
            return self._to_domain(row)

    def count_active_with_invite_code(self, invite_code: str) -> int:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT COUNT(*) FROM rooms WHERE invite_code = ? AND status = ?",
                (invite_code, RoomStatus.ACTIVE.value),
            )
            return int(cur.fetchone()[0])

    def list_rooms_for_member(
        self,
        user_id: str,
        status: Optional[RoomStatus] = None,
    ) -> List[Room]:
        query = """
            SELECT r.document
            FROM rooms r
            JOIN room_members m ON m.room_id = r.id
            WHERE m.user_id = ?
        """
        params: list = [user_id]
        if status is not None:
            query += " AND r.status = ?"
            params.append(RoomStatus(status).value)
        query += " ORDER BY r.created_at DESC"

        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(query, params)
            return [self._to_domain(row) for row in cur.fetchall()]
