from __future__ import annotations

import json
from dataclasses import replace
from typing import List, Optional

from psycopg2.extras import Json

from domain.errors import StaleRoomError
from domain.models import Room, RoomStatus
from domain.repositories import RoomRepository
from infrastructure.db.postgres import open_connection


class PostgresRoomRepository(RoomRepository):
    """
    Postgres-backed implementation of `RoomRepository`.

    Rooms are JSONB documents; membership lookups use containment on the
    `members` array, backed by a GIN index.
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
                    CREATE TABLE IF NOT EXISTS rooms (
                        id TEXT PRIMARY KEY,
                        owner_id TEXT NOT NULL,
                        invite_code CHAR(6) NOT NULL,
                        status TEXT NOT NULL,
                        version INTEGER NOT NULL DEFAULT 0,
                        created_at TIMESTAMPTZ NOT NULL,
                        settled_at TIMESTAMPTZ,
                        document JSONB NOT NULL
                    )
                    """
                )
                cur.execute(
                    "CREATE INDEX IF NOT EXISTS ix_rooms_code_status ON rooms (invite_code, status)"
                )
                cur.execute(
                    """
                    CREATE INDEX IF NOT EXISTS ix_rooms_members
                    ON rooms USING GIN ((document -> 'members') jsonb_path_ops)
                    """
                )
                conn.commit()

    def get_room(self, room_id: str) -> Optional[Room]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT document FROM rooms WHERE id = %s", (room_id,))
                row = cur.fetchone()
                if not row:
                    return None
                return Room.from_document(row[0])

    def add_room(self, room: Room) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO rooms
                        (id, owner_id, invite_code, status, version, created_at, settled_at, document)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    """,
                    (
                        room.id,
                        room.owner_id,
                        room.invite_code,
                        room.status.value,
                        room.version,
                        room.created_at,
                        room.settled_at,
                        Json(room.to_document()),
                    ),
                )
                conn.commit()

    def save_room(self, room: Room) -> Room:
        saved = replace(room, version=room.version + 1)
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE rooms
                    SET status = %s, version = %s, settled_at = %s, document = %s
                    WHERE id = %s AND version = %s
                    """,
                    (
                        saved.status.value,
                        saved.version,
                        saved.settled_at,
                        Json(saved.to_document()),
                        room.id,
                        room.version,
                    ),
                )
                if cur.rowcount == 0:
                    conn.rollback()
                    raise StaleRoomError(room.id, room.version)
                conn.commit()
        return saved

    def find_active_by_invite_code(self, invite_code: str) -> Optional[Room]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT document FROM rooms
                    WHERE invite_code = %s AND status = %s
                    ORDER BY created_at DESC
                    LIMIT 1
                    """,
                    (invite_code, RoomStatus.ACTIVE.value),
                )
                row = cur.fetchone()
                if not row:
                    return None
                return Room.from_document(row[0])

    def count_active_with_invite_code(self, invite_code: str) -> int:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT COUNT(*) FROM rooms WHERE invite_code = %s AND status = %s",
                    (invite_code, RoomStatus.ACTIVE.value),
                )
                return int(cur.fetchone()[0])

    def list_rooms_for_member(
        self,
        user_id: str,
        status: Optional[RoomStatus] = None,
    ) -> List[Room]:
        query = "SELECT document FROM rooms WHERE document -> 'members' @> %s::jsonb"
        params: list = [json.dumps([{"openid": user_id}])]
        if status is not None:
            query += " AND status = %s"
            params.append(RoomStatus(status).value)
        query += " ORDER BY created_at DESC"

        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return [Room.from_document(row[0]) for row in cur.fetchall()]
