from __future__ import annotations

import json
import sqlite3
from typing import List, Optional

from domain.models import GameRecord
from domain.repositories import GameRecordRepository


class SqliteGameRecordRepository(GameRecordRepository):
    """
    SQLite-backed implementation of `GameRecordRepository`.

    Records only hold the room ID; deleting a room leaves its records behind.
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
                CREATE TABLE IF NOT EXISTS game_records (
                    id TEXT PRIMARY KEY,
                    room_id TEXT NOT NULL,
                    round_number INTEGER NOT NULL,
                    document TEXT NOT NULL
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS ix_game_records_room ON game_records (room_id)"
            )
            conn.commit()

    def add_record(self, record: GameRecord) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO game_records (id, room_id, round_number, document)
                VALUES (?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.room_id,
                    record.round_number,
                    json.dumps(record.to_document()),
                ),
            )
            conn.commit()

    def get_record(self, record_id: str) -> Optional[GameRecord]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute("SELECT document FROM game_records WHERE id = ?", (record_id,))
            row = cur.fetchone()
            if not row:
                return None
            return GameRecord.from_document(json.loads(row[0]))

    def delete_record(self, record_id: str) -> None:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM game_records WHERE id = ?", (record_id,))
            conn.commit()

    def list_records_for_room(self, room_id: str) -> List[GameRecord]:
        with self._get_connection() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT document FROM game_records
                WHERE room_id = ?
                ORDER BY round_number DESC
                """,
                (room_id,),
            )
            return [GameRecord.from_document(json.loads(row[0])) for row in cur.fetchall()]
