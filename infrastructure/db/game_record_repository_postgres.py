from __future__ import annotations

from typing import List, Optional

from psycopg2.extras import Json

from domain.models import GameRecord
from domain.repositories import GameRecordRepository
from infrastructure.db.postgres import open_connection


class PostgresGameRecordRepository(GameRecordRepository):
    """Postgres-backed implementation of `GameRecordRepository`."""

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
                    CREATE TABLE IF NOT EXISTS game_records (
                        id TEXT PRIMARY KEY,
                        room_id TEXT NOT NULL,
                        round_number INTEGER NOT NULL,
                        document JSONB NOT NULL
                    )
                    """
                )
                cur.execute(
                    "CREATE INDEX IF NOT EXISTS ix_game_records_room ON game_records (room_id)"
                )
                conn.commit()

    def add_record(self, record: GameRecord) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO game_records (id, room_id, round_number, document)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (
                        record.id,
                        record.room_id,
                        record.round_number,
                        Json(record.to_document()),
                    ),
                )
                conn.commit()

    def get_record(self, record_id: str) -> Optional[GameRecord]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT document FROM game_records WHERE id = %s", (record_id,))
                row = cur.fetchone()
                if not row:
                    return None
                return GameRecord.from_document(row[0])

    def delete_record(self, record_id: str) -> None:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("DELETE FROM game_records WHERE id = %s", (record_id,))
                conn.commit()

    def list_records_for_room(self, room_id: str) -> List[GameRecord]:
        with self._get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT document FROM game_records
                    WHERE room_id = %s
                    ORDER BY round_number DESC
                    """,
                    (room_id,),
                )
                return [GameRecord.from_document(row[0]) for row in cur.fetchall()]
