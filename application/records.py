from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Sequence

from domain import ledger
from domain.errors import LedgerValidationError, StaleRoomError
from domain.models import GameRecord, Room, ScoreEntry, utcnow
from domain.repositories import GameRecordRepository, RoomRepository

from .results import OperationResult, RecordResult, broadcast_to_members
from .rooms import mutate_room

logger = logging.getLogger(__name__)


class RecordService:
    """
    Round-based score entry, as an alternative to point transfers.

    Unbalanced rounds are accepted on purpose (e.g. a house cut); they are
    only flagged via `GameRecord.is_balanced`.
    """

    def __init__(
        self,
        room_repo: RoomRepository,
        record_repo: GameRecordRepository,
        clock: Callable[[], datetime] = utcnow,
        write_retries: int = 3,
    ) -> None:
        self._rooms = room_repo
        self._records = record_repo
        self._clock = clock
        self._write_retries = write_retries

    def add_record(self, room_id: str, scores: Sequence[ScoreEntry]) -> RecordResult:
        scores = list(scores)
        if not scores:
            return RecordResult(success=False, error_message="A round needs at least one score.")

        round_numbers: Dict[str, int] = {}

        def apply(room: Room) -> Room:
            round_numbers["next"] = room.total_rounds + 1
            return ledger.apply_round(room, scores)

        try:
            room = mutate_room(self._rooms, room_id, apply, self._write_retries)
        except (LedgerValidationError, StaleRoomError) as exc:
            return RecordResult(success=False, error_message=str(exc))

        record = GameRecord(
            id=uuid.uuid4().hex,
            room_id=room_id,
            round_number=round_numbers["next"],
            scores=scores,
            is_balanced=ledger.is_balanced(scores),
            played_at=self._clock(),
        )
        self._records.add_record(record)
        if not record.is_balanced:
            logger.info("Round %d of room %s is not balanced", record.round_number, room_id)

        text = f"Round {record.round_number} recorded: " + ", ".join(
            f"{s.nickname} {s.score_change:+g}" for s in scores
        )
        return RecordResult(
            success=True,
            record=record,
            broadcasts=broadcast_to_members(room, text),
        )

    def delete_record(self, record_id: str) -> OperationResult:
        """
        Remove a round and take its score changes back out of the room.

        Unlike transfers, no zero-sum check is made afterwards.
        """

        record = self._records.get_record(record_id)
        if record is None:
            return OperationResult(success=False, error_message="Record not found.")

        try:
            mutate_room(
                self._rooms,
                record.room_id,
                lambda room: ledger.reverse_round(room, record.scores),
                self._write_retries,
            )
        except (LedgerValidationError, StaleRoomError) as exc:
            return OperationResult(success=False, error_message=str(exc))

        self._records.delete_record(record_id)
        return OperationResult(success=True)

    def list_records(self, room_id: str) -> List[GameRecord]:
        return self._records.list_records_for_room(room_id)
