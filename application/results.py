from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from domain.models import GameRecord, Room


@dataclass
class BroadcastMessage:
    """A message that should be delivered to a particular user."""

    user_id: str
    text: str


@dataclass
class OperationResult:
    """Generic result type for simple operations."""

    success: bool
    error_message: Optional[str] = None
    broadcasts: List[BroadcastMessage] = field(default_factory=list)


@dataclass
class RoomResult(OperationResult):
    room: Optional[Room] = None


@dataclass
class RecordResult(OperationResult):
    record: Optional[GameRecord] = None


def broadcast_to_members(room: Room, text: str) -> List[BroadcastMessage]:
    return [BroadcastMessage(user_id=m.openid, text=text) for m in room.members]


def broadcast_to(user_ids: Iterable[str], text: str) -> List[BroadcastMessage]:
    return [BroadcastMessage(user_id=uid, text=text) for uid in user_ids]
