"""
Pure ledger rules for a room.

Nothing in here touches storage: every function takes a `Room` and returns
a new `Room` carrying the change, leaving the input untouched. Callers
decide when (and whether) to persist the result.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Iterable, List, Sequence

from .errors import (
    InsufficientBalanceError,
    LedgerValidationError,
    NotAMemberError,
    RoomNotActiveError,
    ZeroSumViolationError,
)
from .models import BalanceChange, Member, MemberStatus, Room, RoomStatus, ScoreEntry

logger = logging.getLogger(__name__)

DEFAULT_BALANCE_FLOOR = -1000
# Float tolerance for "sums to zero".
BALANCE_TOLERANCE = 0.01
# Balances changed by round entry are kept to this many decimals.
BALANCE_DECIMALS = 6


def balance_sum(members: Iterable[Member]) -> float:
    return sum(m.current_balance or 0 for m in members)


def is_balanced(scores: Iterable[ScoreEntry]) -> bool:
    return abs(sum(s.score_change for s in scores)) < BALANCE_TOLERANCE


def _validate_amount(amount: int) -> None:
    # bool is an int subclass; True is not a meaningful amount.
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise LedgerValidationError("Amount must be a whole number.")
    if amount <= 0:
        raise LedgerValidationError("Amount must be greater than zero.")


def _index_of(members: Sequence[Member], openid: str) -> int:
    for idx, member in enumerate(members):
        if member.openid == openid:
            return idx
    return -1


def transfer(
    room: Room,
    from_openid: str,
    to_openid: str,
    amount: int,
    *,
    now: datetime,
    balance_floor: float = DEFAULT_BALANCE_FLOOR,
) -> Room:
    """
    Move `amount` points from one member to another.

    Returns the updated room with a `BalanceChange` appended. Raises
    `LedgerValidationError` (or a subclass) when the request is not
    allowed, and `ZeroSumViolationError` if the resulting balances do not
    sum to zero.
    """

    _validate_amount(amount)

    before = balance_sum(room.members)
    if abs(before) > BALANCE_TOLERANCE:
        logger.warning(
            "Room %s balances sum to %s before transfer", room.id, before
        )

    if room.status != RoomStatus.ACTIVE:
        raise RoomNotActiveError("The room has ended; points can no longer be transferred.")

    from_idx = _index_of(room.members, from_openid)
    to_idx = _index_of(room.members, to_openid)
    if from_idx == -1 or to_idx == -1:
        raise NotAMemberError("Member not found in this room.")

    if from_openid == to_openid:
        raise LedgerValidationError("You cannot transfer points to yourself.")

    source = room.members[from_idx]
    target = room.members[to_idx]
    if source.has_left or target.has_left:
        raise LedgerValidationError("Members who left the room cannot transfer points.")

    current = source.current_balance or 0
    if current - amount < balance_floor:
        raise InsufficientBalanceError(current)

    members: List[Member] = [replace(m) for m in room.members]
    members[from_idx].current_balance = current - amount
    members[to_idx].current_balance = (target.current_balance or 0) + amount

    after = balance_sum(members)
    if abs(after) > BALANCE_TOLERANCE:
        logger.error("Room %s balances sum to %s after transfer", room.id, after)
        raise ZeroSumViolationError(after)

    change = BalanceChange(
        timestamp=now,
        from_openid=source.openid,
        from_nickname=source.nickname,
        to_openid=target.openid,
        to_nickname=target.nickname,
        amount=amount,
        balances={m.openid: m.current_balance for m in members},
    )
    return replace(
        room,
        members=members,
        balance_history=[*room.balance_history, change],
    )


def _shift_balances(room: Room, scores: Iterable[ScoreEntry], sign: int) -> List[Member]:
    members = [replace(m) for m in room.members]
    by_openid = {m.openid: m for m in members}
    for score in scores:
        member = by_openid.get(score.openid)
        # Entries for people not in the room are ignored.
        if member is not None:
            member.current_balance = round(
                (member.current_balance or 0) + sign * score.score_change, BALANCE_DECIMALS
            )
    return members


def apply_round(room: Room, scores: Sequence[ScoreEntry]) -> Room:
    """Add one round's score changes to member balances."""

    return replace(
        room,
        members=_shift_balances(room, scores, 1),
        total_rounds=room.total_rounds + 1,
    )


def reverse_round(room: Room, scores: Sequence[ScoreEntry]) -> Room:
    """Undo `apply_round`. No zero-sum check is made here."""

    return replace(
        room,
        members=_shift_balances(room, scores, -1),
        total_rounds=room.total_rounds - 1,
    )


def mark_settled(room: Room, *, now: datetime) -> Room:
    """Every member leaves and the room becomes `settled`."""

    return replace(
        room,
        status=RoomStatus.SETTLED,
        settled_at=now,
        members=[replace(m, member_status=MemberStatus.LEFT) for m in room.members],
    )
