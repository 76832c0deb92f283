from __future__ import annotations

import logging
import random
import time
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence

from domain import ledger
from domain.errors import (
    LedgerValidationError,
    NotAMemberError,
    RoomNotActiveError,
    RoomNotFoundError,
    SettlementUnavailableError,
    StaleRoomError,
)
from domain.models import (
    GameType,
    Member,
    MemberRole,
    MemberStatus,
    Room,
    RoomStatus,
    SettlementMode,
    User,
    utcnow,
)
from domain.repositories import RoomRepository

from .invite_codes import generate_invite_code, normalize_invite_code
from .results import OperationResult, RoomResult, broadcast_to_members
from .settlement import SettlementGateway, SettlementRequest

logger = logging.getLogger(__name__)

DEFAULT_IDLE_THRESHOLD = timedelta(hours=3)


def mutate_room(
    room_repo: RoomRepository,
    room_id: str,
    mutate: Callable[[Room], Room],
    retries: int = 3,
) -> Room:
    """
    Read a room, apply `mutate` and write the whole document back.

    The write only lands if nobody else wrote the room in between; on a
    version conflict the cycle starts again from a fresh read, so `mutate`
    must be safe to call more than once. When `mutate` returns the room it
    was given, nothing is written.
    """

    last_error: Optional[StaleRoomError] = None
    for attempt in range(1, max(1, retries) + 1):
        room = room_repo.get_room(room_id)
        if room is None:
            raise RoomNotFoundError("Room not found.")
        updated = mutate(room)
        if updated is room:
            return room
        try:
            return room_repo.save_room(updated)
        except StaleRoomError as exc:
            logger.info("Room %s changed during write (attempt %d)", room_id, attempt)
            last_error = exc
    assert last_error is not None
    raise last_error


def _member_from_user(user: User, role: MemberRole) -> Member:
    return Member(
        openid=user.id,
        nickname=user.nickname,
        avatar_url=user.avatar_url,
        role=role,
        current_balance=0,
        member_status=MemberStatus.ACTIVE,
    )


class RoomService:
    """
    Client-facing room operations: lifecycle, membership and transfers.

    Cross-user settlement is delegated to the `SettlementGateway`; when it
    cannot be used the room is only flagged as settled (`force_settle`).
    """

    def __init__(
        self,
        room_repo: RoomRepository,
        settlement_gateway: SettlementGateway,
        clock: Callable[[], datetime] = utcnow,
        idle_threshold: timedelta = DEFAULT_IDLE_THRESHOLD,
        balance_floor: float = ledger.DEFAULT_BALANCE_FLOOR,
        write_retries: int = 3,
        join_readback_delay: float = 0.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._rooms = room_repo
        self._settlement = settlement_gateway
        self._clock = clock
        self._idle_threshold = idle_threshold
        self._balance_floor = balance_floor
        self._write_retries = write_retries
        self._join_readback_delay = join_readback_delay
        self._rng = rng

    def _mutate(self, room_id: str, mutate: Callable[[Room], Room]) -> Room:
        return mutate_room(self._rooms, room_id, mutate, self._write_retries)

    # -- lifecycle -----------------------------------------------------

    def create_room(
        self,
        creator: User,
        room_name: str,
        game_type: GameType = GameType.MAJIANG,
        settlement_mode: SettlementMode = SettlementMode.SCORE,
        base_point: float = 1,
        initial_members: Sequence[User] = (),
    ) -> RoomResult:
        room_name = (room_name or "").strip()
        if not room_name:
            return RoomResult(success=False, error_message="Room name cannot be empty.")

        members = [_member_from_user(creator, MemberRole.CREATOR)]
        for user in initial_members:
            if all(m.openid != user.id for m in members):
                members.append(_member_from_user(user, MemberRole.MEMBER))

        room = Room(
            id=uuid.uuid4().hex,
            owner_id=creator.id,
            room_name=room_name,
            invite_code=generate_invite_code(self._rooms, self._rng, self._clock),
            game_type=GameType(game_type),
            settlement_mode=SettlementMode(settlement_mode),
            base_point=base_point,
            status=RoomStatus.ACTIVE,
            members=members,
            total_rounds=0,
            created_at=self._clock(),
            balance_history=[],
        )
        self._rooms.add_room(room)
        logger.info("Room %s created by %s with code %s", room.id, creator.id, room.invite_code)
        return RoomResult(success=True, room=room)

    def join_room(self, user: User, invite_code: str) -> RoomResult:
        code = normalize_invite_code(invite_code)
        found = self._rooms.find_active_by_invite_code(code)
        if found is None:
            return RoomResult(
                success=False, error_message="Room does not exist or has already ended."
            )
        if found.is_member(user.id):
            return RoomResult(success=True, room=found)

        def add_member(room: Room) -> Room:
            if room.status != RoomStatus.ACTIVE:
                raise RoomNotActiveError("Room does not exist or has already ended.")
            if room.is_member(user.id):
                return room
            return replace(
                room,
                members=[*room.members, _member_from_user(user, MemberRole.MEMBER)],
            )

        try:
            self._mutate(found.id, add_member)
        except (LedgerValidationError, StaleRoomError) as exc:
            return RoomResult(success=False, error_message=str(exc))

        if self._join_readback_delay > 0:
            time.sleep(self._join_readback_delay)
        room = self._rooms.get_room(found.id)
        return RoomResult(
            success=True,
            room=room,
            broadcasts=broadcast_to_members(room, f"{user.nickname} joined {room.room_name}"),
        )

    def leave_room(self, room_id: str, user_id: str) -> RoomResult:
        """
        Mark the caller as having left; their balance stays on the books.

        When nobody active remains the room is settled straight away.
        """

        def mark_left(room: Room) -> Room:
            if room.status != RoomStatus.ACTIVE:
                raise RoomNotActiveError("The room has ended; you cannot leave it.")
            if not room.is_member(user_id):
                raise NotAMemberError("You are not in this room.")
            return replace(
                room,
                members=[
                    replace(m, member_status=MemberStatus.LEFT) if m.openid == user_id else m
                    for m in room.members
                ],
            )

        try:
            room = self._mutate(room_id, mark_left)
        except (LedgerValidationError, StaleRoomError) as exc:
            return RoomResult(success=False, error_message=str(exc))

        member = room.find_member(user_id)
        broadcasts = broadcast_to_members(room, f"{member.nickname} left {room.room_name}")

        if room.all_members_left:
            try:
                self._auto_settle(room, user_id)
            except (LedgerValidationError, StaleRoomError):
                # The leave itself is stored; the idle sweep settles the room later.
                logger.exception("Could not settle room %s after the last member left", room_id)
            room = self._rooms.get_room(room_id) or room

        return RoomResult(success=True, room=room, broadcasts=broadcasts)

    def settle_room(self, room_id: str, caller_id: str) -> RoomResult:
        """
        Settle on request of a member.

        Falls back to `force_settle` only when the privileged path is
        unreachable; a refusal from it is reported to the caller.
        """

        try:
            response = self._settlement.settle(SettlementRequest(room_id, caller_id))
        except SettlementUnavailableError as exc:
            logger.warning("Privileged settlement unavailable for %s: %s", room_id, exc)
            current = self._rooms.get_room(room_id)
            if current is None:
                return RoomResult(success=False, error_message="Room not found.")
            if not current.is_member(caller_id):
                return RoomResult(
                    success=False, error_message="You are not a member of this room."
                )
            try:
                self.force_settle(room_id)
            except (LedgerValidationError, StaleRoomError) as fallback_exc:
                return RoomResult(success=False, error_message=str(fallback_exc))
        else:
            if not response.success:
                return RoomResult(
                    success=False, error_message=response.error or "Settlement failed."
                )

        room = self._rooms.get_room(room_id)
        return RoomResult(
            success=True,
            room=room,
            broadcasts=broadcast_to_members(room, self._settlement_summary(room)),
        )

    def force_settle(self, room_id: str) -> Room:
        """
        Degraded settlement: flip the status without touching user stats.

        Lifetime stats of the members will not include this room.
        """

        def flag_settled(room: Room) -> Room:
            if room.status == RoomStatus.SETTLED:
                return room
            return replace(room, status=RoomStatus.SETTLED, settled_at=self._clock())

        return self._mutate(room_id, flag_settled)

    def _auto_settle(self, room: Room, caller_id: str) -> None:
        try:
            response = self._settlement.settle(SettlementRequest(room.id, caller_id))
            if response.success:
                return
            logger.warning("Automatic settlement of %s refused: %s", room.id, response.error)
        except SettlementUnavailableError as exc:
            logger.warning("Automatic settlement of %s unavailable: %s", room.id, exc)
        self.force_settle(room.id)

    @staticmethod
    def _settlement_summary(room: Room) -> str:
        lines = [f"{room.room_name} has been settled."]
        for member in sorted(room.members, key=lambda m: m.current_balance, reverse=True):
            lines.append(f"{member.nickname}: {member.current_balance:+g}")
        return "\n".join(lines)

    # -- idle sweep ----------------------------------------------------

    def needs_settlement(self, room: Room, now: Optional[datetime] = None) -> bool:
        if room.status != RoomStatus.ACTIVE:
            return False
        now = now or self._clock()
        return room.all_members_left or now - room.last_activity_at > self._idle_threshold

    def _sweep(self, room: Room, caller_id: str) -> Room:
        if not self.needs_settlement(room):
            return room
        logger.info("Room %s is idle or empty, settling it", room.id)
        try:
            self._auto_settle(room, caller_id)
        except (LedgerValidationError, StaleRoomError):
            logger.exception("Could not settle idle room %s", room.id)
            return room
        return self._rooms.get_room(room.id) or room

    def get_room_detail(self, room_id: str, caller_id: str) -> RoomResult:
        room = self._rooms.get_room(room_id)
        if room is None:
            return RoomResult(success=False, error_message="Room not found.")
        return RoomResult(success=True, room=self._sweep(room, caller_id))

    def list_my_rooms(
        self,
        user_id: str,
        status: Optional[RoomStatus] = None,
    ) -> List[Room]:
        for room in self._rooms.list_rooms_for_member(user_id, RoomStatus.ACTIVE):
            self._sweep(room, user_id)
        return self._rooms.list_rooms_for_member(user_id, status)

    # -- ledger --------------------------------------------------------

    def transfer(
        self,
        room_id: str,
        from_user_id: str,
        to_user_id: str,
        amount: int,
    ) -> RoomResult:
        """
        Move points between two members of an active room.

        `ZeroSumViolationError` is deliberately not caught here: it means the
        ledger itself is broken and nothing has been written.
        """

        now = self._clock()
        try:
            room = self._mutate(
                room_id,
                lambda current: ledger.transfer(
                    current,
                    from_user_id,
                    to_user_id,
                    amount,
                    now=now,
                    balance_floor=self._balance_floor,
                ),
            )
        except (LedgerValidationError, StaleRoomError) as exc:
            return RoomResult(success=False, error_message=str(exc))

        change = room.balance_history[-1]
        text = f"{change.from_nickname} transfers {change.amount} to {change.to_nickname}"
        return RoomResult(success=True, room=room, broadcasts=broadcast_to_members(room, text))
