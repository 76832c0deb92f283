"""
Room settlement across users.

Settling writes to *other* users' profiles (lifetime stats, opponent
records), so it lives behind its own request/response contract.
`SettlementService` is the trusted side; the client-facing room service
only ever talks to it through a `SettlementGateway`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from itertools import permutations
from typing import Callable, List, Optional, Protocol

from domain.errors import StaleRoomError
from domain.ledger import mark_settled
from domain.models import (
    Friend,
    FriendStats,
    Member,
    RoomStatus,
    UserStats,
    utcnow,
)
from domain.repositories import FriendRepository, RoomRepository, UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SettlementRequest:
    room_id: str
    caller_id: str


@dataclass(frozen=True)
class SettlementResponse:
    success: bool
    updated_users: int = 0
    updated_friends: int = 0
    error: Optional[str] = None


class SettlementGateway(Protocol):
    def settle(self, request: SettlementRequest) -> SettlementResponse:
        """
        Ask the privileged side to settle a room.

        Raises `SettlementUnavailableError` when the privileged side cannot
        be reached.
        """

        ...


def _add_game(stats: UserStats, balance: float) -> UserStats:
    return UserStats(
        total_games=stats.total_games + 1,
        total_wins=stats.total_wins + (1 if balance > 0 else 0),
        total_losses=stats.total_losses + (1 if balance < 0 else 0),
        total_score_change=stats.total_score_change + balance,
        total_money_change=stats.total_money_change + balance,
    )


class SettlementService:
    """Trusted settlement: finalises a room and rolls it into user stats."""

    def __init__(
        self,
        room_repo: RoomRepository,
        user_repo: UserRepository,
        friend_repo: FriendRepository,
        clock: Callable[[], datetime] = utcnow,
        write_retries: int = 3,
    ) -> None:
        self._rooms = room_repo
        self._users = user_repo
        self._friends = friend_repo
        self._clock = clock
        self._write_retries = max(1, write_retries)

    def settle(self, request: SettlementRequest) -> SettlementResponse:
        last_error: Optional[StaleRoomError] = None
        for _ in range(self._write_retries):
            room = self._rooms.get_room(request.room_id)
            if room is None:
                return SettlementResponse(success=False, error="Room not found.")

            if room.status != RoomStatus.ACTIVE:
                # Already settled: a second caller gets success with no work.
                return SettlementResponse(success=True, updated_users=0)

            if not room.is_member(request.caller_id):
                return SettlementResponse(
                    success=False, error="You are not a member of this room."
                )

            try:
                settled = self._rooms.save_room(mark_settled(room, now=self._clock()))
            except StaleRoomError as exc:
                logger.info("Settlement of room %s raced another write, retrying", room.id)
                last_error = exc
                continue

            updated_users = self._update_user_stats(settled.members)
            updated_friends = self._update_friends(settled.members)
            logger.info(
                "Room %s settled: %d users and %d friend records updated",
                settled.id,
                updated_users,
                updated_friends,
            )
            return SettlementResponse(
                success=True,
                updated_users=updated_users,
                updated_friends=updated_friends,
            )

        return SettlementResponse(success=False, error=str(last_error))

    def _update_user_stats(self, members: List[Member]) -> int:
        updated = 0
        for member in members:
            try:
                user = self._users.get_user(member.openid)
                if user is None:
                    continue
                self._users.update_stats(
                    user.id, _add_game(user.stats, member.current_balance or 0)
                )
                updated += 1
            except Exception:
                logger.exception("Failed to update stats for %s", member.nickname)
        return updated

    def _update_friends(self, members: List[Member]) -> int:
        now = self._clock()
        updated = 0
        for me, other in permutations(members, 2):
            if me.openid == other.openid:
                continue
            try:
                balance = me.current_balance or 0
                friend = self._friends.get_friend(me.openid, other.openid) or Friend(
                    owner_id=me.openid,
                    friend_id=other.openid,
                    friend_nickname=other.nickname,
                    friend_avatar_url=other.avatar_url,
                    added_at=now,
                )
                friend.friend_nickname = other.nickname
                friend.friend_avatar_url = other.avatar_url
                friend.frequency += 1
                friend.stats = FriendStats(
                    games_played=friend.stats.games_played + 1,
                    wins=friend.stats.wins + (1 if balance > 0 else 0),
                    losses=friend.stats.losses + (1 if balance < 0 else 0),
                    total_score_change=friend.stats.total_score_change + balance,
                )
                friend.last_played_at = now
                self._friends.save_friend(friend)
                updated += 1
            except Exception:
                logger.exception(
                    "Failed to update friend record %s -> %s", me.nickname, other.nickname
                )
        return updated


class LocalSettlementGateway(SettlementGateway):
    """Calls a `SettlementService` living in the same process."""

    def __init__(self, service: SettlementService) -> None:
        self._service = service

    def settle(self, request: SettlementRequest) -> SettlementResponse:
        return self._service.settle(request)
