from __future__ import annotations

from typing import List, Optional, Protocol

from .models import Friend, GameRecord, Room, RoomStatus, User, UserStats


class UserRepository(Protocol):
    """
    Abstraction over user profile persistence.

    Implementations are responsible for:
    - Mapping between database rows and the `User` domain model.
    - Hiding any SQL / driver details from the application layer.
    """

    def get_user(self, user_id: str) -> Optional[User]:
        """Return the user with the given internal ID, or None if not found."""

        ...

    def add_user(self, user: User) -> None:
        """Persist a new user."""

        ...

    def update_profile(self, user_id: str, nickname: str, avatar_url: str) -> None:
        ...

    def update_stats(self, user_id: str, stats: UserStats) -> None:
        """Replace the stored lifetime statistics of a user."""

        ...


class IdentityRepository(Protocol):
    """
    Maps external identities (Telegram/Discord) to internal user IDs.

    The application layer works exclusively with internal user IDs and
    leaves provider-specific identifiers to this abstraction.
    """

    def find_user_by_external(
        self,
        provider: str,
        provider_user_id: str,
    ) -> Optional[User]:
        """Return the user mapped to the given external identity, if any."""

        ...

    def set_external_identity(
        self,
        provider: str,
        provider_user_id: str,
        user_id: str,
    ) -> None:
        ...

    def get_external_ids_for_user(
        self,
        provider: str,
        user_id: str,
    ) -> List[str]:
        """
        Return all external IDs (e.g. Telegram chat IDs) associated with
        a given internal user ID for the specified provider.
        """

        ...


class RoomRepository(Protocol):
    """
    Whole-document persistence for rooms.

    Members and balance history are never written on their own; a room is
    always replaced as a unit so the two cannot drift apart.
    """

    def get_room(self, room_id: str) -> Optional[Room]:
        ...

    def add_room(self, room: Room) -> None:
        ...

    def save_room(self, room: Room) -> Room:
        """
        Replace the stored room if its version still equals `room.version`.

        Returns the room carrying its new version. Raises `StaleRoomError`
        when another writer got there first.
        """

        ...

    def find_active_by_invite_code(self, invite_code: str) -> Optional[Room]:
        ...

    def count_active_with_invite_code(self, invite_code: str) -> int:
        """Only rooms in `active` status are considered."""

        ...

    def list_rooms_for_member(
        self,
        user_id: str,
        status: Optional[RoomStatus] = None,
    ) -> List[Room]:
        """Rooms the user is (or was) a member of, newest first."""

        ...


class GameRecordRepository(Protocol):
    def add_record(self, record: GameRecord) -> None:
        ...

    def get_record(self, record_id: str) -> Optional[GameRecord]:
        ...

    def delete_record(self, record_id: str) -> None:
        ...

    def list_records_for_room(self, room_id: str) -> List[GameRecord]:
        """Records of a room, latest round first."""

        ...


class FriendRepository(Protocol):
    def get_friend(self, owner_id: str, friend_id: str) -> Optional[Friend]:
        ...

    def save_friend(self, friend: Friend) -> None:
        """Insert or replace the (owner, friend) record."""

        ...

    def list_friends(self, owner_id: str) -> List[Friend]:
        """Friends of `owner_id`, most frequent first."""

        ...
