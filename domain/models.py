from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class RoomStatus(str, Enum):
    ACTIVE = "active"
    SETTLED = "settled"
    # Reserved: no transition leads here yet.
    ARCHIVED = "archived"


class MemberRole(str, Enum):
    CREATOR = "creator"
    MEMBER = "member"


class MemberStatus(str, Enum):
    ACTIVE = "active"
    LEFT = "left"


class SettlementMode(str, Enum):
    SCORE = "score"
    MONEY = "money"


class GameType(str, Enum):
    MAJIANG = "majiang"
    POKER = "poker"
    DOUDIZHU = "doudizhu"
    OTHER = "other"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class UserStats:
    """Lifetime aggregate maintained incrementally by settlement."""

    total_games: int = 0
    total_wins: int = 0
    total_losses: int = 0
    total_score_change: float = 0
    total_money_change: float = 0

    def to_document(self) -> Dict[str, Any]:
        return {
            "totalGames": self.total_games,
            "totalWins": self.total_wins,
            "totalLosses": self.total_losses,
            "totalScoreChange": self.total_score_change,
            "totalMoneyChange": self.total_money_change,
        }

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]) -> "UserStats":
        doc = doc or {}
        return cls(
            total_games=int(doc.get("totalGames", 0)),
            total_wins=int(doc.get("totalWins", 0)),
            total_losses=int(doc.get("totalLosses", 0)),
            total_score_change=doc.get("totalScoreChange", 0),
            total_money_change=doc.get("totalMoneyChange", 0),
        )


@dataclass
class User:
    """
    A person known to the score tracker.

    `id` is the stable identifier used everywhere else (room members,
    friend records); it never leaks a chat provider's own user ID.
    """

    id: str
    nickname: str
    avatar_url: str = ""
    stats: UserStats = field(default_factory=UserStats)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass
class Member:
    """A user's participation record inside one room."""

    openid: str
    nickname: str
    avatar_url: str = ""
    role: MemberRole = MemberRole.MEMBER
    current_balance: float = 0
    member_status: MemberStatus = MemberStatus.ACTIVE

    @property
    def has_left(self) -> bool:
        return self.member_status == MemberStatus.LEFT

    def to_document(self) -> Dict[str, Any]:
        return {
            "openid": self.openid,
            "nickname": self.nickname,
            "avatarUrl": self.avatar_url,
            "role": self.role.value,
            "currentBalance": self.current_balance,
            "memberStatus": self.member_status.value,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Member":
        return cls(
            openid=str(doc["openid"]),
            nickname=doc.get("nickname", ""),
            avatar_url=doc.get("avatarUrl", "") or "",
            role=MemberRole(doc.get("role", MemberRole.MEMBER.value)),
            current_balance=doc.get("currentBalance", 0) or 0,
            # Older documents have no status; absent means active.
            member_status=MemberStatus(doc.get("memberStatus") or MemberStatus.ACTIVE.value),
        )


@dataclass(frozen=True)
class BalanceChange:
    """One point transfer plus the balances of every member right after it."""

    timestamp: datetime
    from_openid: str
    from_nickname: str
    to_openid: str
    to_nickname: str
    amount: int
    balances: Dict[str, float]

    def to_document(self) -> Dict[str, Any]:
        return {
            "timestamp": format_datetime(self.timestamp),
            "fromOpenid": self.from_openid,
            "fromNickname": self.from_nickname,
            "toOpenid": self.to_openid,
            "toNickname": self.to_nickname,
            "amount": self.amount,
            "balances": dict(self.balances),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "BalanceChange":
        return cls(
            timestamp=parse_datetime(doc["timestamp"]),
            from_openid=doc["fromOpenid"],
            from_nickname=doc.get("fromNickname", ""),
            to_openid=doc["toOpenid"],
            to_nickname=doc.get("toNickname", ""),
            amount=doc["amount"],
            balances=dict(doc.get("balances") or {}),
        )


@dataclass
class Room:
    """
    A game session with its embedded members and balance history.

    The whole room is persisted as one document; `version` is bumped by
    the repository on every successful write.
    """

    id: str
    owner_id: str
    room_name: str
    invite_code: str
    game_type: GameType = GameType.MAJIANG
    settlement_mode: SettlementMode = SettlementMode.SCORE
    base_point: float = 1
    status: RoomStatus = RoomStatus.ACTIVE
    members: List[Member] = field(default_factory=list)
    total_rounds: int = 0
    created_at: datetime = field(default_factory=utcnow)
    settled_at: Optional[datetime] = None
    balance_history: List[BalanceChange] = field(default_factory=list)
    version: int = 0

    def find_member(self, openid: str) -> Optional[Member]:
        for member in self.members:
            if member.openid == openid:
                return member
        return None

    def is_member(self, openid: str) -> bool:
        return self.find_member(openid) is not None

    @property
    def all_members_left(self) -> bool:
        return bool(self.members) and all(m.has_left for m in self.members)

    @property
    def last_activity_at(self) -> datetime:
        """Time of the latest transfer, or creation time if there is none."""

        if self.balance_history:
            return self.balance_history[-1].timestamp
        return self.created_at

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "roomName": self.room_name,
            "gameType": self.game_type.value,
            "settlementMode": self.settlement_mode.value,
            "basePoint": self.base_point,
            "status": self.status.value,
            "members": [m.to_document() for m in self.members],
            "inviteCode": self.invite_code,
            "totalRounds": self.total_rounds,
            "createdAt": format_datetime(self.created_at),
            "settledAt": format_datetime(self.settled_at),
            "balanceHistory": [c.to_document() for c in self.balance_history],
            "version": self.version,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Room":
        return cls(
            id=str(doc["id"]),
            owner_id=str(doc["ownerId"]),
            room_name=doc.get("roomName", ""),
            invite_code=doc["inviteCode"],
            game_type=GameType(doc.get("gameType") or GameType.MAJIANG.value),
            settlement_mode=SettlementMode(doc.get("settlementMode") or SettlementMode.SCORE.value),
            base_point=doc.get("basePoint", 1),
            status=RoomStatus(doc.get("status", RoomStatus.ACTIVE.value)),
            members=[Member.from_document(m) for m in doc.get("members") or []],
            total_rounds=int(doc.get("totalRounds", 0)),
            created_at=parse_datetime(doc.get("createdAt")) or utcnow(),
            settled_at=parse_datetime(doc.get("settledAt")),
            balance_history=[
                BalanceChange.from_document(c) for c in doc.get("balanceHistory") or []
            ],
            version=int(doc.get("version", 0)),
        )


@dataclass(frozen=True)
class ScoreEntry:
    openid: str
    nickname: str
    score_change: float
    note: Optional[str] = None

    def to_document(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "openid": self.openid,
            "nickname": self.nickname,
            "scoreChange": self.score_change,
        }
        if self.note:
            doc["note"] = self.note
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "ScoreEntry":
        return cls(
            openid=doc["openid"],
            nickname=doc.get("nickname", ""),
            score_change=doc["scoreChange"],
            note=doc.get("note"),
        )


@dataclass
class GameRecord:
    """One round of per-member score deltas, stored apart from the room."""

    id: str
    room_id: str
    round_number: int
    scores: List[ScoreEntry]
    is_balanced: bool
    played_at: datetime = field(default_factory=utcnow)

    def to_document(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "roomId": self.room_id,
            "roundNumber": self.round_number,
            "scores": [s.to_document() for s in self.scores],
            "isBalanced": self.is_balanced,
            "playedAt": format_datetime(self.played_at),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "GameRecord":
        return cls(
            id=str(doc["id"]),
            room_id=str(doc["roomId"]),
            round_number=int(doc["roundNumber"]),
            scores=[ScoreEntry.from_document(s) for s in doc.get("scores") or []],
            is_balanced=bool(doc.get("isBalanced")),
            played_at=parse_datetime(doc.get("playedAt")) or utcnow(),
        )


@dataclass
class FriendStats:
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    total_score_change: float = 0


@dataclass
class Friend:
    """
    How one user has fared in settled rooms shared with another user.

    Records are directional: A's record for B is independent of B's for A.
    """

    owner_id: str
    friend_id: str
    friend_nickname: str
    friend_avatar_url: str = ""
    frequency: int = 0
    stats: FriendStats = field(default_factory=FriendStats)
    last_played_at: Optional[datetime] = None
    added_at: datetime = field(default_factory=utcnow)
