from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

from domain.models import Friend, RoomStatus, UserStats, utcnow
from domain.repositories import FriendRepository, RoomRepository, UserRepository


@dataclass(frozen=True)
class OverallStats:
    total_games: int
    total_wins: int
    total_losses: int
    win_rate: float
    total_score_change: float
    average_score: float


class StatsService:
    """
    Read-only statistics.

    Figures are recomputed from settled rooms rather than read from
    `User.stats`, because settlement updates that cache on a best-effort
    basis.
    """

    def __init__(
        self,
        room_repo: RoomRepository,
        user_repo: UserRepository,
        friend_repo: FriendRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._rooms = room_repo
        self._users = user_repo
        self._friends = friend_repo
        self._clock = clock

    def overall_stats(self, user_id: str) -> OverallStats:
        games = wins = losses = 0
        total = 0
        for room in self._rooms.list_rooms_for_member(user_id, RoomStatus.SETTLED):
            me = room.find_member(user_id)
            if me is None:
                continue
            games += 1
            balance = me.current_balance or 0
            total += balance
            if balance > 0:
                wins += 1
            elif balance < 0:
                losses += 1

        return OverallStats(
            total_games=games,
            total_wins=wins,
            total_losses=losses,
            win_rate=(wins / games * 100) if games else 0,
            total_score_change=total,
            average_score=(total / games) if games else 0,
        )

    def trend(
        self,
        user_id: str,
        days: int = 7,
        today: Optional[date] = None,
    ) -> List[Tuple[date, float]]:
        """
        Cumulative score per day over the trailing `days` days (UTC).

        Days without a settled room repeat the previous running total.
        """

        today = today or self._clock().astimezone(timezone.utc).date()
        start = today - timedelta(days=days - 1)

        per_day: Dict[date, float] = {}
        for room in self._rooms.list_rooms_for_member(user_id, RoomStatus.SETTLED):
            if room.settled_at is None:
                continue
            day = room.settled_at.astimezone(timezone.utc).date()
            if day < start or day > today:
                continue
            me = room.find_member(user_id)
            if me is not None:
                per_day[day] = per_day.get(day, 0) + (me.current_balance or 0)

        points: List[Tuple[date, float]] = []
        cumulative: float = 0
        for offset in range(days):
            day = start + timedelta(days=offset)
            cumulative += per_day.get(day, 0)
            points.append((day, cumulative))
        return points

    def stored_stats(self, user_id: str) -> Optional[UserStats]:
        user = self._users.get_user(user_id)
        return user.stats if user is not None else None

    def list_friends(self, user_id: str) -> List[Friend]:
        return self._friends.list_friends(user_id)
