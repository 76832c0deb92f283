"""
Channel-agnostic helpers shared by the Telegram and Discord interfaces:
resolving a room from what a user typed, parsing round entries and
rendering rooms and stats as plain text.
"""

from __future__ import annotations

from datetime import date
from typing import List, Optional, Sequence, Tuple

from application.invite_codes import build_invite_link, normalize_invite_code
from application.rooms import RoomService
from application.stats import OverallStats
from domain.models import Friend, GameRecord, Room, RoomStatus, ScoreEntry


def find_room(rooms: RoomService, user_id: str, ref: str) -> Optional[Room]:
    """
    Look a room up among the caller's rooms by invite code or ID prefix.

    Codes of settled rooms can be reused, so the newest match wins.
    """

    code = normalize_invite_code(ref)
    prefix = (ref or "").strip().lower()
    if not prefix:
        return None
    for room in rooms.list_my_rooms(user_id):
        if room.invite_code == code or room.id.startswith(prefix):
            return room
    return None


def parse_scores(room: Room, tokens: Sequence[str]) -> List[ScoreEntry]:
    """
    Parse `nickname=delta[:note]` tokens against the room's members.

    Raises ValueError with a user-facing message on bad input.
    """

    entries: List[ScoreEntry] = []
    by_name = {m.nickname.lower(): m for m in room.members}
    for token in tokens:
        name, sep, rest = token.partition("=")
        if not sep:
            raise ValueError(f"Expected name=score, got '{token}'.")
        member = by_name.get(name.strip().lower())
        if member is None:
            raise ValueError(f"No member called '{name}' in this room.")
        raw_score, _, note = rest.partition(":")
        try:
            score = float(raw_score)
        except ValueError:
            raise ValueError(f"Score for {member.nickname} must be a number.") from None
        if score.is_integer():
            score = int(score)
        entries.append(
            ScoreEntry(
                openid=member.openid,
                nickname=member.nickname,
                score_change=score,
                note=note or None,
            )
        )
    return entries


def format_room(room: Room, viewer_id: Optional[str] = None, link_base: Optional[str] = None) -> str:
    lines = [f"{room.room_name} [{room.invite_code}] - {room.status.value}"]
    for member in sorted(room.members, key=lambda m: m.current_balance, reverse=True):
        marks = []
        if member.openid == viewer_id:
            marks.append("you")
        if member.has_left:
            marks.append("left")
        suffix = f" ({', '.join(marks)})" if marks else ""
        lines.append(f"  {member.nickname}: {member.current_balance:+g}{suffix}")
    lines.append(f"Rounds: {room.total_rounds}, transfers: {len(room.balance_history)}")
    if room.status == RoomStatus.ACTIVE and link_base:
        lines.append(f"Invite: {build_invite_link(room.invite_code, link_base)}")
    return "\n".join(lines)


def format_room_list(rooms: Sequence[Room], viewer_id: str) -> str:
    if not rooms:
        return "You have no rooms yet."
    lines = []
    for room in rooms:
        me = room.find_member(viewer_id)
        balance = me.current_balance if me is not None else 0
        lines.append(f"[{room.invite_code}] {room.room_name} ({room.status.value}): {balance:+g}")
    return "\n".join(lines)


def format_records(records: Sequence[GameRecord]) -> str:
    if not records:
        return "No rounds recorded yet."
    lines = []
    for record in records:
        scores = ", ".join(f"{s.nickname} {s.score_change:+g}" for s in record.scores)
        flag = "" if record.is_balanced else " (unbalanced)"
        lines.append(f"#{record.round_number} [{record.id[:8]}] {scores}{flag}")
    return "\n".join(lines)


def format_stats(stats: OverallStats) -> str:
    return (
        f"Games: {stats.total_games}\n"
        f"Wins: {stats.total_wins}, losses: {stats.total_losses}\n"
        f"Win rate: {stats.win_rate:.1f}%\n"
        f"Total: {stats.total_score_change:+g}, average: {stats.average_score:+.1f}"
    )


def format_trend(points: Sequence[Tuple[date, float]]) -> str:
    return "\n".join(f"{day.month}/{day.day}: {total:+g}" for day, total in points)


def format_friends(friends: Sequence[Friend]) -> str:
    if not friends:
        return "No opponents yet."
    lines = []
    for friend in friends:
        s = friend.stats
        lines.append(
            f"{friend.friend_nickname}: {s.games_played} games, "
            f"{s.wins}W/{s.losses}L, {s.total_score_change:+g}"
        )
    return "\n".join(lines)
