from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from domain.models import User, UserStats, utcnow
from domain.repositories import IdentityRepository, UserRepository

from .results import OperationResult

_NICKNAME_PREFIXES = (
    "Pure Suit", "Seven Pairs", "Big Three Dragons", "Little Three Dragons",
    "Half Flush", "All Pungs", "East Wind", "South Wind", "West Wind",
    "North Wind", "Red Dragon", "Green Dragon", "White Dragon",
    "Nine Gates", "Thirteen Orphans", "Heavenly Hand", "Earthly Hand",
    "Self Draw", "Last Tile", "Robbing the Kong",
)

_NICKNAME_SUFFIXES = (
    "Ace", "Expert", "Master", "Player", "Fan", "Champion", "Legend",
    "Rookie", "Apprentice", "Rising Star", "Prodigy", "Veteran",
)


@dataclass
class ExternalContext:
    """
    Information about the caller from a particular channel (Telegram, Discord).

    The application layer never depends on concrete SDK types; it only sees
    this small context object.
    """

    provider: str
    provider_user_id: str
    display_name: str
    avatar_url: str = ""


def generate_random_nickname(rng: Optional[random.Random] = None) -> str:
    rng = rng or random.Random()
    return f"{rng.choice(_NICKNAME_PREFIXES)} {rng.choice(_NICKNAME_SUFFIXES)}"


def resolve_user(
    external_ctx: ExternalContext,
    identity_repo: IdentityRepository,
    user_repo: UserRepository,
    clock: Callable[[], datetime] = utcnow,
) -> User:
    """
    Return the user behind an external identity, creating the profile on
    first contact.
    """

    existing = identity_repo.find_user_by_external(
        external_ctx.provider,
        external_ctx.provider_user_id,
    )
    if existing is not None:
        return existing

    now = clock()
    nickname = external_ctx.display_name.strip() or generate_random_nickname()
    user = User(
        id=uuid.uuid4().hex,
        nickname=nickname,
        avatar_url=external_ctx.avatar_url,
        stats=UserStats(),
        created_at=now,
        updated_at=now,
    )
    user_repo.add_user(user)
    identity_repo.set_external_identity(
        external_ctx.provider,
        external_ctx.provider_user_id,
        user.id,
    )
    return user_repo.get_user(user.id) or user


def update_profile(
    user_id: str,
    nickname: str,
    user_repo: UserRepository,
    avatar_url: Optional[str] = None,
) -> OperationResult:
    nickname = (nickname or "").strip()
    if not nickname:
        return OperationResult(success=False, error_message="Nickname cannot be empty.")

    user = user_repo.get_user(user_id)
    if user is None:
        return OperationResult(success=False, error_message="User not found.")

    user_repo.update_profile(
        user_id,
        nickname,
        user.avatar_url if avatar_url is None else avatar_url,
    )
    return OperationResult(success=True)
