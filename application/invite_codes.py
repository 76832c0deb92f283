from __future__ import annotations

import logging
import random
import string
from datetime import datetime
from typing import Callable, Optional
from urllib.parse import urlencode

from domain.models import utcnow
from domain.repositories import RoomRepository

logger = logging.getLogger(__name__)

INVITE_ALPHABET = string.ascii_uppercase + string.digits
INVITE_CODE_LENGTH = 6
MAX_ATTEMPTS = 5

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def random_code(rng: random.Random) -> str:
    return "".join(rng.choice(INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def fallback_code(rng: random.Random, now: datetime) -> str:
    """Four random symbols followed by the last two base-36 digits of the time."""

    millis = int(now.timestamp() * 1000)
    return random_code(rng)[:4] + _to_base36(millis)[-2:].upper()


def generate_invite_code(
    room_repo: RoomRepository,
    rng: Optional[random.Random] = None,
    clock: Callable[[], datetime] = utcnow,
) -> str:
    """
    Draw a code that no *active* room is using.

    Settled rooms keep their codes, so a new code may repeat one of theirs.
    After `MAX_ATTEMPTS` collisions a weaker, time-based code is returned
    without checking.
    """

    rng = rng or random.SystemRandom()
    for attempt in range(1, MAX_ATTEMPTS + 1):
        code = random_code(rng)
        if room_repo.count_active_with_invite_code(code) == 0:
            logger.debug("Invite code %s generated on attempt %d", code, attempt)
            return code
        logger.warning("Invite code %s already in use (attempt %d)", code, attempt)

    code = fallback_code(rng, clock())
    logger.warning("Falling back to time-based invite code %s", code)
    return code


def normalize_invite_code(raw: str) -> str:
    return (raw or "").strip().upper()


def build_invite_link(invite_code: str, base: str = "/pages/join-room/join-room") -> str:
    return f"{base}?{urlencode({'code': invite_code})}"
