import random
import unittest
from datetime import datetime, timezone

from application.invite_codes import (
    INVITE_ALPHABET,
    MAX_ATTEMPTS,
    build_invite_link,
    fallback_code,
    generate_invite_code,
    normalize_invite_code,
    random_code,
)
from domain.models import Room, RoomStatus
from tests.fakes import InMemoryRoomRepository

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class InviteCodeTests(unittest.TestCase):
    def setUp(self) -> None:
        self.room_repo = InMemoryRoomRepository()

    def add_room(self, room_id, code, status=RoomStatus.ACTIVE):
        self.room_repo.add_room(
            Room(id=room_id, owner_id="u1", room_name="r", invite_code=code, status=status)
        )

    def test_code_shape(self):
        code = generate_invite_code(self.room_repo)
        self.assertEqual(len(code), 6)
        self.assertTrue(set(code) <= set(INVITE_ALPHABET))

    def test_codes_of_settled_rooms_may_be_reused(self):
        taken = random_code(random.Random(1))
        self.add_room("old", taken, status=RoomStatus.SETTLED)

        self.assertEqual(generate_invite_code(self.room_repo, random.Random(1)), taken)

    def test_collision_with_active_room_draws_again(self):
        taken = random_code(random.Random(1))
        self.add_room("live", taken)

        code = generate_invite_code(self.room_repo, random.Random(1))
        self.assertNotEqual(code, taken)
        self.assertEqual(len(code), 6)

    def test_falls_back_after_repeated_collisions(self):
        rng = random.Random(3)
        for index in range(MAX_ATTEMPTS):
            self.add_room(f"live-{index}", random_code(rng))
        expected = fallback_code(rng, NOW)

        with self.assertLogs("application.invite_codes", level="WARNING"):
            code = generate_invite_code(self.room_repo, random.Random(3), clock=lambda: NOW)

        self.assertEqual(code, expected)
        self.assertEqual(len(code), 6)

    def test_fallback_ends_with_time_digits(self):
        # 1714564800000 ms in base 36 ends with "o0".
        code = fallback_code(random.Random(0), NOW)
        self.assertEqual(code[-2:], "O0")

    def test_normalize_and_link(self):
        self.assertEqual(normalize_invite_code("  ab12cd "), "AB12CD")
        self.assertEqual(normalize_invite_code(None), "")
        self.assertEqual(
            build_invite_link("AB12CD"), "/pages/join-room/join-room?code=AB12CD"
        )
        self.assertEqual(
            build_invite_link("AB12CD", base="https://t.me/bot"), "https://t.me/bot?code=AB12CD"
        )


if __name__ == "__main__":
    unittest.main()
