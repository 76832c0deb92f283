import unittest
from datetime import date

from domain.models import Member, MemberRole, MemberStatus, Room, RoomStatus
from interfaces.common import format_room, format_trend, parse_scores
from interfaces.telegram.callback_data import (
    encode_settle_confirmation,
    encode_transfer_choice,
    parse_settle_confirmation,
    parse_transfer_choice,
)


def make_room(status=RoomStatus.ACTIVE):
    return Room(
        id="0f3c9a",
        owner_id="u1",
        room_name="Friday night",
        invite_code="ABC123",
        status=status,
        members=[
            Member("u1", "Alice", role=MemberRole.CREATOR, current_balance=-20),
            Member("u2", "Bob", current_balance=20, member_status=MemberStatus.LEFT),
        ],
    )


class ParseScoresTests(unittest.TestCase):
    def test_parses_names_case_insensitively_with_notes(self):
        entries = parse_scores(make_room(), ["alice=12", "BOB=-12:self draw", "Alice=0.5"])

        self.assertEqual([e.openid for e in entries], ["u1", "u2", "u1"])
        self.assertEqual(entries[0].score_change, 12)
        self.assertIsInstance(entries[0].score_change, int)
        self.assertEqual(entries[1].note, "self draw")
        self.assertEqual(entries[2].score_change, 0.5)

    def test_rejects_bad_tokens(self):
        for tokens in (["alice"], ["carol=3"], ["bob=lots"]):
            with self.subTest(tokens=tokens):
                with self.assertRaises(ValueError):
                    parse_scores(make_room(), tokens)


class FormattingTests(unittest.TestCase):
    def test_room_shows_balances_and_invite_link_while_active(self):
        text = format_room(make_room(), viewer_id="u1", link_base="/join")

        self.assertIn("Friday night [ABC123] - active", text)
        self.assertIn("Bob: +20 (left)", text)
        self.assertIn("Alice: -20 (you)", text)
        self.assertIn("Invite: /join?code=ABC123", text)
        self.assertNotIn("Invite", format_room(make_room(RoomStatus.SETTLED), link_base="/join"))

    def test_trend_lines(self):
        text = format_trend([(date(2024, 5, 1), 0), (date(2024, 5, 2), 25)])
        self.assertEqual(text, "5/1: +0\n5/2: +25")


class CallbackDataTests(unittest.TestCase):
    def test_transfer_choice_fits_telegram_limit(self):
        data = encode_transfer_choice("ABC123", 11, 1000)
        self.assertLessEqual(len(data.encode()), 64)
        self.assertEqual(parse_transfer_choice(data), ("ABC123", 11, 1000))

    def test_settle_confirmation(self):
        self.assertEqual(
            parse_settle_confirmation(encode_settle_confirmation("ABC123", True)), (True, "ABC123")
        )
        self.assertEqual(
            parse_settle_confirmation(encode_settle_confirmation("ABC123", False)),
            (False, "ABC123"),
        )

    def test_invalid_payloads(self):
        with self.assertRaises(ValueError):
            parse_transfer_choice("tr:ABC123:x:5")
        with self.assertRaises(ValueError):
            parse_transfer_choice("settle:yes:ABC123")
        with self.assertRaises(ValueError):
            parse_settle_confirmation("settle:maybe:ABC123")


if __name__ == "__main__":
    unittest.main()
