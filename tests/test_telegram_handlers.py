import random
import unittest
from types import SimpleNamespace
from unittest import mock

from application.identity import ExternalContext, resolve_user
from application.records import RecordService
from application.rooms import RoomService
from application.settlement import LocalSettlementGateway, SettlementService
from application.stats import StatsService
from domain.models import ScoreEntry
from infrastructure.container import Container
from interfaces.telegram.callback_data import encode_transfer_choice
from interfaces.telegram.handlers import create_telegram_bot
from tests.fakes import (
    FixedClock,
    InMemoryFriendRepository,
    InMemoryGameRecordRepository,
    InMemoryIdentityRepository,
    InMemoryRoomRepository,
    InMemoryUserRepository,
)


def telegram_user(user_id, first_name):
    return SimpleNamespace(id=user_id, first_name=first_name, last_name=None)


class TransferCallbackTests(unittest.TestCase):
    def setUp(self) -> None:
        clock = FixedClock()
        user_repo = InMemoryUserRepository()
        identity_repo = InMemoryIdentityRepository(user_repo)
        room_repo = InMemoryRoomRepository()
        record_repo = InMemoryGameRecordRepository()
        friend_repo = InMemoryFriendRepository()
        settlement = SettlementService(room_repo, user_repo, friend_repo, clock=clock)
        self.container = Container(
            user_repo=user_repo,
            identity_repo=identity_repo,
            room_repo=room_repo,
            record_repo=record_repo,
            friend_repo=friend_repo,
            rooms=RoomService(
                room_repo, LocalSettlementGateway(settlement), clock=clock, rng=random.Random(2)
            ),
            records=RecordService(room_repo, record_repo, clock=clock),
            stats=StatsService(room_repo, user_repo, friend_repo, clock=clock),
            settlement=settlement,
        )

        self.alice = self.resolve(telegram_user(1, "Alice"))
        self.bob = self.resolve(telegram_user(2, "Bob"))
        self.room = self.container.rooms.create_room(self.alice, "Friday night").room
        self.container.rooms.join_room(self.bob, self.room.invite_code)

        self.bot = create_telegram_bot("123456:TEST", self.container)
        for name in ("answer_callback_query", "delete_message", "send_message"):
            patcher = mock.patch.object(self.bot, name)
            setattr(self, name, patcher.start())
            self.addCleanup(patcher.stop)

    def resolve(self, from_user):
        return resolve_user(
            ExternalContext("telegram", str(from_user.id), from_user.first_name),
            self.container.identity_repo,
            self.container.user_repo,
        )

    def press_transfer_button(self, member_index, amount):
        handler = next(
            h["function"]
            for h in self.bot.callback_query_handlers
            if h["function"].__name__ == "handle_transfer_choice"
        )
        call = SimpleNamespace(
            id="cb-1",
            data=encode_transfer_choice(self.room.invite_code, member_index, amount),
            from_user=telegram_user(1, "Alice"),
            message=SimpleNamespace(chat=SimpleNamespace(id=1), id=9),
        )
        handler(call)

    def test_transfer_is_answered_and_broadcast(self):
        self.press_transfer_button(1, 5)

        self.answer_callback_query.assert_called_once_with("cb-1", "Done.")
        self.delete_message.assert_called_once_with(1, 9)
        chats = {args[0] for args, _ in self.send_message.call_args_list}
        self.assertEqual(chats, {"1", "2"})

    def test_broken_ledger_is_reported_to_the_user(self):
        # An unbalanced round is allowed, but leaves the room off zero.
        self.container.records.add_record(
            self.room.id,
            [ScoreEntry(self.alice.id, "Alice", 10), ScoreEntry(self.bob.id, "Bob", -5)],
        )

        with self.assertLogs("interfaces.telegram.handlers", level="ERROR"):
            self.press_transfer_button(1, 5)

        self.answer_callback_query.assert_called_once()
        call_id, text = self.answer_callback_query.call_args[0]
        self.assertEqual(call_id, "cb-1")
        self.assertIn("sum", text)
        self.delete_message.assert_called_once_with(1, 9)
        self.send_message.assert_not_called()
        stored = self.container.room_repo.get_room(self.room.id)
        self.assertEqual(stored.balance_history, [])


if __name__ == "__main__":
    unittest.main()
