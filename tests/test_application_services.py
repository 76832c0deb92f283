import random
import unittest
from datetime import timedelta

from application.identity import ExternalContext, resolve_user
from application.rooms import RoomService
from application.settlement import LocalSettlementGateway, SettlementService
from domain.errors import StaleRoomError, ZeroSumViolationError
from domain.models import MemberRole, MemberStatus, RoomStatus
from tests.fakes import (
    FixedClock,
    InMemoryFriendRepository,
    InMemoryIdentityRepository,
    InMemoryRoomRepository,
    InMemoryUserRepository,
    RecordingSettlementGateway,
    UnavailableSettlementGateway,
)


class RoomServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = FixedClock()
        self.user_repo = InMemoryUserRepository()
        self.identity_repo = InMemoryIdentityRepository(self.user_repo)
        self.room_repo = InMemoryRoomRepository()
        self.friend_repo = InMemoryFriendRepository()
        self.settlement = SettlementService(
            self.room_repo, self.user_repo, self.friend_repo, clock=self.clock
        )
        self.gateway = RecordingSettlementGateway(LocalSettlementGateway(self.settlement))
        self.rooms = self.make_service(self.gateway)

        self.alice = self.make_user("1", "Alice")
        self.bob = self.make_user("2", "Bob")

    def make_service(self, gateway) -> RoomService:
        return RoomService(
            self.room_repo,
            gateway,
            clock=self.clock,
            rng=random.Random(7),
        )

    def make_user(self, provider_user_id: str, name: str):
        return resolve_user(
            ExternalContext(
                provider="telegram",
                provider_user_id=provider_user_id,
                display_name=name,
            ),
            self.identity_repo,
            self.user_repo,
            clock=self.clock,
        )

    def make_room_with_bob(self):
        room = self.rooms.create_room(self.alice, "Friday night").room
        self.rooms.join_room(self.bob, room.invite_code)
        return room


class CreateAndJoinTests(RoomServiceTestCase):
    def test_create_room_has_single_creator_at_zero(self):
        result = self.rooms.create_room(self.alice, "  Friday night  ")

        self.assertTrue(result.success)
        room = self.room_repo.get_room(result.room.id)
        self.assertEqual(room.room_name, "Friday night")
        self.assertEqual(room.status, RoomStatus.ACTIVE)
        self.assertEqual(room.owner_id, self.alice.id)
        self.assertEqual(len(room.members), 1)
        self.assertEqual(room.members[0].role, MemberRole.CREATOR)
        self.assertEqual(room.members[0].current_balance, 0)
        self.assertEqual(room.balance_history, [])
        self.assertEqual(room.total_rounds, 0)
        self.assertEqual(len(room.invite_code), 6)

    def test_create_room_rejects_empty_name(self):
        result = self.rooms.create_room(self.alice, "   ")
        self.assertFalse(result.success)
        self.assertEqual(self.room_repo.documents, {})

    def test_create_room_with_initial_members(self):
        result = self.rooms.create_room(self.alice, "Table", initial_members=[self.bob, self.alice])
        roles = [(m.openid, m.role) for m in result.room.members]
        self.assertEqual(
            roles, [(self.alice.id, MemberRole.CREATOR), (self.bob.id, MemberRole.MEMBER)]
        )

    def test_join_adds_zero_balance_member_and_broadcasts(self):
        room = self.rooms.create_room(self.alice, "Friday night").room

        result = self.rooms.join_room(self.bob, room.invite_code.lower())

        self.assertTrue(result.success)
        bob = result.room.find_member(self.bob.id)
        self.assertEqual(bob.role, MemberRole.MEMBER)
        self.assertEqual(bob.current_balance, 0)
        self.assertEqual({b.user_id for b in result.broadcasts}, {self.alice.id, self.bob.id})

    def test_join_twice_is_a_no_op(self):
        room = self.make_room_with_bob()
        saves = self.room_repo.saves

        result = self.rooms.join_room(self.bob, room.invite_code)

        self.assertTrue(result.success)
        self.assertEqual(len(result.room.members), 2)
        self.assertEqual(self.room_repo.saves, saves)

    def test_join_unknown_or_settled_room_fails(self):
        self.assertFalse(self.rooms.join_room(self.bob, "ZZZZZZ").success)

        room = self.rooms.create_room(self.alice, "Done").room
        self.rooms.settle_room(room.id, self.alice.id)
        self.assertFalse(self.rooms.join_room(self.bob, room.invite_code).success)


class TransferTests(RoomServiceTestCase):
    def test_example_scenario(self):
        room = self.make_room_with_bob()

        first = self.rooms.transfer(room.id, self.alice.id, self.bob.id, 50)
        self.assertTrue(first.success)
        stored = self.room_repo.get_room(room.id)
        balances = {m.openid: m.current_balance for m in stored.members}
        self.assertEqual(balances, {self.alice.id: -50, self.bob.id: 50})
        self.assertEqual(len(stored.balance_history), 1)
        self.assertEqual(stored.balance_history[0].amount, 50)
        self.assertIn("Alice transfers 50 to Bob", first.broadcasts[0].text)

        second = self.rooms.transfer(room.id, self.bob.id, self.alice.id, 50)
        self.assertTrue(second.success)
        stored = self.room_repo.get_room(room.id)
        self.assertEqual([m.current_balance for m in stored.members], [0, 0])
        self.assertEqual(len(stored.balance_history), 2)

    def test_validation_errors_do_not_write(self):
        room = self.make_room_with_bob()
        saves = self.room_repo.saves

        for args in (
            (self.alice.id, self.bob.id, 0),
            (self.alice.id, self.alice.id, 5),
            (self.alice.id, "ghost", 5),
            (self.alice.id, self.bob.id, 1001),
        ):
            with self.subTest(args=args):
                result = self.rooms.transfer(room.id, *args)
                self.assertFalse(result.success)
                self.assertTrue(result.error_message)

        self.assertEqual(self.room_repo.saves, saves)

    def test_transfer_in_unknown_room(self):
        result = self.rooms.transfer("missing", self.alice.id, self.bob.id, 5)
        self.assertFalse(result.success)

    def test_zero_sum_violation_propagates_and_nothing_is_written(self):
        room = self.make_room_with_bob()
        doc = self.room_repo.documents[room.id]
        doc["members"][0]["currentBalance"] = 7
        saves = self.room_repo.saves

        with self.assertRaises(ZeroSumViolationError):
            self.rooms.transfer(room.id, self.alice.id, self.bob.id, 5)
        self.assertEqual(self.room_repo.saves, saves)
        self.assertEqual(self.room_repo.get_room(room.id).balance_history, [])

    def test_concurrent_write_is_retried_from_fresh_state(self):
        room = self.make_room_with_bob()
        original_get = self.room_repo.get_room
        state = {"raced": False}

        def racing_get(room_id):
            current = original_get(room_id)
            if not state["raced"]:
                # Someone else transfers between our read and our write.
                state["raced"] = True
                self.rooms.transfer(room_id, self.bob.id, self.alice.id, 30)
            return current

        self.room_repo.get_room = racing_get
        result = self.rooms.transfer(room.id, self.alice.id, self.bob.id, 10)
        self.room_repo.get_room = original_get

        self.assertTrue(result.success)
        stored = self.room_repo.get_room(room.id)
        balances = {m.openid: m.current_balance for m in stored.members}
        self.assertEqual(balances, {self.alice.id: 20, self.bob.id: -20})
        self.assertEqual(len(stored.balance_history), 2)

    def test_gives_up_after_retries(self):
        room = self.make_room_with_bob()
        original_save = self.room_repo.save_room

        def always_stale(room_obj):
            raise StaleRoomError(room_obj.id, room_obj.version)

        self.room_repo.save_room = always_stale
        result = self.rooms.transfer(room.id, self.alice.id, self.bob.id, 10)
        self.room_repo.save_room = original_save

        self.assertFalse(result.success)
        self.assertIn("modified concurrently", result.error_message)


class LeaveAndSettleTests(RoomServiceTestCase):
    def test_leave_keeps_balance(self):
        room = self.make_room_with_bob()
        self.rooms.transfer(room.id, self.alice.id, self.bob.id, 40)

        result = self.rooms.leave_room(room.id, self.bob.id)

        self.assertTrue(result.success)
        bob = result.room.find_member(self.bob.id)
        self.assertEqual(bob.member_status, MemberStatus.LEFT)
        self.assertEqual(bob.current_balance, 40)
        self.assertEqual(result.room.status, RoomStatus.ACTIVE)

    def test_last_leave_triggers_settlement(self):
        room = self.make_room_with_bob()
        self.rooms.transfer(room.id, self.alice.id, self.bob.id, 40)

        self.rooms.leave_room(room.id, self.alice.id)
        self.assertEqual(self.gateway.requests, [])
        self.assertEqual(self.room_repo.get_room(room.id).status, RoomStatus.ACTIVE)

        result = self.rooms.leave_room(room.id, self.bob.id)

        self.assertEqual(len(self.gateway.requests), 1)
        self.assertEqual(result.room.status, RoomStatus.SETTLED)
        self.assertEqual(self.user_repo.get_user(self.bob.id).stats.total_wins, 1)
        self.assertEqual(self.user_repo.get_user(self.alice.id).stats.total_losses, 1)

    def test_leave_rejections(self):
        room = self.make_room_with_bob()
        stranger = self.make_user("3", "Carol")
        self.assertFalse(self.rooms.leave_room(room.id, stranger.id).success)
        self.assertFalse(self.rooms.leave_room("missing", self.bob.id).success)

        self.rooms.settle_room(room.id, self.alice.id)
        self.assertFalse(self.rooms.leave_room(room.id, self.bob.id).success)

    def test_settle_room_updates_stats_and_is_idempotent(self):
        room = self.make_room_with_bob()
        self.rooms.transfer(room.id, self.alice.id, self.bob.id, 25)

        result = self.rooms.settle_room(room.id, self.alice.id)

        self.assertTrue(result.success)
        self.assertEqual(result.room.status, RoomStatus.SETTLED)
        self.assertTrue(all(m.has_left for m in result.room.members))
        self.assertIn("has been settled", result.broadcasts[0].text)
        stats = self.user_repo.get_user(self.bob.id).stats
        self.assertEqual((stats.total_games, stats.total_score_change), (1, 25))

        again = self.rooms.settle_room(room.id, self.bob.id)
        self.assertTrue(again.success)
        self.assertEqual(self.user_repo.get_user(self.bob.id).stats.total_games, 1)

    def test_settle_requires_membership(self):
        room = self.make_room_with_bob()
        stranger = self.make_user("3", "Carol")
        result = self.rooms.settle_room(room.id, stranger.id)
        self.assertFalse(result.success)
        self.assertEqual(self.room_repo.get_room(room.id).status, RoomStatus.ACTIVE)

    def test_degraded_settlement_when_privileged_path_is_down(self):
        room = self.make_room_with_bob()
        self.rooms.transfer(room.id, self.alice.id, self.bob.id, 25)
        degraded = self.make_service(UnavailableSettlementGateway())

        with self.assertLogs("application.rooms", level="WARNING"):
            result = degraded.settle_room(room.id, self.alice.id)

        self.assertTrue(result.success)
        stored = self.room_repo.get_room(room.id)
        self.assertEqual(stored.status, RoomStatus.SETTLED)
        self.assertEqual(stored.settled_at, self.clock.now)
        # Stats are not touched on this path.
        self.assertEqual(self.user_repo.get_user(self.bob.id).stats.total_games, 0)

    def test_degraded_settlement_still_checks_membership(self):
        room = self.make_room_with_bob()
        stranger = self.make_user("3", "Carol")
        degraded = self.make_service(UnavailableSettlementGateway())
        self.assertFalse(degraded.settle_room(room.id, stranger.id).success)
        self.assertEqual(self.room_repo.get_room(room.id).status, RoomStatus.ACTIVE)

    def test_last_leave_falls_back_when_settlement_unavailable(self):
        gateway = UnavailableSettlementGateway()
        degraded = self.make_service(gateway)
        room = self.make_room_with_bob()

        degraded.leave_room(room.id, self.alice.id)
        result = degraded.leave_room(room.id, self.bob.id)

        self.assertEqual(gateway.calls, 1)
        self.assertEqual(result.room.status, RoomStatus.SETTLED)

    def test_last_leave_is_kept_when_settling_keeps_conflicting(self):
        degraded = self.make_service(UnavailableSettlementGateway())
        room = self.make_room_with_bob()
        degraded.leave_room(room.id, self.alice.id)

        original_save = self.room_repo.save_room
        calls = {"n": 0}

        def stale_after_first(room_obj):
            calls["n"] += 1
            if calls["n"] == 1:
                return original_save(room_obj)
            raise StaleRoomError(room_obj.id, room_obj.version)

        self.room_repo.save_room = stale_after_first
        with self.assertLogs("application.rooms", level="ERROR"):
            result = degraded.leave_room(room.id, self.bob.id)
        self.room_repo.save_room = original_save

        self.assertTrue(result.success)
        stored = self.room_repo.get_room(room.id)
        self.assertTrue(stored.find_member(self.bob.id).has_left)
        self.assertEqual(stored.status, RoomStatus.ACTIVE)


class IdleSweepTests(RoomServiceTestCase):
    def test_detail_of_idle_room_settles_it(self):
        room = self.make_room_with_bob()
        self.rooms.transfer(room.id, self.alice.id, self.bob.id, 10)

        self.clock.advance(hours=2, minutes=59)
        self.assertEqual(
            self.rooms.get_room_detail(room.id, self.alice.id).room.status, RoomStatus.ACTIVE
        )

        self.clock.advance(minutes=2)
        result = self.rooms.get_room_detail(room.id, self.alice.id)
        self.assertEqual(result.room.status, RoomStatus.SETTLED)
        self.assertEqual(len(self.gateway.requests), 1)

    def test_last_transfer_resets_idle_timer(self):
        room = self.make_room_with_bob()
        self.clock.advance(hours=2)
        self.rooms.transfer(room.id, self.alice.id, self.bob.id, 10)
        self.clock.advance(hours=2)
        self.assertFalse(self.rooms.needs_settlement(self.room_repo.get_room(room.id)))

    def test_room_with_everyone_gone_is_settled_on_read(self):
        room = self.make_room_with_bob()
        doc = self.room_repo.documents[room.id]
        for member in doc["members"]:
            member["memberStatus"] = "left"

        result = self.rooms.get_room_detail(room.id, self.alice.id)
        self.assertEqual(result.room.status, RoomStatus.SETTLED)

    def test_list_sweeps_stale_rooms(self):
        stale = self.make_room_with_bob()
        self.clock.advance(hours=4)
        fresh = self.rooms.create_room(self.alice, "Later").room

        active = self.rooms.list_my_rooms(self.alice.id, RoomStatus.ACTIVE)
        settled = self.rooms.list_my_rooms(self.alice.id, RoomStatus.SETTLED)
        everything = self.rooms.list_my_rooms(self.alice.id)

        self.assertEqual([r.id for r in active], [fresh.id])
        self.assertEqual([r.id for r in settled], [stale.id])
        self.assertEqual([r.id for r in everything], [fresh.id, stale.id])

    def test_idle_threshold_is_configurable(self):
        rooms = RoomService(
            self.room_repo,
            self.gateway,
            clock=self.clock,
            idle_threshold=timedelta(minutes=30),
        )
        room = self.make_room_with_bob()
        self.clock.advance(minutes=31)
        self.assertTrue(rooms.needs_settlement(self.room_repo.get_room(room.id)))

    def test_idle_room_is_flagged_settled_when_settlement_unavailable(self):
        gateway = UnavailableSettlementGateway()
        degraded = self.make_service(gateway)
        room = self.make_room_with_bob()
        self.rooms.transfer(room.id, self.alice.id, self.bob.id, 10)
        self.clock.advance(hours=4)

        with self.assertLogs("application.rooms", level="WARNING"):
            result = degraded.get_room_detail(room.id, self.alice.id)

        self.assertEqual(gateway.calls, 1)
        self.assertEqual(result.room.status, RoomStatus.SETTLED)
        self.assertEqual(result.room.settled_at, self.clock.now)
        self.assertEqual(self.user_repo.get_user(self.bob.id).stats.total_games, 0)
        self.assertEqual(self.friend_repo.friends, {})

    def test_idle_room_read_by_outsider_is_flagged_settled(self):
        room = self.make_room_with_bob()
        stranger = self.make_user("3", "Carol")
        self.clock.advance(hours=4)

        with self.assertLogs("application.rooms", level="WARNING") as logs:
            result = self.rooms.get_room_detail(room.id, stranger.id)

        self.assertTrue(any("refused" in line for line in logs.output))
        self.assertEqual(len(self.gateway.requests), 1)
        self.assertEqual(result.room.status, RoomStatus.SETTLED)
        self.assertEqual(result.room.settled_at, self.clock.now)
        for user in (self.alice, self.bob):
            self.assertEqual(self.user_repo.get_user(user.id).stats.total_games, 0)
        self.assertEqual(self.friend_repo.friends, {})


if __name__ == "__main__":
    unittest.main()
