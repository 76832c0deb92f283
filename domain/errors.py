from __future__ import annotations


class LedgerError(Exception):
    """Base class for every error raised by the room ledger."""


class LedgerValidationError(LedgerError):
    """
    A request was rejected before any state changed.

    The message is meant to be shown to the person who made the request.
    """


class RoomNotFoundError(LedgerValidationError):
    pass


class RoomNotActiveError(LedgerValidationError):
    pass


class NotAMemberError(LedgerValidationError):
    pass


class InsufficientBalanceError(LedgerValidationError):
    def __init__(self, current_balance: float) -> None:
        super().__init__(f"Insufficient balance, current balance: {current_balance}")
        self.current_balance = current_balance


class ZeroSumViolationError(LedgerError):
    """
    Member balances of a room no longer sum to zero after a transfer.

    This is an assertion about the ledger, not a user error: the operation
    is aborted and nothing is written.
    """

    def __init__(self, total: float) -> None:
        super().__init__(f"Transfer aborted: balances sum to {total}, expected 0")
        self.total = total


class StaleRoomError(LedgerError):
    """The room changed between read and write (version mismatch)."""

    def __init__(self, room_id: str, expected_version: int) -> None:
        super().__init__(
            f"Room {room_id} was modified concurrently (expected version {expected_version})"
        )
        self.room_id = room_id
        self.expected_version = expected_version


class SettlementUnavailableError(LedgerError):
    """The privileged settlement path could not be reached."""
