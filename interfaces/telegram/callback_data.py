from __future__ import annotations


def encode_transfer_choice(invite_code: str, member_index: int, amount: int) -> str:
    """
    Encode a "choose recipient" callback.

    Format: tr:{invite_code}:{member_index}:{amount}

    Internal IDs would overflow Telegram's 64-byte callback limit, so the
    recipient is given by position in the room's member list.
    """

    return f"tr:{invite_code}:{member_index}:{amount}"


def parse_transfer_choice(data: str) -> tuple[str, int, int]:
    parts = data.split(":")
    if len(parts) != 4 or parts[0] != "tr":
        raise ValueError(f"Invalid transfer callback data: {data}")

    invite_code = parts[1]
    member_index = int(parts[2])
    amount = int(parts[3])
    return invite_code, member_index, amount


def encode_settle_confirmation(invite_code: str, accepted: bool) -> str:
    """
    Encode a settle confirmation/decline callback.

    Format:
      settle:yes:{invite_code}
      settle:no:{invite_code}
    """

    answer = "yes" if accepted else "no"
    return f"settle:{answer}:{invite_code}"


def parse_settle_confirmation(data: str) -> tuple[bool, str]:
    parts = data.split(":")
    if len(parts) != 3 or parts[0] != "settle" or parts[1] not in ("yes", "no"):
        raise ValueError(f"Invalid settle confirmation callback data: {data}")

    return parts[1] == "yes", parts[2]
