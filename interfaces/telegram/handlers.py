from __future__ import annotations

import logging
from typing import Iterable

import telebot
from telebot.types import InlineKeyboardButton, InlineKeyboardMarkup

from application.identity import ExternalContext, resolve_user, update_profile
from application.results import BroadcastMessage
from domain.errors import LedgerError
from domain.models import RoomStatus, User
from infrastructure.container import Container
from interfaces.common import (
    find_room,
    format_friends,
    format_records,
    format_room,
    format_room_list,
    format_stats,
    format_trend,
    parse_scores,
)
from interfaces.telegram.callback_data import (
    encode_settle_confirmation,
    encode_transfer_choice,
    parse_settle_confirmation,
    parse_transfer_choice,
)

logger = logging.getLogger(__name__)

PROVIDER = "telegram"


def _build_external_context(from_user) -> ExternalContext:
    """Extract a channel-agnostic context object from a Telegram user."""

    name = " ".join(p for p in (from_user.first_name, from_user.last_name) if p)
    return ExternalContext(
        provider=PROVIDER,
        provider_user_id=str(from_user.id),
        display_name=name,
    )


def create_telegram_bot(
    bot_token: str,
    container: Container,
    invite_link_base: str = "/pages/join-room/join-room",
) -> telebot.TeleBot:
    """
    Configure and return a TeleBot instance wired to the application layer.

    This module contains only Telegram-specific concerns: parsing Telegram
    messages/callbacks and mapping them to/from application services.
    """

    bot = telebot.TeleBot(bot_token)
    rooms = container.rooms

    def current_user(from_user) -> User:
        return resolve_user(
            _build_external_context(from_user),
            container.identity_repo,
            container.user_repo,
        )

    def deliver(broadcasts: Iterable[BroadcastMessage]) -> None:
        for broadcast in broadcasts:
            for chat_id in container.identity_repo.get_external_ids_for_user(
                PROVIDER, broadcast.user_id
            ):
                try:
                    bot.send_message(chat_id, broadcast.text)
                except telebot.apihelper.ApiException:
                    logger.warning("Could not deliver message to chat %s", chat_id)

    def args_of(message) -> list[str]:
        return message.text.split()[1:]

    @bot.message_handler(commands=["start", "hello"])
    def handle_start(message):
        user = current_user(message.from_user)
        bot.send_message(
            message.chat.id,
            f"Welcome, {user.nickname}!\n"
            "Use /create to open a room or /join <code> to join one.\n"
            "Type /help to see available commands.",
        )

    @bot.message_handler(commands=["help"])
    def handle_help(message):
        bot.send_message(
            message.chat.id,
            "/create <name>                 - open a new room\n"
            "/join <code>                   - join a room by invite code\n"
            "/rooms                         - list your rooms\n"
            "/room <code>                   - show a room\n"
            "/transfer <code> <amount>      - give points to another member\n"
            "/record <code> name=score ...  - record a round\n"
            "/records <code>                - list recorded rounds\n"
            "/delrecord <code> <id>         - delete a round\n"
            "/leave <code>                  - leave a room\n"
            "/settle <code>                 - end a room for everyone\n"
            "/stats                         - your lifetime stats\n"
            "/trend [days]                  - cumulative score per day\n"
            "/friends                       - people you played with\n"
            "/name <nickname>               - change your nickname\n",
        )

    @bot.message_handler(commands=["create"])
    def handle_create(message):
        name = " ".join(args_of(message))
        user = current_user(message.from_user)
        result = rooms.create_room(user, name)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        bot.send_message(
            message.chat.id,
            format_room(result.room, user.id, invite_link_base),
        )

    @bot.message_handler(commands=["join"])
    def handle_join(message):
        args = args_of(message)
        if not args:
            bot.send_message(message.chat.id, "Please enter an invite code.")
            return
        user = current_user(message.from_user)
        result = rooms.join_room(user, args[0])
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        bot.send_message(message.chat.id, format_room(result.room, user.id))
        deliver(b for b in result.broadcasts if b.user_id != user.id)

    @bot.message_handler(commands=["rooms"])
    def handle_rooms(message):
        user = current_user(message.from_user)
        bot.send_message(message.chat.id, format_room_list(rooms.list_my_rooms(user.id), user.id))

    @bot.message_handler(commands=["room"])
    def handle_room(message):
        args = args_of(message)
        user = current_user(message.from_user)
        room = find_room(rooms, user.id, args[0]) if args else None
        if room is None:
            bot.send_message(message.chat.id, "Room not found.")
            return
        result = rooms.get_room_detail(room.id, user.id)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        bot.send_message(message.chat.id, format_room(result.room, user.id, invite_link_base))

    @bot.message_handler(commands=["transfer"])
    def handle_transfer(message):
        args = args_of(message)
        if len(args) < 2:
            bot.send_message(message.chat.id, "Usage: /transfer <code> <amount>")
            return
        try:
            amount = int(args[1])
        except ValueError:
            bot.send_message(message.chat.id, "Amount must be a number.")
            return

        user = current_user(message.from_user)
        room = find_room(rooms, user.id, args[0])
        if room is None or room.status != RoomStatus.ACTIVE:
            bot.send_message(message.chat.id, "Room does not exist or has already ended.")
            return

        markup = InlineKeyboardMarkup(row_width=2)
        for index, member in enumerate(room.members):
            if member.openid == user.id or member.has_left:
                continue
            markup.add(
                InlineKeyboardButton(
                    member.nickname,
                    callback_data=encode_transfer_choice(room.invite_code, index, amount),
                )
            )
        if not markup.keyboard:
            bot.send_message(message.chat.id, "No other members to transfer to.")
            return
        bot.send_message(message.chat.id, f"Transfer {amount} to whom?", reply_markup=markup)

    @bot.callback_query_handler(func=lambda call: call.data.startswith("tr:"))
    def handle_transfer_choice(call):
        try:
            invite_code, member_index, amount = parse_transfer_choice(call.data)
        except ValueError:
            bot.answer_callback_query(call.id, "Invalid selection.")
            return

        try:
            user = current_user(call.from_user)
            room = find_room(rooms, user.id, invite_code)
            if room is None or not 0 <= member_index < len(room.members):
                bot.answer_callback_query(call.id, "Room or member not found.")
                return
            target = room.members[member_index]
            try:
                result = rooms.transfer(room.id, user.id, target.openid, amount)
            except LedgerError as exc:
                logger.exception("Transfer in room %s failed", room.id)
                bot.answer_callback_query(call.id, str(exc))
                return
            if not result.success:
                bot.answer_callback_query(call.id, result.error_message)
                return
            bot.answer_callback_query(call.id, "Done.")
            deliver(result.broadcasts)
        finally:
            bot.delete_message(call.message.chat.id, call.message.id)

    @bot.message_handler(commands=["record"])
    def handle_record(message):
        args = args_of(message)
        if len(args) < 2:
            bot.send_message(message.chat.id, "Usage: /record <code> name=score ...")
            return
        user = current_user(message.from_user)
        room = find_room(rooms, user.id, args[0])
        if room is None:
            bot.send_message(message.chat.id, "Room not found.")
            return
        try:
            scores = parse_scores(room, args[1:])
        except ValueError as exc:
            bot.send_message(message.chat.id, str(exc))
            return
        result = container.records.add_record(room.id, scores)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        deliver(result.broadcasts)

    @bot.message_handler(commands=["records"])
    def handle_records(message):
        args = args_of(message)
        user = current_user(message.from_user)
        room = find_room(rooms, user.id, args[0]) if args else None
        if room is None:
            bot.send_message(message.chat.id, "Room not found.")
            return
        bot.send_message(message.chat.id, format_records(container.records.list_records(room.id)))

    @bot.message_handler(commands=["delrecord"])
    def handle_delete_record(message):
        args = args_of(message)
        if len(args) < 2:
            bot.send_message(message.chat.id, "Usage: /delrecord <code> <id>")
            return
        user = current_user(message.from_user)
        room = find_room(rooms, user.id, args[0])
        if room is None:
            bot.send_message(message.chat.id, "Room not found.")
            return
        matches = [
            r for r in container.records.list_records(room.id) if r.id.startswith(args[1].lower())
        ]
        if len(matches) != 1:
            bot.send_message(message.chat.id, "Record not found.")
            return
        result = container.records.delete_record(matches[0].id)
        bot.send_message(
            message.chat.id,
            f"Round {matches[0].round_number} deleted." if result.success else result.error_message,
        )

    @bot.message_handler(commands=["leave"])
    def handle_leave(message):
        args = args_of(message)
        user = current_user(message.from_user)
        room = find_room(rooms, user.id, args[0]) if args else None
        if room is None:
            bot.send_message(message.chat.id, "Room not found.")
            return
        result = rooms.leave_room(room.id, user.id)
        if not result.success:
            bot.send_message(message.chat.id, result.error_message)
            return
        deliver(result.broadcasts)

    @bot.message_handler(commands=["settle"])
    def handle_settle(message):
        args = args_of(message)
        user = current_user(message.from_user)
        room = find_room(rooms, user.id, args[0]) if args else None
        if room is None:
            bot.send_message(message.chat.id, "Room not found.")
            return

        markup = InlineKeyboardMarkup(row_width=2)
        markup.add(
            InlineKeyboardButton(
                "yes", callback_data=encode_settle_confirmation(room.invite_code, True)
            ),
            InlineKeyboardButton(
                "no", callback_data=encode_settle_confirmation(room.invite_code, False)
            ),
        )
        bot.send_message(
            message.chat.id,
            f"End {room.room_name} for everyone? Current balances become final.",
            reply_markup=markup,
        )

    @bot.callback_query_handler(func=lambda call: call.data.startswith("settle:"))
    def handle_settle_confirmation(call):
        try:
            accepted, invite_code = parse_settle_confirmation(call.data)
        except ValueError:
            bot.answer_callback_query(call.id, "Invalid confirmation.")
            return

        try:
            if not accepted:
                return
            user = current_user(call.from_user)
            room = find_room(rooms, user.id, invite_code)
            if room is None:
                bot.send_message(call.message.chat.id, "Room not found.")
                return
            result = rooms.settle_room(room.id, user.id)
            if not result.success:
                bot.send_message(call.message.chat.id, result.error_message)
                return
            deliver(result.broadcasts)
        finally:
            bot.delete_message(call.message.chat.id, call.message.id)

    @bot.message_handler(commands=["stats"])
    def handle_stats(message):
        user = current_user(message.from_user)
        bot.send_message(message.chat.id, format_stats(container.stats.overall_stats(user.id)))

    @bot.message_handler(commands=["trend"])
    def handle_trend(message):
        args = args_of(message)
        try:
            days = int(args[0]) if args else 7
        except ValueError:
            bot.send_message(message.chat.id, "Days must be a number.")
            return
        if not 1 <= days <= 90:
            bot.send_message(message.chat.id, "Days must be between 1 and 90.")
            return
        user = current_user(message.from_user)
        bot.send_message(message.chat.id, format_trend(container.stats.trend(user.id, days)))

    @bot.message_handler(commands=["friends"])
    def handle_friends(message):
        user = current_user(message.from_user)
        bot.send_message(message.chat.id, format_friends(container.stats.list_friends(user.id)))

    @bot.message_handler(commands=["name"])
    def handle_name(message):
        user = current_user(message.from_user)
        result = update_profile(user.id, " ".join(args_of(message)), container.user_repo)
        bot.send_message(
            message.chat.id,
            "Nickname updated." if result.success else result.error_message,
        )

    return bot
