from __future__ import annotations

import logging

import discord
from discord.ext import commands

from application.identity import ExternalContext, resolve_user, update_profile
from application.results import OperationResult
from domain.models import User
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

logger = logging.getLogger(__name__)

PROVIDER = "discord"


def _build_external_context(user: discord.abc.User) -> ExternalContext:
    """Create an `ExternalContext` from a Discord user."""

    return ExternalContext(
        provider=PROVIDER,
        provider_user_id=str(user.id),
        display_name=user.display_name or user.name,
        avatar_url=str(user.display_avatar.url) if user.display_avatar else "",
    )


def create_discord_bot(
    container: Container,
    invite_link_base: str = "/pages/join-room/join-room",
) -> commands.Bot:
    """
    Configure and return a Discord bot with behaviour analogous to the
    Telegram interface. Broadcasts are posted in the channel the command
    came from.
    """

    intents = discord.Intents.default()
    intents.message_content = True
    intents.guilds = True
    intents.members = True

    # Disable the default help command so we can provide our own `!help`.
    bot = commands.Bot(command_prefix="!", intents=intents, help_command=None)
    rooms = container.rooms

    def current_user(author: discord.abc.User) -> User:
        return resolve_user(
            _build_external_context(author),
            container.identity_repo,
            container.user_repo,
        )

    async def reply(ctx: commands.Context, result: OperationResult, fallback: str) -> None:
        if not result.success:
            await ctx.send(result.error_message or "Something went wrong.")
            return
        # Everyone in the room is expected to be in the channel; send once.
        await ctx.send(result.broadcasts[0].text if result.broadcasts else fallback)

    @bot.event
    async def on_ready():
        logger.info("Discord bot logged in as %s (id=%s)", bot.user, bot.user.id)

    @bot.command(name="help")
    async def help_cmd(ctx: commands.Context):
        await ctx.send(
            "!create <name>                   - open a new room\n"
            "!join <code>                     - join a room by invite code\n"
            "!rooms                           - list your rooms\n"
            "!room <code>                     - show a room\n"
            "!transfer <code> <amount> @who   - give points to another member\n"
            "!record <code> name=score ...    - record a round\n"
            "!records <code>                  - list recorded rounds\n"
            "!delrecord <code> <id>           - delete a round\n"
            "!leave <code>                    - leave a room\n"
            "!settle <code>                   - end a room for everyone\n"
            "!stats / !trend [days] / !friends\n"
            "!name <nickname>                 - change your nickname\n"
        )

    @bot.command(name="create")
    async def create_cmd(ctx: commands.Context, *, name: str = ""):
        user = current_user(ctx.author)
        result = rooms.create_room(user, name)
        if not result.success:
            await ctx.send(result.error_message)
            return
        await ctx.send(format_room(result.room, user.id, invite_link_base))

    @bot.command(name="join")
    async def join_cmd(ctx: commands.Context, code: str):
        user = current_user(ctx.author)
        result = rooms.join_room(user, code)
        if not result.success:
            await ctx.send(result.error_message)
            return
        await ctx.send(format_room(result.room, user.id))

    @bot.command(name="rooms")
    async def rooms_cmd(ctx: commands.Context):
        user = current_user(ctx.author)
        await ctx.send(format_room_list(rooms.list_my_rooms(user.id), user.id))

    @bot.command(name="room")
    async def room_cmd(ctx: commands.Context, code: str):
        user = current_user(ctx.author)
        room = find_room(rooms, user.id, code)
        if room is None:
            await ctx.send("Room not found.")
            return
        result = rooms.get_room_detail(room.id, user.id)
        if not result.success:
            await ctx.send(result.error_message)
            return
        await ctx.send(format_room(result.room, user.id, invite_link_base))

    @bot.command(name="transfer")
    async def transfer_cmd(
        ctx: commands.Context,
        code: str,
        amount: int,
        recipient: discord.Member,
    ):
        user = current_user(ctx.author)
        target = current_user(recipient)
        room = find_room(rooms, user.id, code)
        if room is None:
            await ctx.send("Room not found.")
            return
        result = rooms.transfer(room.id, user.id, target.id, amount)
        await reply(ctx, result, "Transfer completed.")

    @bot.command(name="record")
    async def record_cmd(ctx: commands.Context, code: str, *tokens: str):
        user = current_user(ctx.author)
        room = find_room(rooms, user.id, code)
        if room is None:
            await ctx.send("Room not found.")
            return
        try:
            scores = parse_scores(room, tokens)
        except ValueError as exc:
            await ctx.send(str(exc))
            return
        await reply(ctx, container.records.add_record(room.id, scores), "Round recorded.")

    @bot.command(name="records")
    async def records_cmd(ctx: commands.Context, code: str):
        user = current_user(ctx.author)
        room = find_room(rooms, user.id, code)
        if room is None:
            await ctx.send("Room not found.")
            return
        await ctx.send(format_records(container.records.list_records(room.id)))

    @bot.command(name="delrecord")
    async def delete_record_cmd(ctx: commands.Context, code: str, record_ref: str):
        user = current_user(ctx.author)
        room = find_room(rooms, user.id, code)
        if room is None:
            await ctx.send("Room not found.")
            return
        matches = [
            r
            for r in container.records.list_records(room.id)
            if r.id.startswith(record_ref.lower())
        ]
        if len(matches) != 1:
            await ctx.send("Record not found.")
            return
        result = container.records.delete_record(matches[0].id)
        await ctx.send(
            f"Round {matches[0].round_number} deleted." if result.success else result.error_message
        )

    @bot.command(name="leave")
    async def leave_cmd(ctx: commands.Context, code: str):
        user = current_user(ctx.author)
        room = find_room(rooms, user.id, code)
        if room is None:
            await ctx.send("Room not found.")
            return
        await reply(ctx, rooms.leave_room(room.id, user.id), "You left the room.")

    @bot.command(name="settle")
    async def settle_cmd(ctx: commands.Context, code: str):
        user = current_user(ctx.author)
        room = find_room(rooms, user.id, code)
        if room is None:
            await ctx.send("Room not found.")
            return
        await reply(ctx, rooms.settle_room(room.id, user.id), "Room settled.")

    @bot.command(name="stats")
    async def stats_cmd(ctx: commands.Context):
        user = current_user(ctx.author)
        await ctx.send(format_stats(container.stats.overall_stats(user.id)))

    @bot.command(name="trend")
    async def trend_cmd(ctx: commands.Context, days: int = 7):
        if not 1 <= days <= 90:
            await ctx.send("Days must be between 1 and 90.")
            return
        user = current_user(ctx.author)
        await ctx.send(format_trend(container.stats.trend(user.id, days)))

    @bot.command(name="friends")
    async def friends_cmd(ctx: commands.Context):
        user = current_user(ctx.author)
        await ctx.send(format_friends(container.stats.list_friends(user.id)))

    @bot.command(name="name")
    async def name_cmd(ctx: commands.Context, *, nickname: str = ""):
        user = current_user(ctx.author)
        result = update_profile(user.id, nickname, container.user_repo)
        await ctx.send("Nickname updated." if result.success else result.error_message)

    @bot.event
    async def on_command_error(ctx: commands.Context, error: commands.CommandError):
        if isinstance(error, (commands.MissingRequiredArgument, commands.BadArgument)):
            await ctx.send(f"Invalid command usage: {error}")
            return
        logger.error("Command %s failed", ctx.command, exc_info=error)
        await ctx.send("Something went wrong.")

    return bot
