"""Builds repositories and services from `Settings` for the chat entry points."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

from application.records import RecordService
from application.rooms import RoomService
from application.settlement import LocalSettlementGateway, SettlementService
from application.stats import StatsService
from config import Settings
from domain.repositories import (
    FriendRepository,
    GameRecordRepository,
    IdentityRepository,
    RoomRepository,
    UserRepository,
)


@dataclass
class Container:
    user_repo: UserRepository
    identity_repo: IdentityRepository
    room_repo: RoomRepository
    record_repo: GameRecordRepository
    friend_repo: FriendRepository
    rooms: RoomService
    records: RecordService
    stats: StatsService
    settlement: SettlementService


def _sqlite_repositories(settings: Settings):
    from infrastructure.db.friend_repository_sqlite import SqliteFriendRepository
    from infrastructure.db.game_record_repository_sqlite import SqliteGameRecordRepository
    from infrastructure.db.identity_repository_sqlite import SqliteIdentityRepository
    from infrastructure.db.room_repository_sqlite import SqliteRoomRepository
    from infrastructure.db.user_repository_sqlite import SqliteUserRepository

    user_repo = SqliteUserRepository(settings.db_path)
    return (
        user_repo,
        SqliteIdentityRepository(settings.db_path, user_repo),
        SqliteRoomRepository(settings.db_path),
        SqliteGameRecordRepository(settings.db_path),
        SqliteFriendRepository(settings.db_path),
    )


def _postgres_repositories(settings: Settings):
    from infrastructure.db.friend_repository_postgres import PostgresFriendRepository
    from infrastructure.db.game_record_repository_postgres import PostgresGameRecordRepository
    from infrastructure.db.identity_repository_postgres import PostgresIdentityRepository
    from infrastructure.db.room_repository_postgres import PostgresRoomRepository
    from infrastructure.db.user_repository_postgres import PostgresUserRepository

    if not settings.database_url:
        raise RuntimeError("DATABASE_URL environment variable is not set.")

    dsn = settings.database_url
    user_repo = PostgresUserRepository(dsn)
    return (
        user_repo,
        PostgresIdentityRepository(dsn, user_repo),
        PostgresRoomRepository(dsn),
        PostgresGameRecordRepository(dsn),
        PostgresFriendRepository(dsn),
    )


def build_container(settings: Settings) -> Container:
    if settings.db_backend == "postgres":
        repos = _postgres_repositories(settings)
    elif settings.db_backend == "sqlite":
        repos = _sqlite_repositories(settings)
    else:
        raise RuntimeError(f"Unknown DB_BACKEND: {settings.db_backend}")

    user_repo, identity_repo, room_repo, record_repo, friend_repo = repos

    settlement = SettlementService(
        room_repo,
        user_repo,
        friend_repo,
        write_retries=settings.room_write_retries,
    )
    rooms = RoomService(
        room_repo,
        LocalSettlementGateway(settlement),
        idle_threshold=timedelta(hours=settings.idle_settle_hours),
        balance_floor=settings.balance_floor,
        write_retries=settings.room_write_retries,
        join_readback_delay=settings.join_readback_delay_sec,
    )
    return Container(
        user_repo=user_repo,
        identity_repo=identity_repo,
        room_repo=room_repo,
        record_repo=record_repo,
        friend_repo=friend_repo,
        rooms=rooms,
        records=RecordService(room_repo, record_repo, write_retries=settings.room_write_retries),
        stats=StatsService(room_repo, user_repo, friend_repo),
        settlement=settlement,
    )
