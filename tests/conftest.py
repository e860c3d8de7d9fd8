"""
Shared pytest fixtures for TierUp tests.

Sets required environment variables BEFORE any tierup module is imported so
that pydantic-settings and SQLAlchemy engine initialisation use safe test values.
"""
from __future__ import annotations

import os
from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional

# ── Set env vars before any tierup import ─────────────────────────────────────
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("VELOCITY_BACKEND", "database")

# ── Third-party ───────────────────────────────────────────────────────────────
import pytest
from aiogram.exceptions import TelegramBadRequest
from aiogram.methods import SendMessage
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# ── TierUp imports (safe after env vars are set) ──────────────────────────────
from tierup.gateway import ContestGateway
from tierup.models.base import Base, build_engine
from tierup.models.models import (
    Competition,
    CompetitionStatus,
    CompetitionTier,
    Participant,
    ParticipantStatus,
)
from tierup.services.fraud_guard import FraudGuard, LedgerVelocityCounter
from tierup.services.notification_service import Notifier

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0)


# ── Clock ─────────────────────────────────────────────────────────────────────

class FakeClock:
    """Callable clock whose time only moves when a test says so."""

    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ── DB fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture
async def db_engine(tmp_path):
    """
    File-backed SQLite engine, fresh per test.  A file (not :memory:) lets
    concurrent sessions hold separate connections to the same database.
    """
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'tierup-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Fake Telegram bots ────────────────────────────────────────────────────────

class _FakeBotSession:
    def __init__(self) -> None:
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class RecordingBot:
    """Stands in for aiogram.Bot; remembers every message instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[int, str]] = []
        self.session = _FakeBotSession()

    async def send_message(self, chat_id: int, text: str, **kwargs) -> None:
        self.sent.append((chat_id, text))

    def chats(self) -> list[int]:
        return [chat_id for chat_id, _ in self.sent]


class FailingBot(RecordingBot):
    """Every send fails the way Telegram rejects an unknown chat."""

    async def send_message(self, chat_id: int, text: str, **kwargs) -> None:
        raise TelegramBadRequest(
            method=SendMessage(chat_id=chat_id, text=text),
            message="Bad Request: chat not found",
        )


@pytest.fixture
def recording_bot() -> RecordingBot:
    return RecordingBot()


# ── Gateway ───────────────────────────────────────────────────────────────────

@pytest.fixture
def guard() -> FraudGuard:
    return FraudGuard(
        counter=LedgerVelocityCounter(),
        rate=10,
        period=60,
        scope="ip",
        block_shared_ip=False,
    )


@pytest.fixture
async def gateway(session_factory, guard, recording_bot, clock):
    gw = ContestGateway(
        session_factory=session_factory,
        guard=guard,
        notifier=Notifier(recording_bot),
        clock=clock,
    )
    try:
        yield gw
    finally:
        await gw.close()


# ── Seeding helpers ───────────────────────────────────────────────────────────

@pytest.fixture
def seed_competition(session_factory):
    """
    Factory fixture — inserts a competition directly and returns its id.

    Defaults describe a local competition whose voting window is open
    around BASE_TIME (registration closed the day before).
    """

    async def _seed(
        status: str = CompetitionStatus.VOTING_OPEN,
        tier: str = CompetitionTier.LOCAL,
        title: str = "Spring Photo Contest",
        country: Optional[str] = "PT",
        registration_start: datetime = BASE_TIME - timedelta(days=10),
        registration_end: datetime = BASE_TIME - timedelta(days=2),
        voting_start: datetime = BASE_TIME - timedelta(hours=1),
        voting_end: datetime = BASE_TIME + timedelta(hours=1),
        max_participants: Optional[int] = None,
        qualification_rules: Optional[dict] = None,
    ) -> int:
        async with session_factory() as session:
            c = Competition(
                title=title,
                tier=tier,
                status=status,
                country=country,
                registration_start=registration_start,
                registration_end=registration_end,
                voting_start=voting_start,
                voting_end=voting_end,
                max_participants=max_participants,
                qualification_rules=qualification_rules or {},
            )
            session.add(c)
            await session.commit()
            return c.id

    return _seed


@pytest.fixture
def seed_participant(session_factory):
    """Factory fixture — inserts a participant directly and returns its id."""

    async def _seed(
        competition_id: int,
        user_id: int,
        status: str = ParticipantStatus.APPROVED,
        vote_count: int = 0,
        applied_at: datetime = BASE_TIME - timedelta(days=5),
        title: Optional[str] = None,
    ) -> int:
        async with session_factory() as session:
            p = Participant(
                competition_id=competition_id,
                user_id=user_id,
                status=status,
                submission_title=title or f"Entry of user {user_id}",
                submission_description="A carefully composed submission.",
                submission_media=[{
                    "type": "image",
                    "url": f"https://media.example.org/{user_id}.jpg",
                    "filename": f"{user_id}.jpg",
                    "size": 2048,
                }],
                vote_count=vote_count,
                applied_at=applied_at,
                approved_at=applied_at if status == ParticipantStatus.APPROVED else None,
            )
            session.add(p)
            await session.commit()
            return p.id

    return _seed


# ── Mock helpers ──────────────────────────────────────────────────────────────

class _MockParticipant:
    """
    Minimal participant object for ranking engine tests.

    Replicates the attributes read by rank_participants / select_winners
    without requiring a database session or full ORM setup.
    """

    _next_id = 1

    def __init__(
        self,
        vote_count: int,
        applied_at: datetime,
        user_id: Optional[int] = None,
        id: Optional[int] = None,
    ) -> None:
        if id is None:
            id = _MockParticipant._next_id
            _MockParticipant._next_id += 1
        self.id         = id
        self.user_id    = user_id if user_id is not None else 1000 + id
        self.vote_count = vote_count
        self.applied_at = applied_at
        self.status     = ParticipantStatus.APPROVED
        self.ranking: Optional[int] = None
        self.previous_ranking: Optional[int] = None


@pytest.fixture
def make_participant():
    """Factory fixture — returns a callable that builds a _MockParticipant."""
    return _MockParticipant
