"""
Public boundary of the engine.

Each call validates its input, runs in its own unit of work, and surfaces
either a structured result or a typed ``EngineError``.  Storage failures
become ``PersistenceError``; malformed input becomes ``ValidationError``.
Side effects that must not fail the operation (velocity bookkeeping,
notifications) run only after the commit.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tierup.config import settings
from tierup.errors import EngineError, PersistenceError, ValidationError
from tierup.models.base import AsyncSessionFactory, session_scope, utcnow
from tierup.models.models import Competition, Participant
from tierup.services import (
    advancement_service,
    competition_service,
    participation_service,
    ranking_service,
    vote_ledger,
    vote_service,
)
from tierup.services.competition_service import CompetitionStats
from tierup.services.fraud_guard import FraudGuard
from tierup.services.notification_service import Notifier
from tierup.validators import (
    AdvancementCriteria,
    CompetitionData,
    LeaderboardQuery,
    SubmissionData,
    VoteRequest,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _validate(model: Type[M], data: Union[M, Dict[str, Any]]) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            "invalid_input",
            "Invalid request data.",
            details=[
                {"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()
            ],
        ) from exc


class ContestGateway:
    """
    Parameters
    ----------
    session_factory : async_sessionmaker; one session per call
    guard           : FraudGuard used by cast_vote
    notifier        : Notifier for fire-and-forget user messages
    clock           : returns "now" as naive UTC (injectable for tests)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        guard: Optional[FraudGuard] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory or AsyncSessionFactory
        self.guard    = guard if guard is not None else FraudGuard()
        self.notifier = notifier if notifier is not None else Notifier()
        self._clock   = clock
        self._sweeper: Optional[asyncio.Task] = None

    # ── Unit of work ──────────────────────────────────────────────────────────

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with session_scope(self._session_factory) as session:
                yield session
        except EngineError as e:
            logger.info("%s refused: %s/%s", operation, e.kind, e.reason)
            raise
        except SQLAlchemyError as e:
            logger.error("%s failed on storage: %s", operation, e)
            raise PersistenceError("storage_error", details=type(e).__name__) from e

    # ── Voting ────────────────────────────────────────────────────────────────

    async def cast_vote(
        self,
        competition_id: int,
        participant_id: int,
        voter_user_id: int,
        voter_ip: str,
        voter_verified: bool,
    ) -> vote_service.VoteReceipt:
        req = _validate(VoteRequest, {
            "competition_id": competition_id,
            "participant_id": participant_id,
            "voter_user_id":  voter_user_id,
            "voter_ip":       voter_ip,
            "voter_verified": voter_verified,
        })
        ip = str(req.voter_ip)
        async with self._session("cast_vote") as session:
            receipt = await vote_service.cast_vote(
                session, self.guard,
                req.competition_id, req.participant_id, req.voter_user_id,
                ip, req.voter_verified,
                now=self._clock(),
            )
            participant = await session.get(Participant, req.participant_id)
            competition = await session.get(Competition, req.competition_id)

        self.guard.observe(ip, req.voter_user_id, receipt.cast_at)
        self.notifier.vote_accepted(participant, competition)
        return receipt

    async def voting_status(self, competition_id: int, voter_user_id: int) -> Dict[int, bool]:
        async with self._session("voting_status") as session:
            await competition_service.require_competition(session, competition_id)
            return await vote_ledger.voting_status(session, competition_id, voter_user_id)

    # ── Ranking ───────────────────────────────────────────────────────────────

    async def leaderboard(
        self,
        competition_id: int,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> ranking_service.Leaderboard:
        q = _validate(LeaderboardQuery, {
            "competition_id": competition_id,
            "limit":          limit if limit is not None else min(settings.LEADERBOARD_PAGE_SIZE, 100),
            "offset":         offset,
        })
        async with self._session("leaderboard") as session:
            return await ranking_service.leaderboard(
                session, q.competition_id, q.limit, q.offset, now=self._clock()
            )

    async def trending(
        self,
        competition_id: int,
        hours_back: int = 24,
        limit: int = 10,
    ) -> List[ranking_service.TrendingEntry]:
        async with self._session("trending") as session:
            await competition_service.require_competition(session, competition_id)
            return await ranking_service.trending_participants(
                session, competition_id, hours_back, limit, now=self._clock()
            )

    async def stats(self, competition_id: int) -> CompetitionStats:
        async with self._session("stats") as session:
            await competition_service.require_competition(session, competition_id)
            return await competition_service.get_competition_stats(session, competition_id)

    # ── Advancement ───────────────────────────────────────────────────────────

    async def advance(
        self,
        competition_id: int,
        next_tier: str,
        criteria: Union[AdvancementCriteria, Dict[str, Any], None] = None,
    ) -> advancement_service.AdvancementResult:
        crit = _validate(AdvancementCriteria, criteria or {})
        async with self._session("advance") as session:
            result = await advancement_service.advance(
                session, competition_id, next_tier, crit, now=self._clock()
            )
            source = await session.get(Competition, competition_id)

        self.notifier.advancement_completed(
            [w.user_id for w in result.winners], source, result.competition
        )
        return result

    # ── Competitions & participation ──────────────────────────────────────────

    async def create_competition(
        self,
        data: Union[CompetitionData, Dict[str, Any]],
        created_by: Optional[int] = None,
    ) -> Competition:
        payload = _validate(CompetitionData, data)
        async with self._session("create_competition") as session:
            return await competition_service.create_competition(
                session, payload, created_by=created_by
            )

    async def set_competition_status(self, competition_id: int, status: str) -> Competition:
        async with self._session("set_competition_status") as session:
            return await competition_service.set_competition_status(
                session, competition_id, status
            )

    async def apply(
        self,
        competition_id: int,
        user_id: int,
        submission: Union[SubmissionData, Dict[str, Any]],
    ) -> Participant:
        payload = _validate(SubmissionData, submission)
        async with self._session("apply") as session:
            p = await participation_service.apply(
                session, competition_id, user_id, payload, now=self._clock()
            )
            competition = await session.get(Competition, competition_id)
        self.notifier.participation_status_changed(p, competition)
        return p

    async def approve(self, participant_id: int) -> Participant:
        async with self._session("approve") as session:
            p = await participation_service.approve(session, participant_id, now=self._clock())
        self.notifier.participation_status_changed(p, p.competition)
        return p

    async def reject(self, participant_id: int) -> Participant:
        async with self._session("reject") as session:
            p = await participation_service.reject(session, participant_id)
        self.notifier.participation_status_changed(p, p.competition)
        return p

    async def withdraw(self, participant_id: int, user_id: int) -> Participant:
        async with self._session("withdraw") as session:
            p = await participation_service.withdraw(session, participant_id, user_id)
        self.notifier.participation_status_changed(p, p.competition)
        return p

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the periodic velocity-window sweeper."""
        if self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        interval = settings.VELOCITY_SWEEP_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            removed = self.guard.sweep(self._clock())
            if removed:
                logger.debug("Velocity sweep removed %d idle keys", removed)

    async def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        await self.notifier.close()
