"""
Vote ledger — append-only record of accepted votes plus the cached
per-participant counter.

The (voter_user_id, participant_id) unique constraint is enforced by the
database, so ``append`` stays correct even when two requests pass the fraud
guard's pre-check concurrently.  ``increment_vote_count`` is a single
``UPDATE … SET vote_count = vote_count + 1``; the application never
computes the new value itself.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tierup.errors import DuplicateVoteError, NotFoundError
from tierup.models.models import Participant, ParticipantStatus, Vote


async def append(session: AsyncSession, vote: Vote) -> int:
    """Insert a vote.  A second vote for the same pair raises DuplicateVoteError."""
    session.add(vote)
    try:
        await session.flush()
    except IntegrityError as exc:
        raise DuplicateVoteError("account_duplicate") from exc
    return vote.id


async def increment_vote_count(session: AsyncSession, participant_id: int) -> int:
    """Atomically add one to the participant's counter and return the new value."""
    result = await session.execute(
        update(Participant)
        .where(Participant.id == participant_id)
        .values(vote_count=Participant.vote_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError("participant_not_found", f"Participant {participant_id} not found.")
    count = await session.execute(
        select(Participant.vote_count).where(Participant.id == participant_id)
    )
    return int(count.scalar_one())


async def count_votes(session: AsyncSession, participant_id: int) -> int:
    """Ground-truth vote count straight from the ledger."""
    result = await session.execute(
        select(func.count(Vote.id)).where(Vote.participant_id == participant_id)
    )
    return int(result.scalar_one())


async def duplicate_flags(
    session: AsyncSession,
    participant_id: int,
    voter_user_id: int,
    voter_ip: str,
) -> tuple[bool, bool]:
    """
    (account_duplicate, ip_duplicate) for one participant, in a single query.
    """
    result = await session.execute(
        select(
            func.count(Vote.id).filter(Vote.voter_user_id == voter_user_id),
            func.count(Vote.id).filter(Vote.voter_ip == voter_ip),
        ).where(Vote.participant_id == participant_id)
    )
    by_account, by_ip = result.one()
    return bool(by_account), bool(by_ip)


async def count_recent(
    session: AsyncSession,
    voter_ip: str,
    since: datetime,
    voter_user_id: Optional[int] = None,
) -> int:
    """Accepted votes from an address (optionally one voter) with cast_at > since."""
    q = select(func.count(Vote.id)).where(
        Vote.voter_ip == voter_ip,
        Vote.cast_at > since,
    )
    if voter_user_id is not None:
        q = q.where(Vote.voter_user_id == voter_user_id)
    result = await session.execute(q)
    return int(result.scalar_one())


async def voting_status(
    session: AsyncSession,
    competition_id: int,
    voter_user_id: int,
) -> Dict[int, bool]:
    """participant_id → has_voted, over the approved entries of a competition."""
    approved = await session.execute(
        select(Participant.id).where(
            Participant.competition_id == competition_id,
            Participant.status == ParticipantStatus.APPROVED,
        )
    )
    voted = await session.execute(
        select(Vote.participant_id).where(
            Vote.competition_id == competition_id,
            Vote.voter_user_id == voter_user_id,
        )
    )
    voted_ids = set(voted.scalars().all())
    return {pid: pid in voted_ids for pid in approved.scalars().all()}
