"""
Competition service — creation, lookup, the status state machine and stats.

All functions receive an AsyncSession parameter and are intentionally
pure async functions (no class coupling) for easy unit testing.
Callers own the transaction (see ``session_scope``).
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tierup.errors import NotFoundError, StateError
from tierup.models.models import (
    Competition,
    CompetitionStatus,
    Participant,
    ParticipantStatus,
)
from tierup.validators import CompetitionData


@dataclass
class CompetitionStats:
    total_participants: int
    total_votes:        int
    avg_votes:          float
    top_vote_count:     int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def create_competition(
    session: AsyncSession,
    data: CompetitionData,
    created_by: Optional[int] = None,
    source_competition_id: Optional[int] = None,
    status: str = CompetitionStatus.DRAFT,
) -> Competition:
    c = Competition(
        title=data.title,
        description=data.description,
        tier=data.tier,
        status=status,
        country=data.country,
        registration_start=data.registration_start,
        registration_end=data.registration_end,
        voting_start=data.voting_start,
        voting_end=data.voting_end,
        max_participants=data.max_participants,
        qualification_rules=data.qualification_rules.model_dump(),
        created_by=created_by,
        source_competition_id=source_competition_id,
    )
    session.add(c)
    await session.flush()
    return c


async def get_competition(
    session: AsyncSession,
    competition_id: int,
    for_update: bool = False,
) -> Optional[Competition]:
    q = select(Competition).where(Competition.id == competition_id)
    if for_update:
        q = q.with_for_update()
    result = await session.execute(q)
    return result.scalar_one_or_none()


async def require_competition(
    session: AsyncSession,
    competition_id: int,
    for_update: bool = False,
) -> Competition:
    c = await get_competition(session, competition_id, for_update=for_update)
    if c is None:
        raise NotFoundError("competition_not_found", f"Competition {competition_id} not found.")
    return c


async def find_advanced_competition(
    session: AsyncSession,
    source_competition_id: int,
) -> Optional[Competition]:
    """The next-tier competition spawned from ``source_competition_id``, if any."""
    result = await session.execute(
        select(Competition).where(Competition.source_competition_id == source_competition_id)
    )
    return result.scalar_one_or_none()


async def set_competition_status(
    session: AsyncSession,
    competition_id: int,
    status: str,
) -> Competition:
    """
    Move a competition forward along the status machine.
    Backward (or same-state) transitions raise StateError.
    """
    if status not in CompetitionStatus.ORDER:
        raise StateError("unknown_status", f"Unknown competition status '{status}'.")

    c = await require_competition(session, competition_id, for_update=True)
    current = CompetitionStatus.ORDER.index(c.status)
    target  = CompetitionStatus.ORDER.index(status)
    if target <= current:
        raise StateError(
            "illegal_transition",
            f"Cannot move competition from '{c.status}' to '{status}'.",
        )
    c.status = status
    await session.flush()
    return c


async def count_approved(session: AsyncSession, competition_id: int) -> int:
    result = await session.execute(
        select(func.count(Participant.id)).where(
            Participant.competition_id == competition_id,
            Participant.status == ParticipantStatus.APPROVED,
        )
    )
    return int(result.scalar_one())


async def list_approved(session: AsyncSession, competition_id: int) -> List[Participant]:
    result = await session.execute(
        select(Participant)
        .where(
            Participant.competition_id == competition_id,
            Participant.status == ParticipantStatus.APPROVED,
        )
        .order_by(Participant.id)
    )
    return list(result.scalars().all())


async def get_competition_stats(
    session: AsyncSession,
    competition_id: int,
) -> CompetitionStats:
    """Aggregate figures over approved participants."""
    result = await session.execute(
        select(
            func.count(Participant.id),
            func.coalesce(func.sum(Participant.vote_count), 0),
            func.coalesce(func.avg(Participant.vote_count), 0),
            func.coalesce(func.max(Participant.vote_count), 0),
        ).where(
            Participant.competition_id == competition_id,
            Participant.status == ParticipantStatus.APPROVED,
        )
    )
    total, votes, avg, top = result.one()
    return CompetitionStats(
        total_participants=int(total),
        total_votes=int(votes),
        avg_votes=round(float(avg), 2),
        top_vote_count=int(top),
    )
