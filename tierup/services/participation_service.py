"""
Participation service — applications and the participant status lifecycle.

    pending ──approve──▶ approved
       │                   │
       ├──reject──▶ rejected ◀──reject──┤
       └──withdraw──▶ withdrawn ◀──withdraw┘

Every transition is refused once the competition has reached voting_closed.
Withdrawal never touches votes; a withdrawn entry simply drops out of ranking.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from tierup.errors import (
    CapacityError,
    NotFoundError,
    PermissionDeniedError,
    StateError,
    WindowClosedError,
)
from tierup.models.base import utcnow
from tierup.models.models import Competition, Participant, ParticipantStatus
from tierup.services.competition_service import count_approved, require_competition
from tierup.validators import SubmissionData

logger = logging.getLogger(__name__)


async def get_participant(
    session: AsyncSession,
    participant_id: int,
) -> Optional[Participant]:
    result = await session.execute(
        select(Participant)
        .where(Participant.id == participant_id)
        .options(selectinload(Participant.competition))
    )
    return result.scalar_one_or_none()


async def require_participant(session: AsyncSession, participant_id: int) -> Participant:
    p = await get_participant(session, participant_id)
    if p is None:
        raise NotFoundError("participant_not_found", f"Participant {participant_id} not found.")
    return p


async def list_participants(
    session: AsyncSession,
    competition_id: int,
    include_withdrawn: bool = False,
) -> List[Participant]:
    q = (
        select(Participant)
        .where(Participant.competition_id == competition_id)
        .order_by(Participant.applied_at, Participant.id)
    )
    if not include_withdrawn:
        q = q.where(Participant.status != ParticipantStatus.WITHDRAWN)
    result = await session.execute(q)
    return list(result.scalars().all())


async def _ensure_capacity(session: AsyncSession, competition: Competition) -> None:
    if competition.max_participants is None:
        return
    approved = await count_approved(session, competition.id)
    if approved >= competition.max_participants:
        raise CapacityError(
            "max_participants_reached",
            f"Competition already has {approved} approved participants "
            f"(limit {competition.max_participants}).",
        )


def _ensure_not_frozen(competition: Competition) -> None:
    if competition.is_frozen:
        raise StateError(
            "frozen",
            "Participants can no longer change once voting has closed.",
        )


async def apply(
    session: AsyncSession,
    competition_id: int,
    user_id: int,
    submission: SubmissionData,
    now: Optional[datetime] = None,
) -> Participant:
    """
    Create an application.  Entries are approved on the spot when the
    competition's rules do not require organizer review.
    """
    now = now or utcnow()
    competition = await require_competition(session, competition_id, for_update=True)

    if not competition.is_registration_open(now):
        raise WindowClosedError(
            "registration_closed",
            "Registration is not currently open for this competition.",
        )

    existing = await session.execute(
        select(Participant.id).where(
            Participant.competition_id == competition_id,
            Participant.user_id == user_id,
        )
    )
    if existing.scalar_one_or_none() is not None:
        raise StateError("already_registered", "You are already registered for this competition.")

    await _ensure_capacity(session, competition)

    auto_approve = not competition.rules.requires_approval
    p = Participant(
        competition_id=competition_id,
        user_id=user_id,
        status=ParticipantStatus.APPROVED if auto_approve else ParticipantStatus.PENDING,
        submission_title=submission.title,
        submission_description=submission.description,
        submission_media=[m.model_dump() for m in submission.media],
        vote_count=0,
        applied_at=now,
        approved_at=now if auto_approve else None,
    )
    try:
        async with session.begin_nested():
            session.add(p)
    except IntegrityError as exc:
        raise StateError(
            "already_registered", "You are already registered for this competition."
        ) from exc
    logger.info(
        "User %d applied to competition %d (participant %d, %s)",
        user_id, competition_id, p.id, p.status,
    )
    return p


async def approve(
    session: AsyncSession,
    participant_id: int,
    now: Optional[datetime] = None,
) -> Participant:
    p = await require_participant(session, participant_id)
    # Lock the competition row so concurrent approvals see each other
    competition = await require_competition(session, p.competition_id, for_update=True)
    _ensure_not_frozen(competition)
    if p.status != ParticipantStatus.PENDING:
        raise StateError("not_pending", f"Only pending entries can be approved (is '{p.status}').")

    await _ensure_capacity(session, competition)

    p.status = ParticipantStatus.APPROVED
    p.approved_at = now or utcnow()
    await session.flush()
    return p


async def reject(session: AsyncSession, participant_id: int) -> Participant:
    p = await require_participant(session, participant_id)
    _ensure_not_frozen(p.competition)
    if p.status not in (ParticipantStatus.PENDING, ParticipantStatus.APPROVED):
        raise StateError("not_rejectable", f"Entry in status '{p.status}' cannot be rejected.")
    p.status = ParticipantStatus.REJECTED
    await session.flush()
    return p


async def withdraw(
    session: AsyncSession,
    participant_id: int,
    user_id: int,
) -> Participant:
    p = await require_participant(session, participant_id)
    if p.user_id != user_id:
        raise PermissionDeniedError("not_owner", "Only the entrant can withdraw this entry.")
    _ensure_not_frozen(p.competition)
    if p.status not in (ParticipantStatus.PENDING, ParticipantStatus.APPROVED):
        raise StateError("not_withdrawable", f"Entry in status '{p.status}' cannot be withdrawn.")
    p.status = ParticipantStatus.WITHDRAWN
    await session.flush()
    return p
