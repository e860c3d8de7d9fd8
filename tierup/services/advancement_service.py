"""
Advancement orchestrator — promotes the winners of a completed competition
into a freshly created competition one tier up.

Steps
-----
1. Preconditions: completed, not global, exact next tier, not yet advanced.
2. Winners: first ``top_n`` leaderboard positions with ``vote_count ≥ min_votes``.
3. Find-or-create the next-tier competition (unique per source competition).
4. Register each winner as approved unless already registered.
5. Write advancement_info on the source with a conditional UPDATE; this is
   the exactly-once gate and happens only after every registration.

Steps 3 and 4 commit as they go.  A run that dies half-way leaves a state
that a later ``advance`` call resumes from: the existing next-tier
competition is reused and already registered winners are skipped.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tierup.errors import NoQualifiersError, StateError
from tierup.models.base import utcnow
from tierup.models.models import (
    Competition,
    CompetitionStatus,
    CompetitionTier,
    Participant,
    ParticipantStatus,
)
from tierup.services.competition_service import (
    find_advanced_competition,
    list_approved,
    require_competition,
)
from tierup.services.ranking_service import (
    default_top_n,
    rank_participants,
    select_winners,
)
from tierup.validators import AdvancementCriteria, QualificationRules

logger = logging.getLogger(__name__)

REGISTRATION_LEAD    = timedelta(days=7)
REGISTRATION_PERIOD  = timedelta(days=14)
VOTING_GAP           = timedelta(days=1)
VOTING_PERIOD        = timedelta(days=7)


@dataclass(frozen=True)
class Winner:
    """Detached copy of a winning entry, safe to use across commits."""
    participant_id: int
    user_id:        int
    vote_count:     int
    rank:           int
    title:          str
    description:    str
    media:          List[Dict[str, Any]]


@dataclass
class AdvancementResult:
    source_competition_id: int
    competition:           Competition
    winners:               List[Winner]
    advanced_at:           datetime

    @property
    def advanced_count(self) -> int:
        return len(self.winners)

    def to_dict(self) -> Dict[str, Any]:
        c = self.competition
        return {
            "source_competition_id": self.source_competition_id,
            "next_competition": {
                "id":                  c.id,
                "title":               c.title,
                "tier":                c.tier,
                "status":              c.status,
                "registration_start":  c.registration_start.isoformat(),
                "registration_end":    c.registration_end.isoformat(),
                "voting_start":        c.voting_start.isoformat(),
                "voting_end":          c.voting_end.isoformat(),
                "max_participants":    c.max_participants,
                "qualification_rules": c.qualification_rules,
            },
            "advanced_participants": self.advanced_count,
            "winners": [
                {"participant_id": w.participant_id, "user_id": w.user_id,
                 "vote_count": w.vote_count, "rank": w.rank}
                for w in self.winners
            ],
            "advancement_date": self.advanced_at.isoformat(),
        }


# ─────────────────────────── Policy helpers ───────────────────────────────────

def check_progression(current_tier: str, next_tier: str) -> None:
    if current_tier == CompetitionTier.GLOBAL:
        raise StateError("final_tier", "Global competitions cannot advance further.")
    if CompetitionTier.NEXT.get(current_tier) != next_tier:
        raise StateError(
            "invalid_tier_progression",
            f"Cannot advance from '{current_tier}' to '{next_tier}'.",
        )


def next_tier_rules(
    next_tier: str,
    current_top_n: int,
    winners: List[Winner],
) -> QualificationRules:
    """Stricter rules downstream: review required, narrower field, higher bar."""
    mean_votes = sum(w.vote_count for w in winners) / len(winners)
    multiplier = CompetitionTier.MIN_VOTES_MULTIPLIER[next_tier]
    return QualificationRules(
        requires_approval=True,
        top_n=max(5, current_top_n // 2),
        min_votes=math.ceil(mean_votes * multiplier),
    )


def next_schedule(now: datetime) -> Dict[str, datetime]:
    registration_start = now + REGISTRATION_LEAD
    registration_end   = registration_start + REGISTRATION_PERIOD
    voting_start       = registration_end + VOTING_GAP
    voting_end         = voting_start + VOTING_PERIOD
    return {
        "registration_start": registration_start,
        "registration_end":   registration_end,
        "voting_start":       voting_start,
        "voting_end":         voting_end,
    }


# ─────────────────────────── Main entry point ─────────────────────────────────

async def advance(
    session: AsyncSession,
    competition_id: int,
    next_tier: str,
    criteria: Optional[AdvancementCriteria] = None,
    now: Optional[datetime] = None,
) -> AdvancementResult:
    now = now or utcnow()
    criteria = criteria or AdvancementCriteria()

    source = await require_competition(session, competition_id)
    if source.status != CompetitionStatus.COMPLETED:
        raise StateError(
            "not_completed", "Competition must be completed before advancing winners."
        )
    check_progression(source.tier, next_tier)
    if source.advanced_at is not None:
        raise StateError("already_advanced", "Winners of this competition were already advanced.")

    approved = await list_approved(session, competition_id)
    top_n = criteria.top_n or default_top_n(len(approved))
    min_votes = criteria.min_votes or 0
    winners = [
        Winner(
            participant_id=s.participant.id,
            user_id=s.participant.user_id,
            vote_count=s.vote_count,
            rank=s.rank,
            title=s.participant.submission_title,
            description=s.participant.submission_description,
            media=list(s.participant.submission_media or []),
        )
        for s in select_winners(rank_participants(approved), top_n, min_votes)
    ]
    if not winners:
        raise NoQualifiersError(
            "no_qualifiers",
            f"No participant in the top {top_n} has at least {min_votes} votes.",
        )

    target = await _get_or_create_next_competition(
        session, source, next_tier, top_n, winners, now
    )
    target_id = target.id
    await session.commit()

    for winner in winners:
        await _register_winner(session, target_id, winner, now)
        await session.commit()

    result = await session.execute(
        update(Competition)
        .where(Competition.id == competition_id, Competition.advanced_at.is_(None))
        .values(advanced_to_id=target_id, advanced_count=len(winners), advanced_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise StateError("already_advanced", "Winners of this competition were already advanced.")
    await session.commit()

    logger.info(
        "Advanced %d winners of competition %d (%s) into competition %d (%s)",
        len(winners), competition_id, source.tier, target_id, next_tier,
    )
    return AdvancementResult(
        source_competition_id=competition_id,
        competition=target,
        winners=winners,
        advanced_at=now,
    )


async def _get_or_create_next_competition(
    session: AsyncSession,
    source: Competition,
    next_tier: str,
    top_n: int,
    winners: List[Winner],
    now: datetime,
) -> Competition:
    existing = await find_advanced_competition(session, source.id)
    if existing is not None:
        logger.info(
            "Resuming advancement of competition %d into existing competition %d",
            source.id, existing.id,
        )
        return existing

    label = CompetitionTier.LABELS[next_tier]
    rules = next_tier_rules(next_tier, top_n, winners)
    target = Competition(
        title=f"{label} {source.title}"[:255],
        description=(
            f"{label} tier competition featuring winners from {source.tier_label.lower()} competitions."
        ),
        tier=next_tier,
        status=CompetitionStatus.DRAFT,
        country=None if next_tier == CompetitionTier.GLOBAL else source.country,
        max_participants=max(CompetitionTier.DEFAULT_CAPACITY[next_tier], len(winners)),
        qualification_rules=rules.model_dump(),
        created_by=source.created_by,
        source_competition_id=source.id,
        **next_schedule(now),
    )
    try:
        async with session.begin_nested():
            session.add(target)
    except IntegrityError:
        # A concurrent run created it first
        existing = await find_advanced_competition(session, source.id)
        if existing is None:
            raise
        return existing
    return target


async def _register_winner(
    session: AsyncSession,
    competition_id: int,
    winner: Winner,
    now: datetime,
) -> None:
    found = await session.execute(
        select(Participant.id).where(
            Participant.competition_id == competition_id,
            Participant.user_id == winner.user_id,
        )
    )
    if found.scalar_one_or_none() is not None:
        return

    entry = Participant(
        competition_id=competition_id,
        user_id=winner.user_id,
        status=ParticipantStatus.APPROVED,
        submission_title=winner.title,
        submission_description=winner.description,
        submission_media=list(winner.media),
        vote_count=0,
        applied_at=now,
        approved_at=now,
    )
    try:
        async with session.begin_nested():
            session.add(entry)
    except IntegrityError:
        logger.info(
            "Winner user=%d already registered in competition %d",
            winner.user_id, competition_id,
        )
