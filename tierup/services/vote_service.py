"""
Vote admission controller — the entry point for "cast a vote".

Checks run in a fixed order and the first failure wins:

1. competition exists, is voting_open and ``now`` is inside its voting window
2. participant exists, belongs to the competition and is approved
3. voter is verified
4. voter does not own the participant
5. fraud guard admits the request
6. ledger append + atomic counter increment

Steps 1–5 only read.  Step 6 runs inside the caller's transaction, so any
failure after it leaves no vote row and no counter change behind.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from tierup.errors import (
    NotFoundError,
    PermissionDeniedError,
    StateError,
    WindowClosedError,
)
from tierup.models.base import utcnow
from tierup.models.models import (
    Competition,
    CompetitionStatus,
    Participant,
    ParticipantStatus,
    Vote,
)
from tierup.services import vote_ledger
from tierup.services.fraud_guard import FraudGuard

logger = logging.getLogger(__name__)


@dataclass
class VoteReceipt:
    vote_id:        int
    competition_id: int
    participant_id: int
    vote_count:     int
    cast_at:        datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vote_id":        self.vote_id,
            "competition_id": self.competition_id,
            "participant_id": self.participant_id,
            "vote_count":     self.vote_count,
            "cast_at":        self.cast_at.isoformat(),
        }


async def cast_vote(
    session: AsyncSession,
    guard: FraudGuard,
    competition_id: int,
    participant_id: int,
    voter_user_id: int,
    voter_ip: str,
    voter_verified: bool,
    now: Optional[datetime] = None,
) -> VoteReceipt:
    now = now or utcnow()

    competition = await session.get(Competition, competition_id)
    if competition is None:
        raise NotFoundError("competition_not_found", f"Competition {competition_id} not found.")
    if competition.status != CompetitionStatus.VOTING_OPEN:
        raise WindowClosedError(
            "voting_not_open", "Voting is not currently open for this competition."
        )
    if not competition.is_voting_window(now):
        raise WindowClosedError(
            "outside_voting_window", "Voting is not currently open for this competition."
        )

    participant = await session.get(Participant, participant_id)
    if participant is None or participant.competition_id != competition_id:
        raise NotFoundError(
            "participant_not_found",
            f"Participant {participant_id} is not entered in competition {competition_id}.",
        )
    if participant.status != ParticipantStatus.APPROVED:
        raise StateError("participant_not_approved", "This entry is not open for votes.")

    if not voter_verified:
        raise PermissionDeniedError("unverified", "Only verified users can vote.")
    if participant.user_id == voter_user_id:
        raise PermissionDeniedError("self_vote", "You cannot vote for your own submission.")

    decision = await guard.admit(
        session, competition_id, participant_id, voter_user_id, voter_ip, now
    )
    if not decision.allowed:
        logger.info(
            "Vote denied: voter=%d participant=%d ip=%s reason=%s",
            voter_user_id, participant_id, voter_ip, decision.error.reason,
        )
        raise decision.error

    vote = Vote(
        competition_id=competition_id,
        participant_id=participant_id,
        voter_user_id=voter_user_id,
        voter_ip=voter_ip,
        cast_at=now,
        voter_verified=voter_verified,
    )
    vote_id = await vote_ledger.append(session, vote)
    new_count = await vote_ledger.increment_vote_count(session, participant_id)
    # Reflect the database value without marking the row dirty
    set_committed_value(participant, "vote_count", new_count)

    return VoteReceipt(
        vote_id=vote_id,
        competition_id=competition_id,
        participant_id=participant_id,
        vote_count=new_count,
        cast_at=now,
    )
