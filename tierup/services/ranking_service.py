"""
Ranking engine — leaderboard standings, trends and winner selection.

Algorithm
---------
1. Take the approved participants of a competition.
2. Sort: vote_count DESC; tie-break by applied_at ASC (earlier entry first),
   then by id for a total order.
3. Assign dense ranks: tied vote counts share a rank, the next distinct
   count gets the next integer (10, 10, 8 → 1, 1, 2).
4. Trend compares the new rank with the rank materialized by the
   immediately preceding computation:
   up / down / same, or new when there was no previous rank.

Materialization
---------------
Every leaderboard computation stores the ranking on the participant rows:
the old ``ranking`` moves to ``previous_ranking`` before it is overwritten.
Entries that are no longer approved (e.g. withdrawn) lose their ranking.

Winner selection uses the same ordering (``rank_participants``) without
materializing anything.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tierup.models.base import utcnow
from tierup.models.models import Participant, ParticipantStatus, Trend, Vote
from tierup.services.competition_service import (
    CompetitionStats,
    get_competition_stats,
    list_approved,
    require_competition,
)


@dataclass
class Standing:
    """A single ranked row."""
    participant: Participant
    vote_count:  int
    rank:        int


@dataclass
class LeaderboardEntry:
    participant: Participant
    vote_count:  int
    rank:        int
    trend:       str

    def to_dict(self) -> Dict[str, Any]:
        p = self.participant
        return {
            "participant_id":   p.id,
            "user_id":          p.user_id,
            "submission_title": p.submission_title,
            "vote_count":       self.vote_count,
            "rank":             self.rank,
            "trend":            self.trend,
        }


@dataclass
class Leaderboard:
    competition_id: int
    entries:        List[LeaderboardEntry]
    total:          int
    limit:          int
    offset:         int
    stats:          CompetitionStats
    computed_at:    datetime = field(default_factory=utcnow)

    @property
    def has_more(self) -> bool:
        return self.offset + self.limit < self.total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "competition_id": self.competition_id,
            "leaderboard":    [e.to_dict() for e in self.entries],
            "stats":          {**self.stats.to_dict(), "last_updated": self.computed_at.isoformat()},
            "pagination": {
                "limit":    self.limit,
                "offset":   self.offset,
                "total":    self.total,
                "has_more": self.has_more,
            },
        }


@dataclass
class TrendingEntry:
    participant:   Participant
    recent_votes:  int
    total_votes:   int
    vote_velocity: float   # votes per hour over the look-back period

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant.id,
            "recent_votes":   self.recent_votes,
            "total_votes":    self.total_votes,
            "vote_velocity":  self.vote_velocity,
        }


# ─────────────────────────── Pure ranking ─────────────────────────────────────

def rank_participants(participants: Sequence[Participant]) -> List[Standing]:
    """Order participants and assign dense ranks.  No I/O."""
    ordered = sorted(participants, key=lambda p: (-p.vote_count, p.applied_at, p.id))

    standings: List[Standing] = []
    rank = 0
    for i, p in enumerate(ordered):
        if i == 0 or not _is_tie(p, ordered[i - 1]):
            rank += 1
        standings.append(Standing(participant=p, vote_count=p.vote_count, rank=rank))
    return standings


def _is_tie(a: Participant, b: Participant) -> bool:
    return a.vote_count == b.vote_count


def compute_trend(previous: Optional[int], current: int) -> str:
    if previous is None:
        return Trend.NEW
    if current < previous:
        return Trend.UP
    if current > previous:
        return Trend.DOWN
    return Trend.SAME


def default_top_n(approved_count: int) -> int:
    """Top 3 or 10 % of the field, whichever is larger."""
    return max(3, math.ceil(0.1 * approved_count))


def select_winners(
    standings: Sequence[Standing],
    top_n: int,
    min_votes: int = 0,
) -> List[Standing]:
    """First ``top_n`` positions, then keep those with at least ``min_votes``."""
    return [s for s in standings[:top_n] if s.vote_count >= min_votes]


# ─────────────────────────── Main entry points ────────────────────────────────

async def leaderboard(
    session: AsyncSession,
    competition_id: int,
    limit: int = 50,
    offset: int = 0,
    now: Optional[datetime] = None,
) -> Leaderboard:
    """
    Recompute and materialize the ranking of a competition, then return
    one page of it.
    """
    now = now or utcnow()
    # Concurrent recomputations must each see the previous one's snapshot
    await require_competition(session, competition_id, for_update=True)

    participants = await list_approved(session, competition_id)
    standings = rank_participants(participants)

    entries: List[LeaderboardEntry] = []
    for s in standings:
        p = s.participant
        previous = p.ranking
        entries.append(
            LeaderboardEntry(
                participant=p,
                vote_count=s.vote_count,
                rank=s.rank,
                trend=compute_trend(previous, s.rank),
            )
        )
        p.previous_ranking = previous
        p.ranking = s.rank
        p.ranked_at = now

    await session.execute(
        update(Participant)
        .where(
            Participant.competition_id == competition_id,
            Participant.status != ParticipantStatus.APPROVED,
            Participant.ranking.is_not(None),
        )
        .values(ranking=None, previous_ranking=None)
        .execution_options(synchronize_session=False)
    )
    await session.flush()

    stats = await get_competition_stats(session, competition_id)
    return Leaderboard(
        competition_id=competition_id,
        entries=entries[offset:offset + limit],
        total=len(entries),
        limit=limit,
        offset=offset,
        stats=stats,
        computed_at=now,
    )


async def trending_participants(
    session: AsyncSession,
    competition_id: int,
    hours_back: int = 24,
    limit: int = 10,
    now: Optional[datetime] = None,
) -> List[TrendingEntry]:
    """Approved entries ordered by votes received in the last ``hours_back`` hours."""
    now = now or utcnow()
    hours_back = max(hours_back, 1)
    since = now - timedelta(hours=hours_back)

    recent = (
        select(Vote.participant_id, func.count(Vote.id).label("recent"))
        .where(Vote.competition_id == competition_id, Vote.cast_at > since)
        .group_by(Vote.participant_id)
        .subquery()
    )
    recent_count = func.coalesce(recent.c.recent, 0)
    result = await session.execute(
        select(Participant, recent_count)
        .outerjoin(recent, recent.c.participant_id == Participant.id)
        .where(
            Participant.competition_id == competition_id,
            Participant.status == ParticipantStatus.APPROVED,
        )
        .order_by(recent_count.desc(), Participant.vote_count.desc(), Participant.applied_at)
        .limit(limit)
    )
    return [
        TrendingEntry(
            participant=p,
            recent_votes=int(n),
            total_votes=p.vote_count,
            vote_velocity=round(int(n) / hours_back, 3),
        )
        for p, n in result.all()
    ]
