from tierup.models.base import Base, engine, AsyncSessionFactory, build_engine, session_scope, utcnow
from tierup.models.models import (
    Competition,
    Participant,
    Vote,
    CompetitionTier,
    CompetitionStatus,
    ParticipantStatus,
    Trend,
)

__all__ = [
    "Base",
    "engine",
    "AsyncSessionFactory",
    "build_engine",
    "session_scope",
    "utcnow",
    "Competition",
    "Participant",
    "Vote",
    "CompetitionTier",
    "CompetitionStatus",
    "ParticipantStatus",
    "Trend",
]
