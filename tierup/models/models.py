"""
ORM models for the TierUp competition engine.

Domain overview
---------------
Competition  — a public contest at one tier (local / national / global)
  └─ Participant — an entry submitted by a user
       └─ Vote   — one verified user's vote for one entry (immutable)

A completed competition may be advanced exactly once; the next-tier
competition points back to it through ``source_competition_id``.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tierup.models.base import Base, utcnow
from tierup.validators import QualificationRules

# ─────────────────────────── Constants ────────────────────────────────────────

class CompetitionTier:
    LOCAL    = "local"
    NATIONAL = "national"
    GLOBAL   = "global"

    # The only legal promotions
    NEXT: dict[str, str] = {
        LOCAL:    NATIONAL,
        NATIONAL: GLOBAL,
    }

    LABELS = {
        LOCAL:    "Local",
        NATIONAL: "National",
        GLOBAL:   "Global",
    }

    # Downstream min_votes = mean winner votes × multiplier
    MIN_VOTES_MULTIPLIER: dict[str, int] = {
        NATIONAL: 2,
        GLOBAL:   3,
    }

    DEFAULT_CAPACITY: dict[str, int] = {
        NATIONAL: 100,
        GLOBAL:   50,
    }


class CompetitionStatus:
    DRAFT               = "draft"
    REGISTRATION_OPEN   = "registration_open"
    REGISTRATION_CLOSED = "registration_closed"
    VOTING_OPEN         = "voting_open"
    VOTING_CLOSED       = "voting_closed"
    COMPLETED           = "completed"

    # Monotonic: a competition only ever moves to the right
    ORDER = [
        DRAFT,
        REGISTRATION_OPEN,
        REGISTRATION_CLOSED,
        VOTING_OPEN,
        VOTING_CLOSED,
        COMPLETED,
    ]

    FROZEN = {VOTING_CLOSED, COMPLETED}


class ParticipantStatus:
    PENDING   = "pending"
    APPROVED  = "approved"
    REJECTED  = "rejected"
    WITHDRAWN = "withdrawn"

    EMOJI = {
        PENDING:   "⏳",
        APPROVED:  "✅",
        REJECTED:  "❌",
        WITHDRAWN: "↩️",
    }


class Trend:
    UP   = "up"
    DOWN = "down"
    SAME = "same"
    NEW  = "new"


# ─────────────────────────── Models ───────────────────────────────────────────

class Competition(Base):
    """A public contest at one tier of the promotion ladder."""
    __tablename__ = "competitions"
    __table_args__ = (
        UniqueConstraint("source_competition_id", name="uq_competitions_source"),
    )

    id:                 Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    title:              Mapped[str]           = mapped_column(String(255))
    description:        Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    tier:               Mapped[str]           = mapped_column(String(20), index=True)   # CompetitionTier.*
    status:             Mapped[str]           = mapped_column(String(30), default=CompetitionStatus.DRAFT)
    country:            Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    registration_start: Mapped[datetime]      = mapped_column(DateTime)
    registration_end:   Mapped[datetime]      = mapped_column(DateTime)
    voting_start:       Mapped[datetime]      = mapped_column(DateTime)
    voting_end:         Mapped[datetime]      = mapped_column(DateTime)
    max_participants:   Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    qualification_rules: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)
    created_by:         Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    created_at:         Mapped[datetime]      = mapped_column(DateTime, default=utcnow)

    # Set when this competition was spawned by advancement
    source_competition_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("competitions.id"), nullable=True
    )

    # advancement_info: write-once, advanced_at IS NULL until advanced
    advanced_to_id: Mapped[Optional[int]]      = mapped_column(ForeignKey("competitions.id"), nullable=True)
    advanced_count: Mapped[Optional[int]]      = mapped_column(Integer, nullable=True)
    advanced_at:    Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    participants: Mapped[List["Participant"]] = relationship(
        back_populates="competition", cascade="all, delete-orphan"
    )

    @property
    def rules(self) -> QualificationRules:
        return QualificationRules.model_validate(self.qualification_rules or {})

    @property
    def tier_label(self) -> str:
        return CompetitionTier.LABELS.get(self.tier, self.tier)

    @property
    def advancement_info(self) -> Optional[Dict[str, Any]]:
        if self.advanced_at is None:
            return None
        return {
            "next_tier_competition_id":   self.advanced_to_id,
            "advanced_participant_count": self.advanced_count,
            "advancement_date":           self.advanced_at.isoformat(),
        }

    @property
    def is_frozen(self) -> bool:
        return self.status in CompetitionStatus.FROZEN

    def is_registration_open(self, now: datetime) -> bool:
        return self.registration_start <= now <= self.registration_end

    def is_voting_window(self, now: datetime) -> bool:
        return self.voting_start <= now <= self.voting_end


class Participant(Base):
    """A user's entry in one competition."""
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", name="uq_participants_competition_user"),
    )

    id:                     Mapped[int]           = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id:         Mapped[int]           = mapped_column(ForeignKey("competitions.id"), index=True)
    user_id:                Mapped[int]           = mapped_column(BigInteger, index=True)
    status:                 Mapped[str]           = mapped_column(String(30), default=ParticipantStatus.PENDING)
    submission_title:       Mapped[str]           = mapped_column(String(100))
    submission_description: Mapped[str]           = mapped_column(Text)
    submission_media:       Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list)
    # Cached counter; only ever changed by an atomic UPDATE in the vote ledger
    vote_count:             Mapped[int]           = mapped_column(Integer, default=0, server_default="0")
    ranking:                Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    previous_ranking:       Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    ranked_at:              Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    applied_at:             Mapped[datetime]      = mapped_column(DateTime, default=utcnow)
    approved_at:            Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    competition: Mapped["Competition"] = relationship(back_populates="participants")

    @property
    def submission(self) -> Dict[str, Any]:
        return {
            "title":       self.submission_title,
            "description": self.submission_description,
            "media":       list(self.submission_media or []),
        }

    @property
    def status_emoji(self) -> str:
        return ParticipantStatus.EMOJI.get(self.status, "❓")


class Vote(Base):
    """
    One accepted vote.  Rows are never updated or deleted.
    The unique constraint is the last line of defence against double votes.
    """
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("voter_user_id", "participant_id", name="uq_votes_voter_participant"),
        Index("ix_votes_ip_cast_at", "voter_ip", "cast_at"),
    )

    id:             Mapped[int]      = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[int]      = mapped_column(ForeignKey("competitions.id"), index=True)
    participant_id: Mapped[int]      = mapped_column(ForeignKey("participants.id"), index=True)
    voter_user_id:  Mapped[int]      = mapped_column(BigInteger, index=True)
    voter_ip:       Mapped[str]      = mapped_column(String(45))
    cast_at:        Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    voter_verified: Mapped[bool]     = mapped_column(Boolean, default=False)
