"""
Input validation — Pydantic v2 models.

Used to validate caller-supplied data before it reaches the services.
Keeps validation logic out of service code and makes it trivially testable.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    IPvAnyAddress,
    PositiveInt,
    StrictBool,
    field_validator,
    model_validator,
)

TierLiteral = Literal["local", "national", "global"]


def _to_naive_utc(v: datetime) -> datetime:
    if v.tzinfo is not None:
        return v.astimezone(timezone.utc).replace(tzinfo=None)
    return v


class MediaRef(BaseModel):
    """Reference to an uploaded image or video owned by the media store."""

    type: Literal["image", "video"]
    url: str
    filename: str
    size: int = Field(ge=0)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith(("http://", "https://")):
            raise ValueError("Media URL must be an http(s) URL")
        return v


class SubmissionData(BaseModel):
    """
    Participant submission validated before writing to DB.

    Attributes
    ----------
    title       : 3–100 chars
    description : 10–1000 chars
    media       : list of MediaRef
    """

    title: str
    description: str
    media: List[MediaRef] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3 or len(v) > 100:
            raise ValueError("Title must contain between 3 and 100 characters")
        return v

    @field_validator("description")
    @classmethod
    def validate_description(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 10 or len(v) > 1000:
            raise ValueError("Description must contain between 10 and 1000 characters")
        return v


class QualificationRules(BaseModel):
    """Per-competition admission / qualification policy."""

    model_config = ConfigDict(extra="forbid")

    requires_approval: bool = False
    top_n: Optional[int] = Field(default=None, ge=1, le=100)
    min_votes: Optional[int] = Field(default=None, ge=0)


class AdvancementCriteria(BaseModel):
    """
    Winner-selection criteria for an advancement run.

    top_n     : positions taken from the leaderboard (default derived from field size)
    min_votes : minimum vote count a top-n entry must also have (default 0)
    """

    model_config = ConfigDict(extra="forbid")

    top_n: Optional[int] = Field(default=None, ge=1, le=100)
    min_votes: Optional[int] = Field(default=None, ge=0)


class CompetitionData(BaseModel):
    """Competition definition; windows must not overlap and must run forward."""

    title: str
    description: Optional[str] = None
    tier: TierLiteral = "local"
    country: Optional[str] = None
    registration_start: datetime
    registration_end: datetime
    voting_start: datetime
    voting_end: datetime
    max_participants: Optional[int] = Field(default=None, ge=1)
    qualification_rules: QualificationRules = Field(default_factory=QualificationRules)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 3 or len(v) > 255:
            raise ValueError("Title must contain between 3 and 255 characters")
        return v

    @field_validator(
        "registration_start", "registration_end", "voting_start", "voting_end"
    )
    @classmethod
    def normalise_timestamp(cls, v: datetime) -> datetime:
        return _to_naive_utc(v)

    @model_validator(mode="after")
    def validate_windows(self) -> "CompetitionData":
        if not self.registration_start < self.registration_end:
            raise ValueError("Registration must end after it starts")
        if not self.registration_end <= self.voting_start:
            raise ValueError("Voting cannot start before registration ends")
        if not self.voting_start < self.voting_end:
            raise ValueError("Voting must end after it starts")
        return self


class VoteRequest(BaseModel):
    competition_id: PositiveInt
    participant_id: PositiveInt
    voter_user_id: PositiveInt
    voter_ip: IPvAnyAddress
    voter_verified: StrictBool


class LeaderboardQuery(BaseModel):
    competition_id: PositiveInt
    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)
