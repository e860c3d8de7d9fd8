"""
Unit tests — Input validation (validators.py).

Tests Pydantic v2 models for robustness against malformed caller input:
  - SubmissionData / MediaRef: title, description, media references
  - CompetitionData: window ordering, timezone normalisation
  - QualificationRules / AdvancementCriteria: typed optional criteria
  - VoteRequest / LeaderboardQuery: ids, addresses, paging bounds

All tests are synchronous; no database session required.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from tierup.validators import (
    AdvancementCriteria,
    CompetitionData,
    LeaderboardQuery,
    MediaRef,
    QualificationRules,
    SubmissionData,
    VoteRequest,
)

T0 = datetime(2026, 5, 1, 9, 0, 0)


def _competition(**overrides) -> dict:
    data = {
        "title": "City Photo Marathon",
        "tier": "local",
        "registration_start": T0,
        "registration_end": T0 + timedelta(days=7),
        "voting_start": T0 + timedelta(days=7),
        "voting_end": T0 + timedelta(days=14),
    }
    data.update(overrides)
    return data


# ─────────────────────────── SubmissionData ───────────────────────────────────

class TestSubmissionData:
    def test_valid_submission_with_media(self) -> None:
        s = SubmissionData(
            title="Golden Hour",
            description="Sunset over the old harbour.",
            media=[{"type": "image", "url": "https://cdn.example.org/a.jpg",
                    "filename": "a.jpg", "size": 1024}],
        )
        assert s.media[0].type == "image"

    def test_title_and_description_stripped(self) -> None:
        s = SubmissionData(title="  Golden Hour  ", description="   Sunset over the harbour   ")
        assert s.title == "Golden Hour"
        assert s.description == "Sunset over the harbour"

    def test_media_defaults_to_empty(self) -> None:
        s = SubmissionData(title="Golden Hour", description="Sunset over the harbour")
        assert s.media == []

    @pytest.mark.parametrize("title", ["ab", "   a  ", "x" * 101])
    def test_title_length_rejected(self, title: str) -> None:
        with pytest.raises(ValidationError):
            SubmissionData(title=title, description="Sunset over the harbour")

    @pytest.mark.parametrize("description", ["too short", "y" * 1001])
    def test_description_length_rejected(self, description: str) -> None:
        with pytest.raises(ValidationError):
            SubmissionData(title="Golden Hour", description=description)


class TestMediaRef:
    def test_non_http_url_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MediaRef(type="image", url="ftp://cdn.example.org/a.jpg", filename="a.jpg", size=1)

    def test_unknown_media_type_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MediaRef(type="audio", url="https://cdn.example.org/a.mp3", filename="a.mp3", size=1)

    def test_negative_size_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MediaRef(type="video", url="https://cdn.example.org/a.mp4", filename="a.mp4", size=-1)


# ─────────────────────────── CompetitionData ──────────────────────────────────

class TestCompetitionData:
    def test_valid_windows(self) -> None:
        c = CompetitionData(**_competition())
        assert c.qualification_rules.requires_approval is False

    def test_voting_may_start_when_registration_ends(self) -> None:
        c = CompetitionData(**_competition(voting_start=T0 + timedelta(days=7)))
        assert c.voting_start == c.registration_end

    def test_voting_before_registration_end_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CompetitionData(**_competition(voting_start=T0 + timedelta(days=6)))

    def test_registration_must_run_forward(self) -> None:
        with pytest.raises(ValidationError):
            CompetitionData(**_competition(registration_end=T0))

    def test_voting_must_run_forward(self) -> None:
        with pytest.raises(ValidationError):
            CompetitionData(**_competition(voting_end=T0 + timedelta(days=7)))

    def test_aware_timestamps_normalised_to_naive_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        c = CompetitionData(**_competition(
            registration_start=datetime(2026, 5, 1, 11, 0, tzinfo=plus_two),
        ))
        assert c.registration_start == datetime(2026, 5, 1, 9, 0)
        assert c.registration_start.tzinfo is None

    def test_unknown_tier_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CompetitionData(**_competition(tier="galactic"))

    def test_zero_capacity_rejected(self) -> None:
        with pytest.raises(ValidationError):
            CompetitionData(**_competition(max_participants=0))


# ─────────────────────────── Criteria ─────────────────────────────────────────

class TestCriteria:
    def test_rules_defaults(self) -> None:
        r = QualificationRules()
        assert (r.requires_approval, r.top_n, r.min_votes) == (False, None, None)

    def test_rules_reject_unknown_keys(self) -> None:
        with pytest.raises(ValidationError):
            QualificationRules(requires_approval=True, bonus_points=5)

    def test_criteria_top_n_bounds(self) -> None:
        with pytest.raises(ValidationError):
            AdvancementCriteria(top_n=0)
        with pytest.raises(ValidationError):
            AdvancementCriteria(top_n=101)

    def test_criteria_negative_min_votes_rejected(self) -> None:
        with pytest.raises(ValidationError):
            AdvancementCriteria(min_votes=-1)


# ─────────────────────────── VoteRequest / LeaderboardQuery ───────────────────

class TestVoteRequest:
    def _vote(self, **overrides) -> dict:
        data = {
            "competition_id": 1,
            "participant_id": 2,
            "voter_user_id": 3,
            "voter_ip": "203.0.113.7",
            "voter_verified": True,
        }
        data.update(overrides)
        return data

    def test_ipv6_accepted(self) -> None:
        v = VoteRequest(**self._vote(voter_ip="2001:db8::1"))
        assert str(v.voter_ip) == "2001:db8::1"

    def test_garbage_ip_rejected(self) -> None:
        with pytest.raises(ValidationError):
            VoteRequest(**self._vote(voter_ip="not-an-ip"))

    def test_non_positive_ids_rejected(self) -> None:
        with pytest.raises(ValidationError):
            VoteRequest(**self._vote(participant_id=0))

    def test_verified_flag_must_be_a_real_bool(self) -> None:
        with pytest.raises(ValidationError):
            VoteRequest(**self._vote(voter_verified="yes"))


class TestLeaderboardQuery:
    def test_defaults(self) -> None:
        q = LeaderboardQuery(competition_id=1)
        assert (q.limit, q.offset) == (50, 0)

    @pytest.mark.parametrize("limit", [0, 101])
    def test_limit_bounds(self, limit: int) -> None:
        with pytest.raises(ValidationError):
            LeaderboardQuery(competition_id=1, limit=limit)

    def test_negative_offset_rejected(self) -> None:
        with pytest.raises(ValidationError):
            LeaderboardQuery(competition_id=1, offset=-5)
