"""TierUp — competitions, participants and the vote ledger

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

Changes:
  - Create competitions table (windows, qualification rules, advancement info)
  - Create participants table, one entry per (competition, user)
  - Create votes table, one vote per (voter, participant)
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── competitions ──────────────────────────────────────────────────────────
    op.create_table(
        "competitions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.String(1000), nullable=True),
        sa.Column("tier", sa.String(20), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="draft"),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("registration_start", sa.DateTime(), nullable=False),
        sa.Column("registration_end", sa.DateTime(), nullable=False),
        sa.Column("voting_start", sa.DateTime(), nullable=False),
        sa.Column("voting_end", sa.DateTime(), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=True),
        sa.Column("qualification_rules", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.BigInteger(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column(
            "source_competition_id",
            sa.Integer(),
            sa.ForeignKey("competitions.id"),
            nullable=True,
        ),
        sa.Column(
            "advanced_to_id",
            sa.Integer(),
            sa.ForeignKey("competitions.id"),
            nullable=True,
        ),
        sa.Column("advanced_count", sa.Integer(), nullable=True),
        sa.Column("advanced_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("source_competition_id", name="uq_competitions_source"),
    )
    op.create_index("ix_competitions_tier", "competitions", ["tier"])

    # ── participants ──────────────────────────────────────────────────────────
    op.create_table(
        "participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "competition_id",
            sa.Integer(),
            sa.ForeignKey("competitions.id"),
            nullable=False,
        ),
        sa.Column("user_id", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="pending"),
        sa.Column("submission_title", sa.String(100), nullable=False),
        sa.Column("submission_description", sa.Text(), nullable=False),
        sa.Column("submission_media", sa.JSON(), nullable=False),
        sa.Column("vote_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("ranking", sa.Integer(), nullable=True),
        sa.Column("previous_ranking", sa.Integer(), nullable=True),
        sa.Column("ranked_at", sa.DateTime(), nullable=True),
        sa.Column("applied_at", sa.DateTime(), nullable=False),
        sa.Column("approved_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint(
            "competition_id", "user_id", name="uq_participants_competition_user"
        ),
    )
    op.create_index("ix_participants_competition_id", "participants", ["competition_id"])
    op.create_index("ix_participants_user_id", "participants", ["user_id"])

    # ── votes (append-only ledger) ────────────────────────────────────────────
    op.create_table(
        "votes",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "competition_id",
            sa.Integer(),
            sa.ForeignKey("competitions.id"),
            nullable=False,
        ),
        sa.Column(
            "participant_id",
            sa.Integer(),
            sa.ForeignKey("participants.id"),
            nullable=False,
        ),
        sa.Column("voter_user_id", sa.BigInteger(), nullable=False),
        sa.Column("voter_ip", sa.String(45), nullable=False),
        sa.Column("cast_at", sa.DateTime(), nullable=False),
        sa.Column(
            "voter_verified",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.UniqueConstraint(
            "voter_user_id", "participant_id", name="uq_votes_voter_participant"
        ),
    )
    op.create_index("ix_votes_competition_id", "votes", ["competition_id"])
    op.create_index("ix_votes_participant_id", "votes", ["participant_id"])
    op.create_index("ix_votes_voter_user_id", "votes", ["voter_user_id"])
    op.create_index("ix_votes_ip_cast_at", "votes", ["voter_ip", "cast_at"])


def downgrade() -> None:
    op.drop_index("ix_votes_ip_cast_at", table_name="votes")
    op.drop_index("ix_votes_voter_user_id", table_name="votes")
    op.drop_index("ix_votes_participant_id", table_name="votes")
    op.drop_index("ix_votes_competition_id", table_name="votes")
    op.drop_table("votes")

    op.drop_index("ix_participants_user_id", table_name="participants")
    op.drop_index("ix_participants_competition_id", table_name="participants")
    op.drop_table("participants")

    op.drop_index("ix_competitions_tier", table_name="competitions")
    op.drop_table("competitions")
