"""Create consultation session and transcript tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

What:  Tables written by the live consultation assistant.
    consultation_sessions   one row per live AI session attached to a call
    transcript_entries      finished speaker turns, ordered per session

Rollback: downgrade() drops both tables and every stored transcript.
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "consultation_sessions",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("call_id", sa.String(255), nullable=False, comment="Stream call id"),
        sa.Column(
            "call_type",
            sa.String(64),
            nullable=False,
            server_default=sa.text("'default'"),
            comment="Stream call type",
        ),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("user_name", sa.String(255), nullable=True),
        sa.Column("is_guest", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "status",
            sa.String(32),
            nullable=False,
            server_default=sa.text("'idle'"),
            comment="idle, joining, connected, ended, error",
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "started_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.Column("ended_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_consultation_sessions_call_id", "consultation_sessions", ["call_id"])
    op.create_index("idx_consultation_sessions_user_id", "consultation_sessions", ["user_id"])

    op.create_table(
        "transcript_entries",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("speaker", sa.String(16), nullable=False, comment="user or model"),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(
            ["session_id"], ["consultation_sessions.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_transcript_entries_session_seq",
        "transcript_entries",
        ["session_id", "sequence"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("idx_transcript_entries_session_seq", table_name="transcript_entries")
    op.drop_table("transcript_entries")
    op.drop_index("idx_consultation_sessions_user_id", table_name="consultation_sessions")
    op.drop_index("idx_consultation_sessions_call_id", table_name="consultation_sessions")
    op.drop_table("consultation_sessions")
