"""
ProBD Backend - Consultation SQLAlchemy Models
==============================================

What:  ORM models for live consultation sessions and their transcripts.
Who:   Written by ConsultationStore while a live session runs; read by the
       consultation routes; tracked by Alembic.

Tables:
    consultation_sessions  one row per live AI session opened from a call
    transcript_entries     one row per finished speaker turn, ordered by
                           `sequence` within a session
"""

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy import text as sql_text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from probd.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConsultationSession(Base):
    """
    A live AI-assisted consultation attached to a video call.

    Lifecycle (status column):
        idle → joining → connected → ended
                    ↘          ↘
                     error      error
    """

    __tablename__ = "consultation_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sql_text("gen_random_uuid()"),
    )

    # Stream call this session belongs to (e.g. "adhoc-u1-1718000000000")
    call_id: Mapped[str] = mapped_column(String(255), nullable=False)
    call_type: Mapped[str] = mapped_column(
        String(64), nullable=False, default="default", server_default=sql_text("'default'")
    )

    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    is_guest: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=sql_text("false")
    )

    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="idle", server_default=sql_text("'idle'")
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=sql_text("CURRENT_TIMESTAMP"),
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    entries: Mapped[List["TranscriptEntry"]] = relationship(
        back_populates="session",
        order_by="TranscriptEntry.sequence",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_consultation_sessions_call_id", "call_id"),
        Index("idx_consultation_sessions_user_id", "user_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ConsultationSession(id={self.id}, call_id='{self.call_id}', "
            f"status='{self.status}')>"
        )


class TranscriptEntry(Base):
    """One completed turn of speech, either the participant or the model."""

    __tablename__ = "transcript_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=sql_text("gen_random_uuid()"),
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("consultation_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # "user" or "model"
    speaker: Mapped[str] = mapped_column(String(16), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=sql_text("CURRENT_TIMESTAMP"),
    )

    session: Mapped[ConsultationSession] = relationship(back_populates="entries")

    __table_args__ = (
        Index("idx_transcript_entries_session_seq", "session_id", "sequence", unique=True),
    )

    def __repr__(self) -> str:
        return (
            f"<TranscriptEntry(session_id={self.session_id}, seq={self.sequence}, "
            f"speaker='{self.speaker}')>"
        )
