"""
Conversation models - coaching sessions and their ordered message log.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from coach_engine.kernel.models.base import Base, generate_uuid


class MessageSender(str, Enum):
    """Who authored a message."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class CoachingSession(Base):
    """
    A coaching conversation between one user and the AI coach.

    At most one session per user may be open (``ended_at IS NULL``); the
    partial unique index below enforces it at the database level. Counters
    only ever grow and stop moving once the session is closed.
    """

    __tablename__ = "coaching_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    ended_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Rolling digest of the most recently folded history
    context_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Consolidated salient facts (goals, risk history, preferences)
    long_term_summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    summary_updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    total_tokens_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    # Highest message sequence already folded into long_term_summary
    summarized_through: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tokens_since_summary: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    messages: Mapped[List["ConversationMessage"]] = relationship(
        "ConversationMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ConversationMessage.sequence",
        lazy="noload",
    )

    __table_args__ = (
        Index(
            "uq_coaching_sessions_user_open",
            "user_id",
            unique=True,
            postgresql_where=text("ended_at IS NULL"),
            sqlite_where=text("ended_at IS NULL"),
        ),
        Index("ix_coaching_sessions_user_started", "user_id", "started_at"),
    )

    @property
    def is_open(self) -> bool:
        return self.ended_at is None

    def __repr__(self) -> str:
        return f"<CoachingSession {self.id} user={self.user_id} open={self.is_open}>"


class ConversationMessage(Base):
    """
    Single message in a coaching session.

    Messages are append-only: ``sequence`` fixes insertion order and only the
    review columns may change after creation.
    """

    __tablename__ = "conversation_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("coaching_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    sender: Mapped[str] = mapped_column(String(20), nullable=False)  # user | assistant | system
    content: Mapped[str] = mapped_column(Text, nullable=False)

    token_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sentiment_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    risk_signals: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    citations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    # Review metadata (the only mutable part of a message)
    flagged_for_review: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    session: Mapped["CoachingSession"] = relationship(
        "CoachingSession",
        back_populates="messages",
    )

    __table_args__ = (
        UniqueConstraint("session_id", "sequence", name="uq_conversation_messages_session_sequence"),
        Index("ix_conversation_messages_session_created", "session_id", "created_at"),
        Index("ix_conversation_messages_review", "flagged_for_review", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ConversationMessage {self.id} #{self.sequence} {self.sender}>"
