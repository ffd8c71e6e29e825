"""
Escalation records - redacted hand-off of flagged messages to human review.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Index, JSON, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from coach_engine.kernel.models.base import Base, generate_uuid


class EscalationPriority(str, Enum):
    """Review priority."""
    HIGH = "high"
    URGENT = "urgent"


class EscalationStatus(str, Enum):
    """Review lifecycle: pending → in_review → completed | escalated."""
    PENDING = "pending"
    IN_REVIEW = "in_review"
    COMPLETED = "completed"
    ESCALATED = "escalated"


class EscalationRecord(Base):
    """
    A crisis-flagged message queued for human review.

    Only redacted content is ever stored. When redaction cannot be verified
    the content column stays NULL and ``content_withheld`` is set.
    """

    __tablename__ = "escalation_records"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False)
    session_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("coaching_sessions.id", ondelete="SET NULL"),
        nullable=True,
    )
    # One record per triggering message
    message_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("conversation_messages.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    content_type: Mapped[str] = mapped_column(String(50), default="crisis_detection", nullable=False)
    risk_score: Mapped[float] = mapped_column(Float, nullable=False)
    signals: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    redacted_content: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_withheld: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    suggested_resources: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        default=EscalationStatus.PENDING.value,
        nullable=False,
    )

    reviewed_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_escalation_records_status_priority", "status", "priority", "created_at"),
        Index("ix_escalation_records_user", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EscalationRecord {self.id} {self.priority}/{self.status}>"
