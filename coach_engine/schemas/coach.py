"""
Coaching engine schemas - caller contract, user context and API payloads.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    """Risk band derived from the composite score."""
    NORMAL = "normal"
    MEDIUM = "medium"
    HIGH = "high"


class ConversationTurn(BaseModel):
    """Provider-agnostic chat turn."""

    role: Literal["user", "assistant", "system"]
    content: str


class UserContext(BaseModel):
    """
    Facts about the user supplied by the progress-tracking collaborator.

    ``local_hour`` (0-23) or ``timestamp`` drive the late-night signal; the
    risk assessor never reads the wall clock itself.
    """

    completed_lessons: int = 0
    current_level: str = "beginner"
    recent_activity: str = "none"
    preferences: Dict[str, Any] = Field(default_factory=dict)
    locale: str = "US"
    local_hour: Optional[int] = Field(default=None, ge=0, le=23)
    timestamp: Optional[datetime] = None
    engagement_trend: Optional[str] = None  # e.g. "declining"
    prior_escalations: int = 0
    risk_history: List[str] = Field(default_factory=list)

    @property
    def has_prior_flags(self) -> bool:
        return self.prior_escalations > 0 or bool(self.risk_history)


class Citation(BaseModel):
    """Reference from an assistant reply to a retrieved lesson."""

    model_config = ConfigDict(frozen=True)

    lesson_id: str
    title: str
    course_title: str


class Hotline(BaseModel):
    name: str
    phone: Optional[str] = None
    text: Optional[str] = None
    available: str = "24/7"


class EscalationSummary(BaseModel):
    """What the caller learns about an escalation created for this turn."""

    record_id: Optional[uuid.UUID] = None
    priority: str
    status: Literal["queued_for_review", "queue_unavailable"] = "queued_for_review"
    queued: bool = True


class CoachTurnRequest(BaseModel):
    """Inbound caller contract: (user_id, session_id?, message, user_context)."""

    user_id: uuid.UUID
    session_id: Optional[uuid.UUID] = None
    message: str
    user_context: UserContext = Field(default_factory=UserContext)


class CoachTurnResult(BaseModel):
    """
    Outbound caller contract.

    ``outcome`` tells the caller which path produced the reply:
    grounded (model reply), safety (scripted crisis reply), fallback
    (every provider failed) or rejected (validation fault, nothing processed).
    """

    outcome: Literal["grounded", "safety", "fallback", "rejected"]
    reply_text: str
    citations: List[Citation] = Field(default_factory=list)
    risk_level: RiskLevel = RiskLevel.NORMAL
    risk_score: float = 0.0
    escalation: Optional[EscalationSummary] = None
    resources: List[Hotline] = Field(default_factory=list)
    session_id: Optional[uuid.UUID] = None
    user_message_id: Optional[uuid.UUID] = None
    assistant_message_id: Optional[uuid.UUID] = None
    provider_id: Optional[str] = None
    is_fallback: bool = False
    fallback_reason: Optional[str] = None
    rejection_reason: Optional[str] = None


# ── API payloads ─────────────────────────────────────────────────────────

class ChatMessageIn(BaseModel):
    """Message sent to the AI coach."""
    message: str = Field(..., min_length=1)
    conversation_id: Optional[uuid.UUID] = None
    user_context: UserContext = Field(default_factory=UserContext)


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    sequence: int
    sender: str
    content: str
    citations: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    started_at: datetime
    ended_at: Optional[datetime] = None
    total_tokens_used: int
    message_count: int
    context_summary: Optional[str] = None


class SessionDetailOut(SessionOut):
    messages: List[MessageOut] = Field(default_factory=list)


class FeedbackIn(BaseModel):
    message_id: uuid.UUID
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=500)


class FeedbackOut(BaseModel):
    id: uuid.UUID
    message_id: uuid.UUID
    rating: int
