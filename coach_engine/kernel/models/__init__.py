"""
Kernel Data Models

SQLAlchemy models for coaching sessions, messages, escalations and the
curriculum read model.
"""

from coach_engine.kernel.models.base import Base, generate_uuid
from coach_engine.kernel.models.conversation import (
    CoachingSession,
    ConversationMessage,
    MessageSender,
)
from coach_engine.kernel.models.escalation import (
    EscalationRecord,
    EscalationPriority,
    EscalationStatus,
)
from coach_engine.kernel.models.curriculum import Course, Lesson, ContentStatus
from coach_engine.kernel.models.feedback import MessageFeedback

__all__ = [
    # Base
    "Base",
    "generate_uuid",
    # Conversations
    "CoachingSession",
    "ConversationMessage",
    "MessageSender",
    # Escalations
    "EscalationRecord",
    "EscalationPriority",
    "EscalationStatus",
    # Curriculum
    "Course",
    "Lesson",
    "ContentStatus",
    # Feedback
    "MessageFeedback",
]
