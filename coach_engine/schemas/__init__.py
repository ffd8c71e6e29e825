"""
Pydantic schemas for the caller contract and API request/response validation.
"""

from coach_engine.schemas.common import HealthResponse
from coach_engine.schemas.coach import (
    RiskLevel,
    ConversationTurn,
    UserContext,
    Citation,
    Hotline,
    EscalationSummary,
    CoachTurnRequest,
    CoachTurnResult,
    ChatMessageIn,
    MessageOut,
    SessionOut,
    SessionDetailOut,
    FeedbackIn,
    FeedbackOut,
)

__all__ = [
    "HealthResponse",
    "RiskLevel",
    "ConversationTurn",
    "UserContext",
    "Citation",
    "Hotline",
    "EscalationSummary",
    "CoachTurnRequest",
    "CoachTurnResult",
    "ChatMessageIn",
    "MessageOut",
    "SessionOut",
    "SessionDetailOut",
    "FeedbackIn",
    "FeedbackOut",
]
