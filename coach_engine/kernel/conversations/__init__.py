"""
Conversation persistence - sessions, messages and rolling summaries.
"""

from coach_engine.kernel.conversations.conversation_store import (
    ConversationStore,
    NewMessage,
    estimate_tokens,
)
from coach_engine.kernel.conversations.summarizer import (
    SalientFactSummarizer,
    SessionSummary,
    Summarizer,
)

__all__ = [
    "ConversationStore",
    "NewMessage",
    "estimate_tokens",
    "SalientFactSummarizer",
    "SessionSummary",
    "Summarizer",
]
