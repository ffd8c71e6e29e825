"""
Conversation Store - coaching sessions and their append-only message log.

CRITICAL INVARIANTS:
- At most one open session per user (partial unique index; a lost race
  resolves to the winner's row)
- Message sequence numbers are unique per session and follow insertion order
- Session counters only grow, through additive SQL expressions, and stop
  moving once the session is closed
- Summarization never deletes messages; it only advances ``summarized_through``
"""

import math
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import and_, desc, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from coach_engine.core.exceptions import SessionClosedError, SessionNotFoundError
from coach_engine.kernel.conversations.summarizer import SalientFactSummarizer, Summarizer
from coach_engine.kernel.models.conversation import (
    CoachingSession,
    ConversationMessage,
    MessageSender,
)
from coach_engine.logging_config import get_logger
from coach_engine.schemas.coach import ConversationTurn

logger = get_logger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count (about four characters per token) for messages the vendor did not meter."""
    if not text:
        return 0
    return max(1, math.ceil(len(text) / 4))


class NewMessage(BaseModel):
    """A message about to be appended to a session."""

    sender: MessageSender
    content: str
    token_count: int = Field(default=0, ge=0)
    sentiment_score: Optional[float] = None
    risk_signals: dict = Field(default_factory=dict)
    citations: List[dict] = Field(default_factory=list)
    flagged_for_review: bool = False


class ConversationStore:
    """
    Service for coaching sessions.

    Usage:
        store = ConversationStore(db)
        session = await store.open(user_id)
        msg = await store.append(session.id, NewMessage(sender=MessageSender.USER, content=text))
    """

    def __init__(
        self,
        db: AsyncSession,
        summarizer: Optional[Summarizer] = None,
        summary_message_threshold: int = 30,
        summary_token_threshold: int = 6000,
        verbatim_window: int = 10,
    ):
        self.db = db
        self.summarizer = summarizer or SalientFactSummarizer()
        self.summary_message_threshold = summary_message_threshold
        self.summary_token_threshold = summary_token_threshold
        self.verbatim_window = verbatim_window

    # ── Sessions ─────────────────────────────────────────────────────────

    async def get(self, session_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> CoachingSession:
        """
        Load a session, optionally checking ownership.

        Raises:
            SessionNotFoundError: missing, or owned by someone else
        """
        session = await self.db.get(CoachingSession, session_id, populate_existing=True)
        if session is None or (user_id is not None and session.user_id != user_id):
            raise SessionNotFoundError(session_id)
        return session

    async def get_open(self, user_id: uuid.UUID) -> Optional[CoachingSession]:
        result = await self.db.execute(
            select(CoachingSession)
            .where(
                CoachingSession.user_id == user_id,
                CoachingSession.ended_at.is_(None),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def open(self, user_id: uuid.UUID) -> CoachingSession:
        """Return the user's open session, creating one if none exists."""
        existing = await self.get_open(user_id)
        if existing is not None:
            return existing

        session = CoachingSession(user_id=user_id)
        try:
            async with self.db.begin_nested():
                self.db.add(session)
                await self.db.flush()
        except IntegrityError:
            # A concurrent request opened one first; use theirs
            winner = await self.get_open(user_id)
            if winner is None:
                raise
            return winner

        logger.info("Coaching session opened", extra={"session_id": str(session.id), "user_id": str(user_id)})
        return session

    async def resolve(self, user_id: uuid.UUID, session_id: Optional[uuid.UUID] = None) -> CoachingSession:
        """
        Session for the next turn: the requested one when it is the user's and
        still open, otherwise the user's open session.
        """
        if session_id is not None:
            session = await self.db.get(CoachingSession, session_id, populate_existing=True)
            if session is not None and session.user_id == user_id and session.is_open:
                return session
            logger.info(
                "Requested session unavailable; using open session",
                extra={"requested_session_id": str(session_id), "user_id": str(user_id)},
            )
        return await self.open(user_id)

    async def close(self, session_id: uuid.UUID, user_id: Optional[uuid.UUID] = None) -> CoachingSession:
        """Mark a session ended. Closing an already-closed session is a no-op."""
        session = await self.get(session_id, user_id)
        result = await self.db.execute(
            update(CoachingSession)
            .where(
                CoachingSession.id == session_id,
                CoachingSession.ended_at.is_(None),
            )
            .values(ended_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info("Coaching session closed", extra={"session_id": str(session_id)})
        await self.db.refresh(session)
        return session

    async def list_sessions(
        self,
        user_id: uuid.UUID,
        limit: int = 20,
        offset: int = 0,
    ) -> List[CoachingSession]:
        """User's sessions, newest first."""
        result = await self.db.execute(
            select(CoachingSession)
            .where(CoachingSession.user_id == user_id)
            .order_by(desc(CoachingSession.started_at), desc(CoachingSession.id))
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    # ── Messages ─────────────────────────────────────────────────────────

    async def append(self, session_id: uuid.UUID, message: NewMessage) -> ConversationMessage:
        """
        Append a message, assigning the next sequence number and adding its
        tokens to the session totals in the same statement.

        Raises:
            SessionNotFoundError: no such session
            SessionClosedError: the session has ended
        """
        tokens = message.token_count
        result = await self.db.execute(
            update(CoachingSession)
            .where(
                CoachingSession.id == session_id,
                CoachingSession.ended_at.is_(None),
            )
            .values(
                message_count=CoachingSession.message_count + 1,
                total_tokens_used=CoachingSession.total_tokens_used + tokens,
                tokens_since_summary=CoachingSession.tokens_since_summary + tokens,
            )
            .returning(CoachingSession.message_count)
            .execution_options(synchronize_session=False)
        )
        sequence = result.scalar_one_or_none()
        if sequence is None:
            exists = await self.db.scalar(
                select(func.count()).select_from(CoachingSession).where(CoachingSession.id == session_id)
            )
            if not exists:
                raise SessionNotFoundError(session_id)
            raise SessionClosedError(session_id)

        msg = ConversationMessage(
            session_id=session_id,
            sequence=sequence,
            sender=message.sender.value,
            content=message.content,
            token_count=tokens,
            sentiment_score=message.sentiment_score,
            risk_signals=message.risk_signals,
            citations=message.citations,
            flagged_for_review=message.flagged_for_review,
        )
        self.db.add(msg)
        await self.db.flush()
        return msg

    async def messages(
        self,
        session_id: uuid.UUID,
        limit: Optional[int] = None,
    ) -> List[ConversationMessage]:
        """All messages of a session in sequence order (oldest first)."""
        stmt = (
            select(ConversationMessage)
            .where(ConversationMessage.session_id == session_id)
            .order_by(ConversationMessage.sequence)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def recent_history(
        self,
        session_id: uuid.UUID,
        limit: int = 10,
        include_summarized: bool = False,
    ) -> List[ConversationTurn]:
        """
        Last ``limit`` messages as chat turns, oldest first.

        By default only messages not yet folded into the long-term summary
        are returned.
        """
        conditions = [ConversationMessage.session_id == session_id]
        if not include_summarized:
            summarized_through = (
                select(CoachingSession.summarized_through)
                .where(CoachingSession.id == session_id)
                .scalar_subquery()
            )
            conditions.append(ConversationMessage.sequence > summarized_through)

        result = await self.db.execute(
            select(ConversationMessage.sender, ConversationMessage.content)
            .where(and_(*conditions))
            .order_by(desc(ConversationMessage.sequence))
            .limit(limit)
        )
        rows = list(result.all())
        rows.reverse()
        return [ConversationTurn(role=sender, content=content) for sender, content in rows]

    # ── Summarization ────────────────────────────────────────────────────

    async def maybe_summarize(self, session_id: uuid.UUID) -> bool:
        """
        Fold older messages into the long-term summary once the unsummarized
        backlog passes the message or token threshold. The newest
        ``verbatim_window`` messages always stay verbatim.

        Returns:
            True if a summary was written
        """
        session = await self.get(session_id)
        backlog = session.message_count - session.summarized_through
        if (
            backlog <= self.summary_message_threshold
            and session.tokens_since_summary <= self.summary_token_threshold
        ):
            return False

        cutoff = session.message_count - self.verbatim_window
        if cutoff <= session.summarized_through:
            return False

        result = await self.db.execute(
            select(ConversationMessage)
            .where(
                ConversationMessage.session_id == session_id,
                ConversationMessage.sequence > session.summarized_through,
                ConversationMessage.sequence <= cutoff,
            )
            .order_by(ConversationMessage.sequence)
        )
        folded = list(result.scalars().all())
        summary = self.summarizer.summarize(session.long_term_summary, folded)

        remaining_tokens = await self.db.scalar(
            select(func.coalesce(func.sum(ConversationMessage.token_count), 0)).where(
                ConversationMessage.session_id == session_id,
                ConversationMessage.sequence > cutoff,
            )
        )

        # Compare-and-set on summarized_through so two concurrent folds cannot
        # both apply.
        update_result = await self.db.execute(
            update(CoachingSession)
            .where(
                CoachingSession.id == session_id,
                CoachingSession.summarized_through == session.summarized_through,
            )
            .values(
                long_term_summary=summary.long_term_summary,
                context_summary=summary.context_summary,
                summary_updated_at=datetime.now(timezone.utc),
                summarized_through=cutoff,
                tokens_since_summary=int(remaining_tokens or 0),
            )
            .execution_options(synchronize_session=False)
        )
        if not update_result.rowcount:
            return False

        logger.info(
            "Session history summarized",
            extra={"session_id": str(session_id), "summarized_through": cutoff, "folded": len(folded)},
        )
        return True
