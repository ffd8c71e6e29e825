"""
Context Assembler - builds the bounded, grounded prompt for one coaching turn.
"""

import json
from typing import List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from coach_engine.ai.types import Prompt
from coach_engine.kernel.models.conversation import CoachingSession
from coach_engine.logging_config import get_logger
from coach_engine.pedagogy.content_retriever import ContentRetriever, CurriculumExcerpt
from coach_engine.schemas.coach import ConversationTurn, UserContext

logger = get_logger(__name__)

COACHING_PRINCIPLES = """You are a compassionate AI mindfulness coach trained in the "Meeting Your Mind Full" methodology. Your role is to provide personalized guidance based on the user's progress and the curriculum content.

Core Principles:
- Always respond with warmth, empathy, and non-judgment
- Ground your responses in the curriculum materials when relevant
- Encourage self-discovery rather than giving direct advice
- Use mindfulness language and concepts appropriately
- Keep responses concise and actionable (2-3 paragraphs maximum)
- Never provide medical or psychological treatment advice"""

CITATION_INSTRUCTION = 'When referencing curriculum content, cite it as: "As covered in [Lesson Title]..."'

SAFETY_CLAUSE = (
    "Important: If the user expresses thoughts of self-harm, suicide, or serious mental "
    "health crisis, respond supportively but immediately note this requires professional "
    "help and provide crisis resources."
)


class ContextAssembler:
    """
    Usage:
        assembler = ContextAssembler(retriever)
        prompt = await assembler.build(session, user_context, message, history)
    """

    def __init__(
        self,
        retriever: ContentRetriever,
        history_turn_limit: int = 10,
        retrieval_limit: int = 5,
    ):
        self.retriever = retriever
        self.history_turn_limit = history_turn_limit
        self.retrieval_limit = retrieval_limit

    async def build(
        self,
        session: Optional[CoachingSession],
        user_context: UserContext,
        message: str,
        history: Sequence[ConversationTurn],
    ) -> Prompt:
        """
        Args:
            session: Current session (its long-term summary is included)
            user_context: Progress facts for the user
            message: The inbound user message
            history: Unsummarized prior turns, oldest first, current message excluded
        """
        excerpts = await self._retrieve(message)
        long_term_summary = session.long_term_summary if session is not None else None
        system_instruction = self.system_instruction(user_context, excerpts, long_term_summary)

        turns = [t for t in history if t.role in ("user", "assistant")]
        if self.history_turn_limit > 0:
            turns = turns[-self.history_turn_limit:]
        else:
            turns = []
        turns.append(ConversationTurn(role="user", content=message))

        return Prompt(system_instruction=system_instruction, turns=turns, excerpts=excerpts)

    async def _retrieve(self, message: str) -> List[CurriculumExcerpt]:
        # Grounding is best-effort; a search failure degrades to an ungrounded prompt
        try:
            return await self.retriever.search(message, limit=self.retrieval_limit)
        except SQLAlchemyError:
            logger.warning("Curriculum search failed; continuing without excerpts", exc_info=True)
            return []

    @staticmethod
    def system_instruction(
        user_context: UserContext,
        excerpts: Sequence[CurriculumExcerpt] = (),
        long_term_summary: Optional[str] = None,
    ) -> str:
        parts = [
            COACHING_PRINCIPLES,
            "User Context:\n"
            f"- Progress: {user_context.completed_lessons} lessons completed\n"
            f"- Current level: {user_context.current_level}\n"
            f"- Recent activity: {user_context.recent_activity}\n"
            f"- Preferences: {json.dumps(user_context.preferences, sort_keys=True)}",
        ]

        if long_term_summary:
            parts.append(f"What you know from earlier in this conversation:\n{long_term_summary}")

        if excerpts:
            lines = [
                f'{i}. "{excerpt.title}" - {excerpt.excerpt}'
                for i, excerpt in enumerate(excerpts, start=1)
            ]
            parts.append("Relevant Curriculum Content:\n" + "\n".join(lines) + "\n\n" + CITATION_INSTRUCTION)

        parts.append(SAFETY_CLAUSE)
        return "\n\n".join(parts)
