"""
Shared AI types - prompt, generation constraints and router results.

Kept apart from the router and providers so both can import them without
a cycle.
"""

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from coach_engine.pedagogy.content_retriever import CurriculumExcerpt
from coach_engine.schemas.coach import ConversationTurn

FALLBACK_MESSAGE = (
    "I'm experiencing some technical difficulties right now. Let's try a grounding "
    "exercise: Take a deep breath in for 4 counts, hold for 4, then exhale for 6. "
    "Focus on the sensation of your breath."
)

FallbackReason = Literal["timeout", "rate_limit", "provider_error"]


class Prompt(BaseModel):
    """Provider-agnostic request: system instruction plus ordered chat turns."""

    system_instruction: str
    turns: List[ConversationTurn]
    excerpts: List[CurriculumExcerpt] = Field(default_factory=list)


class GenerationConstraints(BaseModel):
    max_tokens: int = Field(default=1000, gt=0)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)


class ProviderResponse(BaseModel):
    """Raw result of one successful provider call."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class GenerationSuccess(BaseModel):
    text: str
    tokens_used: int
    provider_id: str
    attempts: int = 1
    is_fallback: Literal[False] = False


class GenerationFallback(BaseModel):
    """Returned when every configured provider failed."""

    text: str = FALLBACK_MESSAGE
    reason: FallbackReason
    attempts: int = 0
    last_provider: Optional[str] = None
    is_fallback: Literal[True] = True


GenerationResult = Union[GenerationSuccess, GenerationFallback]
