"""
Stub provider - deterministic offline replies for development and tests.
"""

from typing import Optional, Sequence

from coach_engine.ai.providers.base import LLMProvider
from coach_engine.ai.types import ProviderResponse
from coach_engine.config import ProviderDescriptor
from coach_engine.schemas.coach import ConversationTurn

STUB_REPLY = (
    "Thank you for sharing that with me. Let's pause for a moment and notice "
    "what you are feeling right now, without judging it. What do you notice "
    "in your body as you breathe in and out?"
)


class StubProvider(LLMProvider):
    """Always answers with the same text; never fails."""

    name = "stub"

    def __init__(self, descriptor: ProviderDescriptor, api_key: Optional[str] = None, reply: str = STUB_REPLY):
        super().__init__(descriptor)
        self.reply = reply

    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[ConversationTurn],
        max_tokens: int,
        temperature: float,
    ) -> ProviderResponse:
        words_in = len(system_prompt.split()) + sum(len(t.content.split()) for t in turns)
        return ProviderResponse(
            text=self.reply,
            input_tokens=words_in,
            output_tokens=len(self.reply.split()),
        )
