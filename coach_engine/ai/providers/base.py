"""
LLM provider interface.

Providers do exactly one call per ``generate``. Retries, timeouts and
failover belong to the vendor router; a provider only translates its SDK's
errors into transient or permanent faults.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from coach_engine.ai.types import ProviderResponse
from coach_engine.config import ProviderDescriptor
from coach_engine.schemas.coach import ConversationTurn


class LLMProvider(ABC):
    """A single language-model backend."""

    name: str = "base"

    def __init__(self, descriptor: ProviderDescriptor):
        self.descriptor = descriptor

    @property
    def provider_id(self) -> str:
        return f"{self.descriptor.name}:{self.descriptor.model}"

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[ConversationTurn],
        max_tokens: int,
        temperature: float,
    ) -> ProviderResponse:
        """
        Produce one reply.

        Raises:
            TransientProviderFault: timeout, rate limit or temporary outage
            PermanentProviderFault: auth failure or malformed request
        """

    async def aclose(self) -> None:
        """Release network resources held by the provider."""

    @staticmethod
    def chat_turns(turns: Sequence[ConversationTurn]) -> List[dict]:
        """User/assistant turns as role/content dicts; system turns dropped."""
        return [
            {"role": turn.role, "content": turn.content}
            for turn in turns
            if turn.role in ("user", "assistant")
        ]


def usable_key(key: Optional[str]) -> bool:
    """False for empty keys and the ``sk-your-...`` placeholders shipped in .env examples."""
    key = (key or "").strip()
    return bool(key) and not key.startswith("sk-your-") and not key.startswith("your-")
