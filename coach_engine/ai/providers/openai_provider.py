"""
OpenAI chat-completions provider.
"""

from typing import Optional, Sequence

import openai
from openai import AsyncOpenAI

from coach_engine.ai.providers.base import LLMProvider
from coach_engine.ai.types import ProviderResponse
from coach_engine.config import ProviderDescriptor
from coach_engine.core.exceptions import PermanentProviderFault, TransientProviderFault
from coach_engine.schemas.coach import ConversationTurn


class OpenAIProvider(LLMProvider):
    name = "openai"

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(descriptor)
        # SDK retries are disabled; the router owns the retry budget.
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            max_retries=0,
            timeout=descriptor.timeout_seconds,
        )

    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[ConversationTurn],
        max_tokens: int,
        temperature: float,
    ) -> ProviderResponse:
        messages = [{"role": "system", "content": system_prompt}, *self.chat_turns(turns)]
        try:
            response = await self.client.chat.completions.create(
                model=self.descriptor.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.APITimeoutError as exc:
            raise TransientProviderFault("OpenAI request timed out", self.name, kind="timeout") from exc
        except openai.RateLimitError as exc:
            raise TransientProviderFault("OpenAI rate limit", self.name, kind="rate_limit") from exc
        except openai.APIConnectionError as exc:
            raise TransientProviderFault("OpenAI unreachable", self.name, kind="unavailable") from exc
        except openai.APIStatusError as exc:
            if exc.status_code >= 500:
                raise TransientProviderFault(
                    f"OpenAI server error {exc.status_code}", self.name, kind="unavailable"
                ) from exc
            raise PermanentProviderFault(
                f"OpenAI rejected request ({exc.status_code})", self.name, {"status": exc.status_code}
            ) from exc

        if not response.choices:
            raise TransientProviderFault("OpenAI returned no choices", self.name, kind="unavailable")
        text = (response.choices[0].message.content or "").strip()
        usage = response.usage
        return ProviderResponse(
            text=text,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
        )

    async def aclose(self) -> None:
        await self.client.close()
