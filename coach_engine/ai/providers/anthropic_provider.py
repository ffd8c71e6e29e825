"""
Anthropic Messages API provider, spoken over plain httpx.
"""

from typing import Optional, Sequence

import httpx

from coach_engine.ai.providers.base import LLMProvider
from coach_engine.ai.types import ProviderResponse
from coach_engine.config import ProviderDescriptor
from coach_engine.core.exceptions import PermanentProviderFault, TransientProviderFault
from coach_engine.schemas.coach import ConversationTurn

ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

# 529 is Anthropic's "overloaded"
_RATE_LIMIT_STATUSES = {429}
_UNAVAILABLE_STATUSES = {408, 409, 500, 502, 503, 504, 529}


class AnthropicProvider(LLMProvider):
    name = "anthropic"

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        base_url: str = ANTHROPIC_API_URL,
    ):
        super().__init__(descriptor)
        self.api_key = api_key or ""
        self.base_url = base_url
        self.client = client or httpx.AsyncClient(timeout=descriptor.timeout_seconds)

    async def generate(
        self,
        system_prompt: str,
        turns: Sequence[ConversationTurn],
        max_tokens: int,
        temperature: float,
    ) -> ProviderResponse:
        payload = {
            "model": self.descriptor.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": self.chat_turns(turns),
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        try:
            resp = await self.client.post(self.base_url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise TransientProviderFault("Anthropic request timed out", self.name, kind="timeout") from exc
        except httpx.TransportError as exc:
            raise TransientProviderFault("Anthropic unreachable", self.name, kind="unavailable") from exc

        if resp.status_code in _RATE_LIMIT_STATUSES:
            raise TransientProviderFault("Anthropic rate limit", self.name, kind="rate_limit")
        if resp.status_code in _UNAVAILABLE_STATUSES or resp.status_code >= 500:
            raise TransientProviderFault(
                f"Anthropic server error {resp.status_code}", self.name, kind="unavailable"
            )
        if resp.status_code >= 400:
            raise PermanentProviderFault(
                f"Anthropic rejected request ({resp.status_code})",
                self.name,
                {"status": resp.status_code},
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise TransientProviderFault("Anthropic returned malformed JSON", self.name, kind="unavailable") from exc

        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if block.get("type") == "text"
        ).strip()
        usage = data.get("usage") or {}
        return ProviderResponse(
            text=text,
            input_tokens=int(usage.get("input_tokens", 0)),
            output_tokens=int(usage.get("output_tokens", 0)),
        )

    async def aclose(self) -> None:
        await self.client.aclose()
