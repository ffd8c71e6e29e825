"""
Vendor Router - bounded-latency generation across an ordered provider list.

Per provider: up to ``max_retries`` attempts, each raced against the
provider's timeout, with exponential backoff between attempts. Transient
faults retry the same provider; permanent faults fail over immediately.
When every provider is exhausted the caller gets the fixed fallback payload.

CRITICAL INVARIANTS:
- ``generate`` never raises, except CancelledError which always propagates
- Total time is bounded by ``worst_case_latency``
- A provider is never re-entered within one ``generate`` call
"""

import asyncio
from typing import Awaitable, Callable, List, Sequence, Set, Tuple

from coach_engine.ai.providers.base import LLMProvider
from coach_engine.ai.types import (
    FallbackReason,
    GenerationConstraints,
    GenerationFallback,
    GenerationResult,
    GenerationSuccess,
    Prompt,
)
from coach_engine.config import ProviderDescriptor
from coach_engine.core.exceptions import PermanentProviderFault, TransientProviderFault
from coach_engine.logging_config import get_logger

logger = get_logger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

_KIND_TO_REASON = {
    "timeout": "timeout",
    "rate_limit": "rate_limit",
    "unavailable": "provider_error",
}


class VendorRouter:
    """
    Usage:
        router = VendorRouter(build_providers(settings))
        result = await router.generate(prompt, GenerationConstraints())
        if result.is_fallback:
            ...
    """

    def __init__(
        self,
        providers: Sequence[Tuple[ProviderDescriptor, LLMProvider]],
        backoff_base_seconds: float = 1.0,
        backoff_max_seconds: float = 4.0,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.providers: List[Tuple[ProviderDescriptor, LLMProvider]] = list(providers)
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self._sleep = sleep

    @property
    def provider_names(self) -> List[str]:
        return [descriptor.name for descriptor, _ in self.providers]

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number ``attempt`` (1-based)."""
        return min(self.backoff_base_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)

    @property
    def worst_case_latency(self) -> float:
        """Σ(timeout × attempts) plus every backoff delay, over distinct providers."""
        total = 0.0
        seen: Set[str] = set()
        for descriptor, _ in self.providers:
            if descriptor.name in seen:
                continue
            seen.add(descriptor.name)
            total += descriptor.timeout_seconds * descriptor.max_retries
            total += sum(self.backoff_delay(a) for a in range(1, descriptor.max_retries))
        return total

    async def generate(self, prompt: Prompt, constraints: GenerationConstraints) -> GenerationResult:
        """
        Generate a reply, failing over across providers.

        Returns:
            GenerationSuccess from the first provider that answers, or
            GenerationFallback (reason from the last fault) when all fail
        """
        reason: FallbackReason = "provider_error"
        attempts = 0
        last_provider = None
        tried: Set[str] = set()

        for descriptor, provider in self.providers:
            if descriptor.name in tried:
                continue
            tried.add(descriptor.name)
            last_provider = descriptor.name

            for attempt in range(1, descriptor.max_retries + 1):
                attempts += 1
                retryable = True
                try:
                    response = await asyncio.wait_for(
                        provider.generate(
                            prompt.system_instruction,
                            prompt.turns,
                            constraints.max_tokens,
                            constraints.temperature,
                        ),
                        timeout=descriptor.timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    reason = "timeout"
                except TransientProviderFault as fault:
                    reason = _KIND_TO_REASON.get(fault.kind, "provider_error")
                except PermanentProviderFault as fault:
                    reason = "provider_error"
                    retryable = False
                    logger.warning(
                        "LLM provider rejected request: %s",
                        fault.message,
                        extra={"provider": descriptor.name, "attempt": attempt},
                    )
                except Exception:
                    reason = "provider_error"
                    retryable = False
                    logger.exception(
                        "LLM provider raised unexpectedly",
                        extra={"provider": descriptor.name, "attempt": attempt},
                    )
                else:
                    if response.text:
                        logger.info(
                            "LLM reply generated",
                            extra={
                                "provider": descriptor.name,
                                "model": descriptor.model,
                                "attempt": attempt,
                                "tokens": response.total_tokens,
                            },
                        )
                        return GenerationSuccess(
                            text=response.text,
                            tokens_used=response.total_tokens,
                            provider_id=provider.provider_id,
                            attempts=attempts,
                        )
                    reason = "provider_error"
                    retryable = False
                    logger.warning("LLM provider returned an empty reply", extra={"provider": descriptor.name})

                if not retryable:
                    break
                logger.warning(
                    "LLM attempt failed",
                    extra={"provider": descriptor.name, "attempt": attempt, "reason": reason},
                )
                if attempt < descriptor.max_retries:
                    await self._sleep(self.backoff_delay(attempt))

            logger.info("Failing over from LLM provider", extra={"provider": descriptor.name, "reason": reason})

        logger.error(
            "All LLM providers failed; returning fallback",
            extra={"reason": reason, "attempts": attempts},
        )
        return GenerationFallback(reason=reason, attempts=attempts, last_provider=last_provider)

    async def aclose(self) -> None:
        for _, provider in self.providers:
            await provider.aclose()
