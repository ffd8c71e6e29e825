"""
Exception hierarchy for the coaching engine.

Provider faults are classified so the VendorRouter can decide between
retry, failover and fallback. Safety faults (redaction, queue writes) are
raised inside the escalation path and handled there; they never reach the
user-facing response.
"""

from typing import Any, Literal, Optional


class CoachEngineError(Exception):
    """Base exception for all coaching engine errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


# ── Provider faults ──────────────────────────────────────────────────────

TransientKind = Literal["timeout", "rate_limit", "unavailable"]


class ProviderFault(CoachEngineError):
    """A model vendor call failed."""

    def __init__(self, message: str, provider: str = "", details: Optional[dict[str, Any]] = None) -> None:
        self.provider = provider
        super().__init__(message, details)


class TransientProviderFault(ProviderFault):
    """Timeout, rate limit or temporary outage. Retried, then failed over."""

    def __init__(
        self,
        message: str,
        provider: str = "",
        kind: TransientKind = "unavailable",
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.kind = kind
        super().__init__(message, provider, details)


class PermanentProviderFault(ProviderFault):
    """Authentication or malformed-request failure. Never retried on the same provider."""


# ── Request faults ───────────────────────────────────────────────────────

class ValidationFault(CoachEngineError):
    """Inbound message rejected before any processing."""

    def __init__(self, message: str, field: str = "message", code: str = "invalid") -> None:
        self.field = field
        self.code = code
        super().__init__(message, {"field": field, "code": code})


class SessionNotFoundError(CoachEngineError):
    """Session does not exist or does not belong to the caller."""

    def __init__(self, session_id: Any) -> None:
        self.session_id = session_id
        super().__init__(f"Coaching session not found: {session_id}", {"session_id": str(session_id)})


class SessionClosedError(CoachEngineError):
    """Write attempted on a closed session."""

    def __init__(self, session_id: Any) -> None:
        self.session_id = session_id
        super().__init__(f"Coaching session is closed: {session_id}", {"session_id": str(session_id)})


# ── Escalation faults ────────────────────────────────────────────────────

class RedactionFault(CoachEngineError):
    """Redaction could not be verified complete; content must be withheld."""


class QueueWriteFault(CoachEngineError):
    """Escalation record could not be persisted."""


class InvalidStatusTransition(CoachEngineError):
    """Escalation status change outside pending → in_review → {completed, escalated}."""

    def __init__(self, current: str, requested: str) -> None:
        self.current = current
        self.requested = requested
        super().__init__(
            f"Cannot move escalation from '{current}' to '{requested}'",
            {"current": current, "requested": requested},
        )


class EscalationNotFoundError(CoachEngineError):
    """Escalation record does not exist."""
