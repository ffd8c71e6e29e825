"""
Core - exception hierarchy shared by every layer of the engine.
"""

from coach_engine.core.exceptions import (
    CoachEngineError,
    ProviderFault,
    TransientProviderFault,
    PermanentProviderFault,
    ValidationFault,
    SessionNotFoundError,
    SessionClosedError,
    RedactionFault,
    QueueWriteFault,
    InvalidStatusTransition,
    EscalationNotFoundError,
)

__all__ = [
    "CoachEngineError",
    "ProviderFault",
    "TransientProviderFault",
    "PermanentProviderFault",
    "ValidationFault",
    "SessionNotFoundError",
    "SessionClosedError",
    "RedactionFault",
    "QueueWriteFault",
    "InvalidStatusTransition",
    "EscalationNotFoundError",
]
