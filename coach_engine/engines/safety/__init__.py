"""
Safety engine - crisis scoring, PII redaction, regional resources and the
human-review escalation queue.
"""

from coach_engine.engines.safety.policy import RiskPolicy, KeywordRule, load_risk_policy
from coach_engine.engines.safety.risk_assessor import RiskAssessor, RiskSignalBundle
from coach_engine.engines.safety.redaction import redact_pii, verify_redacted, RedactionResult
from coach_engine.engines.safety.resources import RegionalResourceDirectory, load_resource_directory
from coach_engine.engines.safety.escalation_queue import (
    EscalationQueue,
    EscalationRequest,
    EnqueueResult,
    ALLOWED_TRANSITIONS,
)

__all__ = [
    "RiskPolicy",
    "KeywordRule",
    "load_risk_policy",
    "RiskAssessor",
    "RiskSignalBundle",
    "redact_pii",
    "verify_redacted",
    "RedactionResult",
    "RegionalResourceDirectory",
    "load_resource_directory",
    "EscalationQueue",
    "EscalationRequest",
    "EnqueueResult",
    "ALLOWED_TRANSITIONS",
]
