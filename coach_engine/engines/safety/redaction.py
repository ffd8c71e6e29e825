"""
PII redaction for escalation records.

Redaction is two-pass: known shapes are replaced with fixed placeholders,
then a deliberately broader verification scan looks for anything that still
resembles contact or payment data. A hit on the verification pass means the
redaction is not trusted and the caller must withhold the content.
"""

import re
from typing import List, Tuple

from pydantic import BaseModel

from coach_engine.core.exceptions import RedactionFault

EMAIL_TOKEN = "[EMAIL]"
CARD_TOKEN = "[CARD]"
PHONE_TOKEN = "[PHONE]"
SSN_TOKEN = "[SSN]"

# Order matters: longest digit shapes first so a card number is never
# partially consumed as a phone number.
_REDACTION_RULES: List[Tuple[str, re.Pattern[str], str]] = [
    ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), EMAIL_TOKEN),
    ("card", re.compile(r"\b(?:\d[ -]?){12,18}\d\b"), CARD_TOKEN),
    ("phone", re.compile(r"(?:\+\d{1,3}[\s.-]?)?\(?\b\d{3}\)?[\s.-]?\d{3}[\s.-]?\d{4}\b"), PHONE_TOKEN),
    ("ssn", re.compile(r"\b\d{3}[- ]?\d{2}[- ]?\d{4}\b"), SSN_TOKEN),
]

# Verification: any residual run of 7+ digits (separators allowed) or
# anything still shaped like an address.
_RESIDUAL_DIGITS = re.compile(r"\d(?:[\s().+-]*\d){6,}")
_RESIDUAL_EMAIL = re.compile(r"\S+@\S+\.\S+|\S+\s*(?:\[at\]|\(at\))\s*\S+", re.IGNORECASE)


class RedactionResult(BaseModel):
    """Outcome of redacting one message."""

    content: str
    replacements: dict[str, int]

    @property
    def total_replacements(self) -> int:
        return sum(self.replacements.values())


def redact_pii(content: str) -> RedactionResult:
    """
    Replace email, payment-card, phone and government-ID shapes with
    placeholder tokens and verify nothing PII-shaped remains.

    Raises:
        RedactionFault: if the verification pass still finds PII-like data
    """
    redacted = content
    counts: dict[str, int] = {}
    for name, pattern, token in _REDACTION_RULES:
        redacted, n = pattern.subn(token, redacted)
        if n:
            counts[name] = n

    residual = verify_redacted(redacted)
    if residual:
        raise RedactionFault(
            "Redaction could not be verified complete",
            {"residual_kinds": residual},
        )
    return RedactionResult(content=redacted, replacements=counts)


def verify_redacted(text: str) -> List[str]:
    """Return the kinds of PII-like data still present in ``text`` (empty if clean)."""
    kinds = []
    if _RESIDUAL_DIGITS.search(text):
        kinds.append("digits")
    if _RESIDUAL_EMAIL.search(text):
        kinds.append("address")
    return kinds
