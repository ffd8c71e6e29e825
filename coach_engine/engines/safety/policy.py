"""
Risk policy - versioned rule tables, lexicons, weights and thresholds.

The policy is data, not code: it is loaded from JSON and validated here so a
tuning change never needs a logic deploy and every score can be traced back
to the policy version that produced it.
"""

import json
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Pattern

from pydantic import BaseModel, Field, field_validator, model_validator

from coach_engine.policy import RISK_POLICY_FILE


class KeywordRule(BaseModel):
    """One weighted crisis pattern."""

    id: str
    tier: str
    weight: float = Field(ge=0.0, le=1.0)
    pattern: str

    @field_validator("pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"invalid pattern: {exc}") from exc
        return value


class SentimentLexicon(BaseModel):
    negative_words: List[str]
    positive_words: List[str]


class SignalWeights(BaseModel):
    keyword: float = 0.4
    sentiment: float = 0.2
    temporal: float = 0.2
    contextual: float = 0.1


class ContextualPolicy(BaseModel):
    late_night_start_hour: int = Field(default=22, ge=0, le=23)
    late_night_end_hour: int = Field(default=6, ge=0, le=23)
    late_night_boost: float = 0.2
    declining_engagement_boost: float = 0.3
    declining_markers: List[str] = ["declined", "declining"]


class RiskThresholds(BaseModel):
    medium: float = 0.5
    high: float = 0.8
    urgent: float = 0.9

    @model_validator(mode="after")
    def _ordered(self) -> "RiskThresholds":
        if not (0.0 <= self.medium <= self.high <= self.urgent <= 1.0):
            raise ValueError("thresholds must satisfy 0 <= medium <= high <= urgent <= 1")
        return self


class RiskPolicy(BaseModel):
    """Validated, versioned crisis-scoring policy."""

    version: str
    keyword_rules: List[KeywordRule]
    explicit_tiers: List[str] = ["explicit"]
    explicit_floor: float = Field(default=0.95, ge=0.0, le=1.0)
    # Negation words count only in the same clause as a crisis phrase and
    # within ``negation_window`` tokens before it; recovery phrases count
    # anywhere in the same sentence.
    negation_patterns: List[str]
    negation_window: int = Field(default=4, ge=1)
    recovery_patterns: List[str] = []
    negation_multiplier: float = Field(default=0.3, ge=0.0, le=1.0)
    sentiment: SentimentLexicon
    weights: SignalWeights = SignalWeights()
    temporal_window: int = Field(default=5, ge=1)
    contextual: ContextualPolicy = ContextualPolicy()
    prior_flag_boost: float = 0.1
    thresholds: RiskThresholds = RiskThresholds()

    def compiled_rules(self) -> List[tuple[KeywordRule, Pattern[str]]]:
        return [(rule, re.compile(rule.pattern, re.IGNORECASE)) for rule in self.keyword_rules]

    def compiled_negations(self) -> List[Pattern[str]]:
        return [re.compile(p, re.IGNORECASE) for p in self.negation_patterns]

    def compiled_recoveries(self) -> List[Pattern[str]]:
        return [re.compile(p, re.IGNORECASE) for p in self.recovery_patterns]

    @field_validator("negation_patterns", "recovery_patterns")
    @classmethod
    def _patterns_compile(cls, value: List[str]) -> List[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid pattern {pattern!r}: {exc}") from exc
        return value


def parse_risk_policy(data: Dict) -> RiskPolicy:
    """Validate a policy document already loaded into a dict."""
    return RiskPolicy.model_validate(data)


@lru_cache
def load_risk_policy(path: Optional[str] = None) -> RiskPolicy:
    """
    Load the risk policy from ``path`` (or the packaged default).

    Cached per path; call ``load_risk_policy.cache_clear()`` after editing
    the file in a running process.
    """
    policy_path = Path(path) if path else RISK_POLICY_FILE
    with policy_path.open(encoding="utf-8") as fh:
        return parse_risk_policy(json.load(fh))
