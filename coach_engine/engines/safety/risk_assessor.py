"""
Risk Assessor - deterministic multi-signal crisis scoring.

Scores one inbound message from six signals:
- Keyword: capped sum of matched crisis-rule weights
- Sentiment: lexicon polarity normalized by message length (higher = more negative)
- Temporal: share of the recent user messages that match any crisis rule
- Negation: multiplier applied to the whole weighted sum when every crisis
  phrase is negated in its own clause or sentence
- Contextual: late-night and declining-engagement boosts
- Prior flags: additive boost when the user has escalation history

CRITICAL INVARIANTS:
- Pure function of (message, history, user context, policy): no I/O, no clock
- Composite score always lies in [0, 1]
- An un-negated explicit self-harm statement always lands in the HIGH band
"""

import re
from typing import List, Optional, Sequence

from pydantic import BaseModel, Field

from coach_engine.engines.safety.policy import KeywordRule, RiskPolicy, load_risk_policy
from coach_engine.schemas.coach import ConversationTurn, RiskLevel, UserContext

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_SENTENCE_BREAK_RE = re.compile(r"[.!?;\n]")
_CLAUSE_BREAK_RE = re.compile(r"[.!?;,:\n]|\b(?:and|but|so|because|though)\b", re.IGNORECASE)


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def tokenize(text: str) -> List[str]:
    """Case-fold, drop apostrophes, split on anything that is not a letter or digit."""
    return _TOKEN_RE.findall(text.lower().replace("'", "").replace("’", ""))


def _break_before(pattern: re.Pattern, text: str, pos: int) -> int:
    """Offset just past the last ``pattern`` match that ends at or before ``pos``."""
    start = 0
    for match in pattern.finditer(text, 0, pos):
        start = match.end()
    return start


class RiskSignalBundle(BaseModel):
    """Per-message snapshot of every signal that fed the composite score."""

    keyword_score: float
    sentiment_score: float
    temporal_score: float
    negation_multiplier: float
    contextual_score: float
    prior_flag_boost: float
    composite_score: float = Field(ge=0.0, le=1.0)
    risk_level: RiskLevel
    matched_rules: List[str] = Field(default_factory=list)
    policy_version: str

    @property
    def requires_escalation(self) -> bool:
        return self.risk_level == RiskLevel.HIGH


class RiskAssessor:
    """
    Crisis scorer bound to one risk policy.

    Usage:
        assessor = RiskAssessor(load_risk_policy())
        bundle = assessor.assess(message, history, user_context)
        if bundle.requires_escalation:
            ...
    """

    def __init__(self, policy: Optional[RiskPolicy] = None):
        self.policy = policy or load_risk_policy()
        self._rules = self.policy.compiled_rules()
        self._negations = self.policy.compiled_negations()
        self._recoveries = self.policy.compiled_recoveries()
        self._negative_words = frozenset(w.lower() for w in self.policy.sentiment.negative_words)
        self._positive_words = frozenset(w.lower() for w in self.policy.sentiment.positive_words)
        self._explicit_tiers = frozenset(self.policy.explicit_tiers)

    def assess(
        self,
        message: str,
        recent_history: Sequence[ConversationTurn] = (),
        user_context: Optional[UserContext] = None,
    ) -> RiskSignalBundle:
        """
        Score a message against the session history and user context.

        Args:
            message: The inbound user message
            recent_history: Earlier turns of the session, oldest first
            user_context: Progress and engagement facts for the user

        Returns:
            RiskSignalBundle with every signal and the composite score
        """
        ctx = user_context or UserContext()
        weights = self.policy.weights

        matched = self.match_rules(message)
        keyword = clamp01(sum(rule.weight for rule in matched))
        sentiment = self.sentiment_score(message)
        temporal = self.temporal_score(message, recent_history)
        negation = self.negation_multiplier(message, matched)
        contextual = self.contextual_score(ctx)
        prior = self.policy.prior_flag_boost if ctx.has_prior_flags else 0.0

        weighted = (
            keyword * weights.keyword
            + sentiment * weights.sentiment
            + temporal * weights.temporal
            + contextual * weights.contextual
        )
        if any(rule.tier in self._explicit_tiers for rule in matched):
            weighted = max(weighted, self.policy.explicit_floor)

        composite = clamp01(weighted * negation + prior)

        return RiskSignalBundle(
            keyword_score=keyword,
            sentiment_score=sentiment,
            temporal_score=temporal,
            negation_multiplier=negation,
            contextual_score=contextual,
            prior_flag_boost=prior,
            composite_score=composite,
            risk_level=self.classify(composite),
            matched_rules=[rule.id for rule in matched],
            policy_version=self.policy.version,
        )

    def classify(self, composite: float) -> RiskLevel:
        thresholds = self.policy.thresholds
        if composite >= thresholds.high:
            return RiskLevel.HIGH
        if composite >= thresholds.medium:
            return RiskLevel.MEDIUM
        return RiskLevel.NORMAL

    def is_urgent(self, composite: float) -> bool:
        return composite >= self.policy.thresholds.urgent

    # ── Individual signals ────────────────────────────────────────────────

    def match_rules(self, text: str) -> List[KeywordRule]:
        return [rule for rule, pattern in self._rules if pattern.search(text)]

    def matches_any_rule(self, text: str) -> bool:
        return any(pattern.search(text) for _, pattern in self._rules)

    def sentiment_score(self, text: str) -> float:
        words = tokenize(text)
        if not words:
            return 0.5
        negative = sum(1 for w in words if w in self._negative_words)
        positive = sum(1 for w in words if w in self._positive_words)
        return clamp01(0.5 + (negative - positive) / len(words))

    def temporal_score(self, message: str, recent_history: Sequence[ConversationTurn]) -> float:
        user_turns = [turn.content for turn in recent_history if turn.role == "user"]
        window = (user_turns + [message])[-self.policy.temporal_window:]
        hits = sum(1 for text in window if self.matches_any_rule(text))
        return hits / len(window)

    def negation_multiplier(self, message: str, matched: Sequence[KeywordRule]) -> float:
        """
        0.3 (policy) when every matched crisis phrase is negated, else 1.0.

        Negation words inside a crisis phrase ("don't want to live") belong
        to the statement itself, so only the text before each phrase is
        searched: its own clause, at most ``negation_window`` tokens back.
        Recovery phrases ("getting help") count anywhere in the sentence.
        """
        spans = [
            m.span()
            for rule, pattern in self._rules
            if rule in matched
            for m in pattern.finditer(message)
        ]
        if spans and all(self._span_negated(message, start, end) for start, end in spans):
            return self.policy.negation_multiplier
        return 1.0

    def _span_negated(self, message: str, start: int, end: int) -> bool:
        lead = message[_break_before(_CLAUSE_BREAK_RE, message, start):start]
        window = " ".join(lead.split()[-self.policy.negation_window:])
        if any(pattern.search(window) for pattern in self._negations):
            return True

        sentence_start = _break_before(_SENTENCE_BREAK_RE, message, start)
        sentence_end = _SENTENCE_BREAK_RE.search(message, end)
        sentence = message[sentence_start:sentence_end.start() if sentence_end else len(message)]
        return any(pattern.search(sentence) for pattern in self._recoveries)

    def contextual_score(self, ctx: UserContext) -> float:
        policy = self.policy.contextual
        score = 0.0

        hour = ctx.local_hour
        if hour is None and ctx.timestamp is not None:
            hour = ctx.timestamp.hour
        if hour is not None and (hour >= policy.late_night_start_hour or hour <= policy.late_night_end_hour):
            score += policy.late_night_boost

        markers = {m.lower() for m in policy.declining_markers}
        if (ctx.recent_activity or "").lower() in markers or (ctx.engagement_trend or "").lower() in markers:
            score += policy.declining_engagement_boost

        return clamp01(score)
