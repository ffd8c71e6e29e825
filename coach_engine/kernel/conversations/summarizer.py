"""
Session summarizer - folds older turns into salient facts.

The long-term summary keeps three sections: goals, risk history and
preferences. Risk history records levels and scores only, never message text,
and messages that scored elevated or matched a crisis rule contribute no goal
or preference facts.
"""

import re
from typing import Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel

from coach_engine.kernel.models.conversation import ConversationMessage, MessageSender

SECTION_GOALS = "Goals"
SECTION_RISK = "Risk history"
SECTION_PREFERENCES = "Preferences"
SECTIONS = (SECTION_GOALS, SECTION_RISK, SECTION_PREFERENCES)

MAX_FACTS_PER_SECTION = 5
MAX_FACT_LENGTH = 160
ELEVATED_LEVELS = ("medium", "high")

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+|\n+")
_GOAL_CUES = re.compile(
    r"\b(i want to|i'd like to|i would like to|my goal|i hope to|i'm trying to|i am trying to|i need to)\b",
    re.IGNORECASE,
)
_PREFERENCE_CUES = re.compile(
    r"\b(i prefer|i like|i enjoy|i love|works for me|helps me|i don't like|i do not like)\b",
    re.IGNORECASE,
)


class SessionSummary(BaseModel):
    long_term_summary: str
    context_summary: str


class Summarizer(Protocol):
    def summarize(
        self,
        previous_summary: Optional[str],
        messages: Sequence[ConversationMessage],
    ) -> SessionSummary:
        ...


def parse_summary(text: Optional[str]) -> Dict[str, List[str]]:
    """Read a summary produced by ``render_summary`` back into its sections."""
    sections: Dict[str, List[str]] = {name: [] for name in SECTIONS}
    current: Optional[str] = None
    for line in (text or "").splitlines():
        stripped = line.strip()
        if stripped.endswith(":") and stripped[:-1] in sections:
            current = stripped[:-1]
        elif stripped.startswith("- ") and current is not None:
            sections[current].append(stripped[2:])
    return sections


def render_summary(sections: Dict[str, List[str]]) -> str:
    blocks = []
    for name in SECTIONS:
        facts = sections.get(name) or []
        if facts:
            blocks.append(f"{name}:\n" + "\n".join(f"- {fact}" for fact in facts))
    return "\n".join(blocks)


def _clip(sentence: str) -> str:
    sentence = " ".join(sentence.split())
    if len(sentence) > MAX_FACT_LENGTH:
        return sentence[: MAX_FACT_LENGTH - 3].rstrip() + "..."
    return sentence


def _merge(existing: List[str], new: List[str]) -> List[str]:
    merged = list(existing)
    for fact in new:
        if fact not in merged:
            merged.append(fact)
    return merged[-MAX_FACTS_PER_SECTION:]


class SalientFactSummarizer:
    """Rule-based summarizer; deterministic so summaries are reproducible."""

    def summarize(
        self,
        previous_summary: Optional[str],
        messages: Sequence[ConversationMessage],
    ) -> SessionSummary:
        goals: List[str] = []
        preferences: List[str] = []
        risks: List[str] = []
        lessons: List[str] = []
        user_count = 0
        coach_count = 0

        for msg in messages:
            if msg.sender == MessageSender.USER.value:
                user_count += 1
                signals = msg.risk_signals or {}
                level = signals.get("risk_level")
                if level in ELEVATED_LEVELS:
                    score = float(signals.get("composite_score", 0.0))
                    risks.append(f"message {msg.sequence}: {level} risk (score {score:.2f})")
                if level in ELEVATED_LEVELS or signals.get("matched_rules"):
                    # Crisis wording stays out of the goal and preference facts
                    continue
                for sentence in _SENTENCE_SPLIT.split(msg.content):
                    if _GOAL_CUES.search(sentence):
                        goals.append(_clip(sentence))
                    elif _PREFERENCE_CUES.search(sentence):
                        preferences.append(_clip(sentence))
            elif msg.sender == MessageSender.ASSISTANT.value:
                coach_count += 1
                for citation in msg.citations or []:
                    title = citation.get("title") if isinstance(citation, dict) else None
                    if title and title not in lessons:
                        lessons.append(title)

        sections = parse_summary(previous_summary)
        sections[SECTION_GOALS] = _merge(sections[SECTION_GOALS], goals)
        sections[SECTION_RISK] = _merge(sections[SECTION_RISK], risks)
        sections[SECTION_PREFERENCES] = _merge(sections[SECTION_PREFERENCES], preferences)

        if messages:
            span = f"messages {messages[0].sequence}-{messages[-1].sequence}"
        else:
            span = "no messages"
        context = f"Earlier in this session ({span}): {user_count} user messages, {coach_count} coach replies."
        if lessons:
            context += " Lessons discussed: " + ", ".join(lessons) + "."

        return SessionSummary(long_term_summary=render_summary(sections), context_summary=context)
