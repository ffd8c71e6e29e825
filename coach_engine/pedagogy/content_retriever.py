"""
Content Retriever - keyword search over published curriculum lessons.

Ranking tiers (best first): term in lesson title, term in learning
objectives, term in body text. Order inside a tier is whatever stable order
the backend returns (course title, lesson order, id).
"""

import re
from typing import List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field
from sqlalchemy import String, case, cast, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from coach_engine.kernel.models.curriculum import ContentStatus, Course, Lesson

MAX_TERMS = 10
MIN_TERM_LENGTH = 4
EXCERPT_LENGTH = 200

TIER_TITLE = 0
TIER_OBJECTIVES = 1
TIER_BODY = 2

_WORD_RE = re.compile(r"[a-z0-9]+")


class ContentQuery(BaseModel):
    """OR-combined search terms extracted from a user message."""

    terms: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.terms


class CurriculumDocument(BaseModel):
    """A searchable lesson as seen by a backend."""

    id: str
    title: str
    course_title: str
    learning_objectives: List[str] = Field(default_factory=list)
    content_text: str = ""
    published: bool = True


class CurriculumExcerpt(BaseModel):
    """A ranked search hit handed to prompt assembly."""

    id: str
    title: str
    course_title: str
    excerpt: str
    tier: int = TIER_BODY


def extract_terms(message: str) -> ContentQuery:
    """
    Case-fold, strip punctuation, keep words longer than three characters,
    de-duplicate in order of appearance, keep at most ten.
    """
    text = message.lower().replace("'", "").replace("’", "")
    terms: List[str] = []
    for word in _WORD_RE.findall(text):
        if len(word) < MIN_TERM_LENGTH or word in terms:
            continue
        terms.append(word)
        if len(terms) == MAX_TERMS:
            break
    return ContentQuery(terms=terms)


def match_tier(document: CurriculumDocument, terms: Sequence[str]) -> Optional[int]:
    """Best tier at which any term matches ``document``, or None for no match."""
    title = document.title.lower()
    if any(term in title for term in terms):
        return TIER_TITLE
    objectives = " ".join(document.learning_objectives).lower()
    if any(term in objectives for term in terms):
        return TIER_OBJECTIVES
    body = document.content_text.lower()
    if any(term in body for term in terms):
        return TIER_BODY
    return None


class ContentSearchBackend(Protocol):
    """Anything that can find published lessons matching a query."""

    async def search(self, query: ContentQuery, limit: int) -> List[CurriculumDocument]:
        ...


class InMemoryContentSearchBackend:
    """List-backed backend for fixtures and tests."""

    def __init__(self, documents: Optional[Sequence[CurriculumDocument]] = None):
        self.documents: List[CurriculumDocument] = list(documents or [])

    def add(self, document: CurriculumDocument) -> None:
        self.documents.append(document)

    async def search(self, query: ContentQuery, limit: int) -> List[CurriculumDocument]:
        ranked = []
        for position, doc in enumerate(self.documents):
            if not doc.published:
                continue
            tier = match_tier(doc, query.terms)
            if tier is not None:
                ranked.append((tier, position, doc))
        ranked.sort(key=lambda item: (item[0], item[1]))
        return [doc for _, _, doc in ranked[:limit]]


class SqlContentSearchBackend:
    """
    Lessons joined to published courses, matched with case-insensitive
    substring search and ranked in SQL by the same tiers.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def search(self, query: ContentQuery, limit: int) -> List[CurriculumDocument]:
        if query.is_empty:
            return []

        objectives_text = cast(Lesson.learning_objectives, String)
        title_hits = [Lesson.title.ilike(f"%{t}%") for t in query.terms]
        objective_hits = [objectives_text.ilike(f"%{t}%") for t in query.terms]
        body_hits = [Lesson.content_text.ilike(f"%{t}%") for t in query.terms]

        tier = case(
            (or_(*title_hits), TIER_TITLE),
            (or_(*objective_hits), TIER_OBJECTIVES),
            else_=TIER_BODY,
        )
        stmt = (
            select(Lesson, Course.title)
            .join(Course, Lesson.course_id == Course.id)
            .where(
                Course.status == ContentStatus.PUBLISHED.value,
                or_(*title_hits, *objective_hits, *body_hits),
            )
            .order_by(tier, Course.title, Lesson.sequence_order, Lesson.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [
            CurriculumDocument(
                id=str(lesson.id),
                title=lesson.title,
                course_title=course_title,
                learning_objectives=[str(o) for o in (lesson.learning_objectives or [])],
                content_text=lesson.content_text or "",
            )
            for lesson, course_title in result.all()
        ]


class ContentRetriever:
    """
    Grounding search used by prompt assembly.

    Usage:
        retriever = ContentRetriever(SqlContentSearchBackend(db))
        excerpts = await retriever.search("how do I handle stress", limit=5)
    """

    def __init__(self, backend: ContentSearchBackend):
        self.backend = backend

    async def search(self, message: str, limit: int = 5) -> List[CurriculumExcerpt]:
        """
        Find published lessons relevant to ``message``.

        Returns an empty list when the message has no usable terms or nothing
        matches.
        """
        query = extract_terms(message)
        if query.is_empty or limit <= 0:
            return []

        documents = await self.backend.search(query, limit)
        ranked = []
        for position, doc in enumerate(documents):
            if not doc.published:
                continue
            tier = match_tier(doc, query.terms)
            ranked.append((TIER_BODY if tier is None else tier, position, doc))
        ranked.sort(key=lambda item: (item[0], item[1]))

        return [
            CurriculumExcerpt(
                id=doc.id,
                title=doc.title,
                course_title=doc.course_title,
                excerpt=doc.content_text[:EXCERPT_LENGTH],
                tier=tier,
            )
            for tier, _, doc in ranked[:limit]
        ]
