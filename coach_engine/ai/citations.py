"""
Citation extraction - which retrieved lessons a reply actually references.

A lesson counts as cited when any word of its title longer than three
characters appears in the reply (case-insensitive). Pure and idempotent.
"""

from typing import List, Sequence

from coach_engine.pedagogy.content_retriever import CurriculumExcerpt
from coach_engine.schemas.coach import Citation

MIN_TITLE_WORD_LENGTH = 4


def extract_citations(text: str, excerpts: Sequence[CurriculumExcerpt]) -> List[Citation]:
    """Citations for ``excerpts`` referenced by ``text``, in excerpt order, no duplicates."""
    if not text or not excerpts:
        return []

    lowered = text.lower()
    citations: List[Citation] = []
    seen = set()
    for excerpt in excerpts:
        if excerpt.id in seen:
            continue
        words = [w for w in excerpt.title.lower().split() if len(w) >= MIN_TITLE_WORD_LENGTH]
        if any(word in lowered for word in words):
            seen.add(excerpt.id)
            citations.append(
                Citation(lesson_id=excerpt.id, title=excerpt.title, course_title=excerpt.course_title)
            )
    return citations
