"""
Pedagogy - curriculum search used to ground coaching replies.
"""

from coach_engine.pedagogy.content_retriever import (
    ContentQuery,
    ContentRetriever,
    ContentSearchBackend,
    CurriculumDocument,
    CurriculumExcerpt,
    InMemoryContentSearchBackend,
    SqlContentSearchBackend,
    extract_terms,
)

__all__ = [
    "ContentQuery",
    "ContentRetriever",
    "ContentSearchBackend",
    "CurriculumDocument",
    "CurriculumExcerpt",
    "InMemoryContentSearchBackend",
    "SqlContentSearchBackend",
    "extract_terms",
]
