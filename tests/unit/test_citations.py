"""Unit tests for citation extraction."""

from coach_engine.ai.citations import extract_citations
from coach_engine.pedagogy.content_retriever import CurriculumExcerpt


def excerpt(id: str, title: str) -> CurriculumExcerpt:
    return CurriculumExcerpt(id=id, title=title, course_title="Foundations", excerpt="...")


EXCERPTS = [
    excerpt("lesson-breath", "Breathing Through Stress"),
    excerpt("lesson-sleep", "Mindful Sleep"),
    excerpt("lesson-art", "The Art of Noticing"),
]


class TestExtractCitations:
    def test_title_word_in_reply_is_cited(self):
        citations = extract_citations("As covered in Breathing Through Stress, slow down.", EXCERPTS)
        assert [c.lesson_id for c in citations] == ["lesson-breath"]
        assert citations[0].course_title == "Foundations"

    def test_match_is_case_insensitive(self):
        citations = extract_citations("a MINDFUL pause before bed", EXCERPTS)
        assert [c.lesson_id for c in citations] == ["lesson-sleep"]

    def test_short_title_words_ignored(self):
        """'The', 'Art' and 'of' are too short to count as a reference."""
        assert extract_citations("the art of it", EXCERPTS) == []

    def test_duplicate_excerpts_cited_once(self):
        citations = extract_citations("breathing", EXCERPTS + [EXCERPTS[0]])
        assert len(citations) == 1

    def test_no_excerpts_or_text(self):
        assert extract_citations("", EXCERPTS) == []
        assert extract_citations("breathing", []) == []

    def test_idempotent(self):
        text = "Try noticing your breathing while you sleep."
        assert extract_citations(text, EXCERPTS) == extract_citations(text, EXCERPTS)
