"""Integration tests for full coaching turns through the engine."""

import asyncio
import logging
import uuid

import pytest
from sqlalchemy import func, select

from coach_engine.ai.types import FALLBACK_MESSAGE
from coach_engine.core.exceptions import TransientProviderFault
from coach_engine.engines.safety.escalation_queue import EnqueueResult, EscalationQueue
from coach_engine.kernel.conversations.conversation_store import ConversationStore
from coach_engine.kernel.models.conversation import ConversationMessage
from coach_engine.kernel.models.escalation import EscalationPriority, EscalationRecord
from coach_engine.logging_config import SECURITY_LOGGER_NAME
from coach_engine.orchestration.coaching_engine import SUPPORTIVE_MESSAGE
from coach_engine.pedagogy.content_retriever import CurriculumDocument
from coach_engine.schemas.coach import CoachTurnRequest, RiskLevel, UserContext

from conftest import HANG, ScriptedProvider, descriptor

GROUNDED_REPLY = "As covered in Breathing Through Stress, try a slow exhale."


def turn(user_id, message, session_id=None, **ctx) -> CoachTurnRequest:
    return CoachTurnRequest(
        user_id=user_id,
        session_id=session_id,
        message=message,
        user_context=UserContext(**ctx),
    )


def security_events(caplog):
    return [getattr(r, "security_event", None) for r in caplog.records]


class TestGroundedTurn:
    """Normal-risk messages get a grounded, cited model reply."""

    @pytest.mark.asyncio
    async def test_reply_is_grounded_and_cited(self, db_session, user_id, make_engine):
        provider = ScriptedProvider(descriptor("primary"), [GROUNDED_REPLY])
        engine = make_engine([provider])

        result = await engine.handle_message(db_session, turn(user_id, "How can I handle stress before exams?"))

        assert result.outcome == "grounded"
        assert result.reply_text == GROUNDED_REPLY
        assert result.risk_level == RiskLevel.NORMAL
        assert result.provider_id == "primary:primary-model"
        assert [c.lesson_id for c in result.citations] == ["lesson-breath"]
        assert '"Breathing Through Stress"' in provider.calls[0]["system_prompt"]

        messages = await ConversationStore(db_session).messages(result.session_id)
        assert [m.sender for m in messages] == ["user", "assistant"]
        assert messages[0].id == result.user_message_id
        assert messages[1].citations[0]["lesson_id"] == "lesson-breath"
        assert messages[0].risk_signals["risk_level"] == "normal"

    @pytest.mark.asyncio
    async def test_follow_up_reuses_session_and_history(self, db_session, user_id, make_engine):
        provider = ScriptedProvider(descriptor("primary"), ["First reply", "Second reply"])
        engine = make_engine([provider])

        first = await engine.handle_message(db_session, turn(user_id, "Hello coach"))
        second = await engine.handle_message(db_session, turn(user_id, "Tell me more", session_id=first.session_id))

        assert second.session_id == first.session_id
        assert [t.content for t in provider.calls[1]["turns"]] == ["Hello coach", "First reply", "Tell me more"]
        session = await ConversationStore(db_session).get(first.session_id)
        assert session.message_count == 4

    @pytest.mark.asyncio
    async def test_foreign_session_id_uses_own_session(self, db_session, user_id, make_engine):
        engine = make_engine()
        other = await engine.handle_message(db_session, turn(uuid.uuid4(), "Hello"))
        mine = await engine.handle_message(db_session, turn(user_id, "Hello", session_id=other.session_id))

        assert mine.session_id != other.session_id
        session = await ConversationStore(db_session).get(mine.session_id)
        assert session.user_id == user_id

    @pytest.mark.asyncio
    async def test_all_vendors_down_returns_fallback(self, db_session, user_id, make_engine):
        down = TransientProviderFault("503", "primary", kind="unavailable")
        engine = make_engine([
            ScriptedProvider(descriptor("primary", max_retries=2), [down]),
            ScriptedProvider(descriptor("backup", max_retries=1), [down]),
        ])

        result = await engine.handle_message(db_session, turn(user_id, "How do I meditate?"))

        assert result.outcome == "fallback"
        assert result.is_fallback is True
        assert result.fallback_reason == "provider_error"
        assert result.reply_text == FALLBACK_MESSAGE
        assert result.citations == []
        messages = await ConversationStore(db_session).messages(result.session_id)
        assert messages[-1].content == FALLBACK_MESSAGE

    @pytest.mark.asyncio
    async def test_summarizes_long_sessions(self, db_session, user_id, make_engine):
        engine = make_engine(summary_message_threshold=4, history_turn_limit=2)
        result = None
        for text in ["I want to sleep better.", "I prefer evening practice.", "What next?"]:
            result = await engine.handle_message(db_session, turn(user_id, text))

        session = await ConversationStore(db_session).get(result.session_id)
        assert session.summarized_through == 4
        assert "I want to sleep better." in session.long_term_summary
        assert "I prefer evening practice." in session.long_term_summary


class TestSafetyTurn:
    """High-risk messages never reach a vendor."""

    @pytest.mark.asyncio
    async def test_crisis_message_escalated_without_vendor_call(self, db_session, user_id, make_engine, caplog):
        provider = ScriptedProvider(descriptor("primary"), [GROUNDED_REPLY])
        engine = make_engine([provider])

        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            result = await engine.handle_message(
                db_session, turn(user_id, "I want to kill myself. Email me at jo@example.com")
            )

        assert provider.calls == []
        assert result.outcome == "safety"
        assert result.reply_text == SUPPORTIVE_MESSAGE
        assert result.risk_level == RiskLevel.HIGH
        assert result.escalation.priority == "urgent"
        assert result.escalation.queued is True
        assert result.escalation.status == "queued_for_review"
        assert result.resources[0].phone == "988"
        assert "crisis_detected" in security_events(caplog)
        assert "jo@example.com" not in caplog.text

        record = await EscalationQueue(db_session, engine.resources).get(result.escalation.record_id)
        assert record.message_id == result.user_message_id
        assert record.redacted_content == "I want to kill myself. Email me at [EMAIL]"

        messages = await ConversationStore(db_session).messages(result.session_id)
        assert messages[0].flagged_for_review is True
        assert messages[1].content == SUPPORTIVE_MESSAGE

    @pytest.mark.asyncio
    async def test_hotlines_follow_locale(self, db_session, user_id, make_engine):
        result = await make_engine().handle_message(
            db_session, turn(user_id, "I don't want to live anymore", locale="en-GB")
        )
        assert result.outcome == "safety"
        assert result.resources[0].name == "Samaritans"

    @pytest.mark.asyncio
    async def test_queue_failure_does_not_change_reply(self, db_session, user_id, make_engine, monkeypatch):
        engine = make_engine()

        async def lost(self, request):
            return EnqueueResult(priority=EscalationPriority.URGENT, queued=False)

        monkeypatch.setattr(EscalationQueue, "enqueue", lost)
        result = await engine.handle_message(db_session, turn(user_id, "I want to kill myself"))

        assert result.outcome == "safety"
        assert result.reply_text == SUPPORTIVE_MESSAGE
        assert result.escalation.queued is False
        assert result.escalation.status == "queue_unavailable"

    @pytest.mark.asyncio
    async def test_crisis_turn_can_trigger_summarization(self, db_session, user_id, make_engine):
        engine = make_engine(summary_message_threshold=4, history_turn_limit=2)
        for text in ["Hello coach", "How do I meditate?"]:
            await engine.handle_message(db_session, turn(user_id, text))

        result = await engine.handle_message(db_session, turn(user_id, "I want to kill myself"))

        assert result.outcome == "safety"
        session = await ConversationStore(db_session).get(result.session_id)
        assert session.summarized_through == 4

    @pytest.mark.asyncio
    async def test_negated_statement_gets_normal_reply(self, db_session, user_id, make_engine):
        provider = ScriptedProvider(descriptor("primary"), ["Glad to hear it."])
        result = await make_engine([provider]).handle_message(
            db_session, turn(user_id, "I don't want to kill myself, I'm feeling better now")
        )
        assert result.outcome == "grounded"
        assert len(provider.calls) == 1
        assert await db_session.scalar(select(func.count()).select_from(EscalationRecord)) == 0

    @pytest.mark.asyncio
    async def test_prior_escalation_boosts_later_messages(self, db_session, user_id, make_engine):
        engine = make_engine()
        await engine.handle_message(db_session, turn(user_id, "I want to kill myself"))
        result = await engine.handle_message(db_session, turn(user_id, "How do I start a breathing practice?"))

        # sentiment 0.5*0.2 + temporal 0.5*0.2, plus the prior-flag boost
        assert result.risk_score == pytest.approx(0.3)
        assert result.risk_level == RiskLevel.NORMAL


class TestElevatedRisk:
    @pytest.mark.asyncio
    async def test_building_distress_reaches_medium(self, db_session, user_id, make_engine, caplog):
        provider = ScriptedProvider(descriptor("primary"), ["I'm here with you."])
        engine = make_engine([provider])

        first = await engine.handle_message(db_session, turn(user_id, "I've been stressed about deadlines", local_hour=23))
        second = await engine.handle_message(db_session, turn(user_id, "Still stressed about the project", local_hour=23))
        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            third = await engine.handle_message(
                db_session, turn(user_id, "I feel overwhelmed by everything at work lately", local_hour=23)
            )

        assert first.risk_level == RiskLevel.NORMAL
        assert second.risk_level == RiskLevel.NORMAL
        assert third.risk_level == RiskLevel.MEDIUM
        assert third.risk_score == pytest.approx(0.685)
        assert third.outcome == "grounded"
        assert len(provider.calls) == 3
        assert "elevated_risk_detected" in security_events(caplog)
        assert await db_session.scalar(select(func.count()).select_from(EscalationRecord)) == 0


    @pytest.mark.asyncio
    async def test_overwhelmed_but_improving_stays_grounded(self, db_session, user_id, make_engine, curriculum_backend):
        curriculum_backend.add(CurriculumDocument(
            id="lesson-overwhelm",
            title="When You Feel Overwhelmed",
            course_title="Foundations of Mindfulness",
            learning_objectives=["Steady yourself when everything feels like too much"],
            content_text="Name what is pressing on you, then take one slow breath.",
        ))
        provider = ScriptedProvider(descriptor("primary"), [
            "Hi, how can I help today?",
            "Start with two minutes of quiet breathing.",
            "Glad it is easing. The lesson When You Feel Overwhelmed has a short reset.",
        ])
        engine = make_engine([provider])

        for text in ["Hello coach", "How do I meditate?"]:
            earlier = await engine.handle_message(db_session, turn(user_id, text))
            assert earlier.risk_level == RiskLevel.NORMAL

        result = await engine.handle_message(db_session, turn(user_id, "I feel overwhelmed but it's getting better"))

        assert result.risk_level == RiskLevel.MEDIUM
        assert 0.5 <= result.risk_score < 0.8
        assert result.outcome == "grounded"
        assert len(provider.calls) == 3
        assert [c.lesson_id for c in result.citations] == ["lesson-overwhelm"]
        assert await db_session.scalar(select(func.count()).select_from(EscalationRecord)) == 0

class TestRejectedTurn:
    """Invalid messages are rejected before anything is stored."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message,code",
        [("", "empty"), ("   \n ", "empty"), ("x" * 2001, "too_long"), ("hi\x00there", "control_characters")],
    )
    async def test_rejected(self, db_session, user_id, make_engine, message, code):
        provider = ScriptedProvider(descriptor("primary"))
        result = await make_engine([provider]).handle_message(db_session, turn(user_id, message))

        assert result.outcome == "rejected"
        assert result.rejection_reason == code
        assert result.reply_text
        assert provider.calls == []
        assert await ConversationStore(db_session).list_sessions(user_id) == []

    @pytest.mark.asyncio
    async def test_line_breaks_allowed(self, db_session, user_id, make_engine):
        result = await make_engine().handle_message(db_session, turn(user_id, "line one\n\tline two"))
        assert result.outcome == "grounded"

    @pytest.mark.asyncio
    async def test_length_limit_configurable(self, db_session, user_id, make_engine):
        result = await make_engine(max_message_length=10).handle_message(db_session, turn(user_id, "x" * 11))
        assert result.rejection_reason == "too_long"
        assert "10 characters" in result.reply_text


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_turn_leaves_nothing_after_rollback(self, session_maker, user_id, make_engine):
        provider = ScriptedProvider(descriptor("slow", timeout=30, max_retries=1), [HANG])
        engine = make_engine([provider])

        async with session_maker() as db:
            task = asyncio.create_task(engine.handle_message(db, turn(user_id, "Hello")))
            while not provider.calls:
                await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            await db.rollback()

        async with session_maker() as db:
            count = await db.scalar(select(func.count()).select_from(ConversationMessage))
            assert count == 0
