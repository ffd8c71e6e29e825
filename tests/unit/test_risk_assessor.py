"""Unit tests for the risk assessor: signals, negation, floors and banding."""

from datetime import datetime

import pytest

from coach_engine.engines.safety.risk_assessor import RiskAssessor, tokenize
from coach_engine.schemas.coach import ConversationTurn, RiskLevel, UserContext


def user(text: str) -> ConversationTurn:
    return ConversationTurn(role="user", content=text)


class TestExplicitStatements:
    """Explicit self-harm statements and their negations."""

    def test_explicit_statement_is_high_and_urgent(self, assessor: RiskAssessor):
        bundle = assessor.assess("I want to kill myself")
        assert bundle.risk_level == RiskLevel.HIGH
        assert bundle.composite_score == pytest.approx(0.95)
        assert assessor.is_urgent(bundle.composite_score)
        assert "explicit_self_harm" in bundle.matched_rules
        assert bundle.requires_escalation is True

    def test_negated_statement_drops_out_of_high_band(self, assessor: RiskAssessor):
        bundle = assessor.assess("I don't want to kill myself, I'm feeling better now")
        assert bundle.negation_multiplier == pytest.approx(0.3)
        assert bundle.composite_score == pytest.approx(0.95 * 0.3)
        assert bundle.risk_level == RiskLevel.NORMAL
        assert bundle.requires_escalation is False

    def test_negation_words_inside_crisis_phrase_do_not_count(self, assessor: RiskAssessor):
        """'don't want to live' is itself the crisis statement."""
        bundle = assessor.assess("I don't want to live anymore")
        assert bundle.negation_multiplier == 1.0
        assert bundle.risk_level == RiskLevel.HIGH

    def test_past_tense_is_negated(self, assessor: RiskAssessor):
        bundle = assessor.assess("I used to want to die")
        assert bundle.negation_multiplier == pytest.approx(0.3)
        assert bundle.risk_level == RiskLevel.NORMAL

    def test_negation_scales_the_same_statement(self, assessor: RiskAssessor):
        plain = assessor.assess("I want to end it all")
        negated = assessor.assess("I don't want to end it all")
        assert negated.composite_score == pytest.approx(plain.composite_score * 0.3)

    @pytest.mark.parametrize(
        "message",
        [
            "I'm not okay. I want to kill myself",
            "I never sleep anymore and I want to end my life",
            "No one cares, I don't see a way out, I want to die",
            "Things are not good, I want to end it all",
        ],
    )
    def test_negation_in_another_clause_does_not_count(self, assessor: RiskAssessor, message: str):
        bundle = assessor.assess(message)
        assert bundle.negation_multiplier == 1.0
        assert bundle.risk_level == RiskLevel.HIGH
        assert bundle.requires_escalation is True

    def test_negation_far_before_the_phrase_does_not_count(self, assessor: RiskAssessor):
        bundle = assessor.assess("I could not sleep last night thinking I want to die")
        assert bundle.negation_multiplier == 1.0
        assert bundle.risk_level == RiskLevel.HIGH

    def test_one_negated_phrase_does_not_cover_another(self, assessor: RiskAssessor):
        bundle = assessor.assess("I don't want to die but I want to kill myself")
        assert bundle.negation_multiplier == 1.0
        assert bundle.risk_level == RiskLevel.HIGH

    def test_recovery_phrase_in_same_sentence_negates(self, assessor: RiskAssessor):
        bundle = assessor.assess("I was suicidal years ago but I'm getting help now")
        assert bundle.negation_multiplier == pytest.approx(0.3)
        assert bundle.risk_level == RiskLevel.NORMAL

    def test_recovery_phrase_in_another_sentence_does_not_count(self, assessor: RiskAssessor):
        bundle = assessor.assess("I stopped getting help last month. I want to die.")
        assert bundle.negation_multiplier == 1.0
        assert bundle.risk_level == RiskLevel.HIGH

    def test_prior_flags_never_push_score_above_one(self, assessor: RiskAssessor):
        ctx = UserContext(prior_escalations=2)
        bundle = assessor.assess("I want to kill myself", user_context=ctx)
        assert bundle.prior_flag_boost == pytest.approx(0.1)
        assert bundle.composite_score == 1.0


class TestSignals:
    """Individual signal computations."""

    def test_keyword_score_is_capped(self, assessor: RiskAssessor):
        bundle = assessor.assess("I feel hopeless and keep hurting myself")
        assert bundle.keyword_score == 1.0
        assert set(bundle.matched_rules) == {"self_harm_behaviour", "hopelessness"}

    def test_sentiment_neutral_without_words(self, assessor: RiskAssessor):
        assert assessor.sentiment_score("!!!") == 0.5

    def test_sentiment_positive_words_lower_score(self, assessor: RiskAssessor):
        # 2 positive out of 5 words
        assert assessor.sentiment_score("I am happy and calm") == pytest.approx(0.1)

    def test_sentiment_negative_words_raise_score(self, assessor: RiskAssessor):
        # 1 negative out of 8 words
        score = assessor.sentiment_score("I feel overwhelmed by everything at work lately")
        assert score == pytest.approx(0.625)

    def test_temporal_counts_only_recent_user_turns(self, assessor: RiskAssessor):
        history = [
            user("Hello there"),
            ConversationTurn(role="assistant", content="You sound stressed and worried."),
            user("Work was fine"),
            user("Had lunch"),
            user("Went for a walk"),
            user("Read a book"),
        ]
        # Window of 5: four quiet user turns plus the current message
        assert assessor.temporal_score("I'm so stressed", history) == pytest.approx(0.2)

    def test_temporal_rises_with_repeated_distress(self, assessor: RiskAssessor):
        history = [user("I've been stressed about deadlines"), user("Still stressed about the project")]
        assert assessor.temporal_score("I feel overwhelmed", history) == 1.0

    @pytest.mark.parametrize("hour,expected", [(23, 0.2), (3, 0.2), (6, 0.2), (12, 0.0), (21, 0.0)])
    def test_late_night_boost(self, assessor: RiskAssessor, hour: int, expected: float):
        assert assessor.contextual_score(UserContext(local_hour=hour)) == pytest.approx(expected)

    def test_late_night_from_timestamp(self, assessor: RiskAssessor):
        ctx = UserContext(timestamp=datetime(2026, 1, 1, 23, 30))
        assert assessor.contextual_score(ctx) == pytest.approx(0.2)

    def test_declining_engagement_stacks_with_late_night(self, assessor: RiskAssessor):
        ctx = UserContext(local_hour=2, engagement_trend="declining")
        assert assessor.contextual_score(ctx) == pytest.approx(0.5)

    def test_tokenize_drops_apostrophes(self):
        assert tokenize("I'm NOT okay, really!") == ["im", "not", "okay", "really"]


class TestComposite:
    """Weighted composite and banding."""

    def test_elevated_message_is_medium(self, assessor: RiskAssessor):
        history = [user("I've been stressed about deadlines"), user("Still stressed about the project")]
        bundle = assessor.assess(
            "I feel overwhelmed by everything at work lately",
            history,
            UserContext(local_hour=23),
        )
        # 0.85*0.4 + 0.625*0.2 + 1.0*0.2 + 0.2*0.1
        assert bundle.composite_score == pytest.approx(0.685)
        assert bundle.risk_level == RiskLevel.MEDIUM
        assert bundle.requires_escalation is False

    def test_overwhelmed_but_improving_is_medium(self, assessor: RiskAssessor):
        history = [
            user("Hello coach"),
            ConversationTurn(role="assistant", content="Hi, how can I help today?"),
            user("How do I meditate?"),
        ]
        bundle = assessor.assess("I feel overwhelmed but it's getting better", history, UserContext())
        # 0.85*0.4 + 0.5*0.2 + (1/3)*0.2
        assert bundle.negation_multiplier == 1.0
        assert bundle.composite_score == pytest.approx(0.34 + 0.1 + 0.2 / 3)
        assert bundle.risk_level == RiskLevel.MEDIUM

    def test_everyday_message_is_normal(self, assessor: RiskAssessor):
        bundle = assessor.assess("How do I start a breathing practice?")
        assert bundle.risk_level == RiskLevel.NORMAL
        assert bundle.matched_rules == []

    @pytest.mark.parametrize(
        "score,level",
        [(0.0, RiskLevel.NORMAL), (0.49, RiskLevel.NORMAL), (0.5, RiskLevel.MEDIUM),
         (0.79, RiskLevel.MEDIUM), (0.8, RiskLevel.HIGH), (1.0, RiskLevel.HIGH)],
    )
    def test_classify_boundaries(self, assessor: RiskAssessor, score: float, level: RiskLevel):
        assert assessor.classify(score) == level

    def test_assessment_is_deterministic(self, assessor: RiskAssessor):
        history = [user("I'm worried about tomorrow")]
        ctx = UserContext(local_hour=1, recent_activity="declined")
        first = assessor.assess("I feel hopeless", history, ctx)
        second = assessor.assess("I feel hopeless", history, ctx)
        assert first == second

    def test_bundle_records_policy_version(self, assessor: RiskAssessor):
        bundle = assessor.assess("hello")
        assert bundle.policy_version == assessor.policy.version
        assert 0.0 <= bundle.composite_score <= 1.0
