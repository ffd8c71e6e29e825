"""
Coaching Engine - one coaching turn from inbound message to persisted reply.

Flow:
    validate → resolve session → assess risk →
      HIGH:   scripted supportive reply + hotlines + escalation (no model call)
      else:   assemble grounded prompt → vendor router → citations
    → persist exchange → maybe summarize → result

CRITICAL INVARIANTS:
- ``handle_message`` never raises for user-facing faults: validation
  failures come back as ``outcome="rejected"`` and vendor failures as
  ``outcome="fallback"``
- A HIGH-risk message never reaches a model vendor
- Cancellation propagates; the caller's transaction is rolled back so no
  partial exchange is stored
"""

import unicodedata
import uuid
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from coach_engine.ai.citations import extract_citations
from coach_engine.ai.context_assembler import ContextAssembler
from coach_engine.ai.providers import build_providers
from coach_engine.ai.types import GenerationConstraints, GenerationFallback
from coach_engine.ai.vendor_router import VendorRouter
from coach_engine.config import Settings, get_settings
from coach_engine.core.exceptions import ValidationFault
from coach_engine.engines.safety.escalation_queue import EscalationQueue, EscalationRequest
from coach_engine.engines.safety.policy import load_risk_policy
from coach_engine.engines.safety.resources import RegionalResourceDirectory, load_resource_directory
from coach_engine.engines.safety.risk_assessor import RiskAssessor, RiskSignalBundle
from coach_engine.kernel.conversations.conversation_store import (
    ConversationStore,
    NewMessage,
    estimate_tokens,
)
from coach_engine.kernel.conversations.summarizer import Summarizer
from coach_engine.kernel.models.conversation import CoachingSession, ConversationMessage, MessageSender
from coach_engine.logging_config import get_logger, log_security_event
from coach_engine.pedagogy.content_retriever import (
    ContentRetriever,
    ContentSearchBackend,
    SqlContentSearchBackend,
)
from coach_engine.schemas.coach import (
    CoachTurnRequest,
    CoachTurnResult,
    ConversationTurn,
    EscalationSummary,
    RiskLevel,
    UserContext,
)

logger = get_logger(__name__)

SUPPORTIVE_MESSAGE = (
    "I hear that you're going through a difficult time, and I want you to know that your "
    "feelings are valid and you're not alone. While I'm here to support your mindfulness "
    "practice, I think it would be helpful to speak with someone who can provide more "
    "comprehensive support.\n\n"
    "If you're having thoughts of hurting yourself, please reach out to a crisis hotline "
    "immediately - they have trained counselors available 24/7. In the meantime, let's try "
    "a grounding exercise: Notice 5 things you can see, 4 things you can touch, 3 things you "
    "can hear, 2 things you can smell, and 1 thing you can taste."
)

REJECTION_MESSAGES = {
    "empty": "Please enter a message so I can help.",
    "too_long": "That message is a little long for me. Could you share it in {limit} characters or fewer?",
    "control_characters": "Your message contains characters I can't read. Please try typing it again.",
}

# Whitespace controls a user can legitimately type
_ALLOWED_CONTROLS = {"\n", "\r", "\t"}

SearchBackendFactory = Callable[[AsyncSession], ContentSearchBackend]


class CoachingEngine:
    """
    Explicitly constructed, dependency-injected orchestrator.

    Usage:
        engine = build_engine(get_settings())
        result = await engine.handle_message(db, CoachTurnRequest(...))
    """

    def __init__(
        self,
        assessor: RiskAssessor,
        router: VendorRouter,
        resources: RegionalResourceDirectory,
        search_backend_factory: SearchBackendFactory = SqlContentSearchBackend,
        constraints: Optional[GenerationConstraints] = None,
        summarizer: Optional[Summarizer] = None,
        max_message_length: int = 2000,
        history_turn_limit: int = 10,
        retrieval_limit: int = 5,
        summary_message_threshold: int = 30,
        summary_token_threshold: int = 6000,
        default_locale: str = "US",
    ):
        self.assessor = assessor
        self.router = router
        self.resources = resources
        self.search_backend_factory = search_backend_factory
        self.constraints = constraints or GenerationConstraints()
        self.summarizer = summarizer
        self.max_message_length = max_message_length
        self.history_turn_limit = history_turn_limit
        self.retrieval_limit = retrieval_limit
        self.summary_message_threshold = summary_message_threshold
        self.summary_token_threshold = summary_token_threshold
        self.default_locale = default_locale

    # ── Public API ───────────────────────────────────────────────────────

    def validate(self, message: str) -> str:
        """
        Normalize an inbound message or reject it.

        Raises:
            ValidationFault: empty, too long, or containing control characters
        """
        text = (message or "").strip()
        if not text:
            raise ValidationFault("Message is empty", code="empty")
        if len(text) > self.max_message_length:
            raise ValidationFault(
                f"Message exceeds {self.max_message_length} characters", code="too_long"
            )
        if any(unicodedata.category(ch) == "Cc" and ch not in _ALLOWED_CONTROLS for ch in text):
            raise ValidationFault("Message contains control characters", code="control_characters")
        return text

    def conversation_store(self, db: AsyncSession) -> ConversationStore:
        return ConversationStore(
            db,
            summarizer=self.summarizer,
            summary_message_threshold=self.summary_message_threshold,
            summary_token_threshold=self.summary_token_threshold,
            verbatim_window=self.history_turn_limit,
        )

    def escalation_queue(self, db: AsyncSession) -> EscalationQueue:
        return EscalationQueue(
            db,
            self.resources,
            urgent_threshold=self.assessor.policy.thresholds.urgent,
        )

    async def handle_message(self, db: AsyncSession, request: CoachTurnRequest) -> CoachTurnResult:
        """
        Run one coaching turn on the caller's database session.

        The caller owns the transaction (commit on success, rollback on
        error or cancellation).
        """
        try:
            message = self.validate(request.message)
        except ValidationFault as fault:
            logger.info(
                "Coach message rejected",
                extra={"user_id": str(request.user_id), "code": fault.code, "length": len(request.message or "")},
            )
            return CoachTurnResult(
                outcome="rejected",
                reply_text=REJECTION_MESSAGES[fault.code].format(limit=self.max_message_length),
                session_id=request.session_id,
                rejection_reason=fault.code,
            )

        store = self.conversation_store(db)
        queue = self.escalation_queue(db)
        session = await store.resolve(request.user_id, request.session_id)

        # Risk looks at the recent window regardless of summarization; the
        # prompt only carries what the summary does not already cover.
        risk_history = await store.recent_history(
            session.id, limit=self.history_turn_limit, include_summarized=True
        )
        prompt_history = await store.recent_history(session.id, limit=self.history_turn_limit)

        ctx = await self._with_prior_flags(queue, request.user_id, request.user_context)
        signals = self.assessor.assess(message, risk_history, ctx)

        user_message = await store.append(
            session.id,
            NewMessage(
                sender=MessageSender.USER,
                content=message,
                token_count=estimate_tokens(message),
                sentiment_score=signals.sentiment_score,
                risk_signals=signals.model_dump(mode="json"),
                flagged_for_review=signals.requires_escalation,
            ),
        )

        if signals.requires_escalation:
            return await self._safety_turn(store, queue, session, user_message, message, signals, ctx)

        if signals.risk_level == RiskLevel.MEDIUM:
            log_security_event(
                "elevated_risk_detected",
                severity="medium",
                user_id=str(request.user_id),
                session_id=str(session.id),
                message_id=str(user_message.id),
                risk_score=round(signals.composite_score, 4),
                matched_rules=",".join(signals.matched_rules),
            )

        return await self._grounded_turn(db, store, session, user_message, message, signals, ctx, prompt_history)

    # ── Paths ────────────────────────────────────────────────────────────

    async def _safety_turn(
        self,
        store: ConversationStore,
        queue: EscalationQueue,
        session: CoachingSession,
        user_message: ConversationMessage,
        message: str,
        signals: RiskSignalBundle,
        ctx: UserContext,
    ) -> CoachTurnResult:
        locale = ctx.locale or self.default_locale
        log_security_event(
            "crisis_detected",
            severity="high",
            user_id=str(session.user_id),
            session_id=str(session.id),
            message_id=str(user_message.id),
            risk_score=round(signals.composite_score, 4),
            matched_rules=",".join(signals.matched_rules),
            policy_version=signals.policy_version,
        )

        enqueued = await queue.enqueue(
            EscalationRequest(
                user_id=session.user_id,
                message_id=user_message.id,
                session_id=session.id,
                content=message,
                signals=signals,
                locale=locale,
            )
        )

        reply = await store.append(
            session.id,
            NewMessage(
                sender=MessageSender.ASSISTANT,
                content=SUPPORTIVE_MESSAGE,
                token_count=estimate_tokens(SUPPORTIVE_MESSAGE),
            ),
        )
        await store.maybe_summarize(session.id)

        return CoachTurnResult(
            outcome="safety",
            reply_text=SUPPORTIVE_MESSAGE,
            risk_level=signals.risk_level,
            risk_score=signals.composite_score,
            escalation=EscalationSummary(
                record_id=enqueued.record_id,
                priority=enqueued.priority.value,
                status="queued_for_review" if enqueued.queued else "queue_unavailable",
                queued=enqueued.queued,
            ),
            resources=self.resources.resources_for(locale),
            session_id=session.id,
            user_message_id=user_message.id,
            assistant_message_id=reply.id,
        )

    async def _grounded_turn(
        self,
        db: AsyncSession,
        store: ConversationStore,
        session: CoachingSession,
        user_message: ConversationMessage,
        message: str,
        signals: RiskSignalBundle,
        ctx: UserContext,
        prompt_history: List[ConversationTurn],
    ) -> CoachTurnResult:
        assembler = ContextAssembler(
            ContentRetriever(self.search_backend_factory(db)),
            history_turn_limit=self.history_turn_limit,
            retrieval_limit=self.retrieval_limit,
        )
        prompt = await assembler.build(session, ctx, message, prompt_history)
        generation = await self.router.generate(prompt, self.constraints)

        if isinstance(generation, GenerationFallback):
            citations = []
            tokens = estimate_tokens(generation.text)
            provider_id = None
        else:
            citations = extract_citations(generation.text, prompt.excerpts)
            tokens = generation.tokens_used or estimate_tokens(generation.text)
            provider_id = generation.provider_id

        reply = await store.append(
            session.id,
            NewMessage(
                sender=MessageSender.ASSISTANT,
                content=generation.text,
                token_count=tokens,
                citations=[c.model_dump() for c in citations],
            ),
        )
        await store.maybe_summarize(session.id)

        logger.info(
            "Coaching turn completed",
            extra={
                "session_id": str(session.id),
                "risk_level": signals.risk_level.value,
                "provider": provider_id or "fallback",
                "citations": len(citations),
                "reply_length": len(generation.text),
            },
        )
        return CoachTurnResult(
            outcome="fallback" if generation.is_fallback else "grounded",
            reply_text=generation.text,
            citations=citations,
            risk_level=signals.risk_level,
            risk_score=signals.composite_score,
            session_id=session.id,
            user_message_id=user_message.id,
            assistant_message_id=reply.id,
            provider_id=provider_id,
            is_fallback=generation.is_fallback,
            fallback_reason=generation.reason if isinstance(generation, GenerationFallback) else None,
        )

    async def _with_prior_flags(
        self,
        queue: EscalationQueue,
        user_id: uuid.UUID,
        ctx: UserContext,
    ) -> UserContext:
        # The queue is the system of record for prior escalations when the
        # caller did not supply any.
        if ctx.has_prior_flags:
            return ctx
        prior = await queue.count_for_user(user_id)
        if prior:
            return ctx.model_copy(update={"prior_escalations": prior})
        return ctx

    async def aclose(self) -> None:
        await self.router.aclose()


def build_engine(settings: Optional[Settings] = None) -> CoachingEngine:
    """Wire a production engine from settings."""
    settings = settings or get_settings()
    policy = load_risk_policy(settings.risk_policy_path or None)
    resources = load_resource_directory(settings.regional_resources_path or None)
    router = VendorRouter(
        build_providers(settings),
        backoff_base_seconds=settings.llm_backoff_base_seconds,
        backoff_max_seconds=settings.llm_backoff_max_seconds,
    )
    logger.info(
        "Coaching engine built",
        extra={
            "providers": ",".join(router.provider_names),
            "risk_policy_version": policy.version,
            "worst_case_latency_s": router.worst_case_latency,
        },
    )
    return CoachingEngine(
        assessor=RiskAssessor(policy),
        router=router,
        resources=resources,
        search_backend_factory=SqlContentSearchBackend,
        constraints=GenerationConstraints(
            max_tokens=settings.llm_max_tokens,
            temperature=settings.llm_temperature,
        ),
        max_message_length=settings.max_message_length,
        history_turn_limit=settings.history_turn_limit,
        retrieval_limit=settings.retrieval_limit,
        summary_message_threshold=settings.summary_message_threshold,
        summary_token_threshold=settings.summary_token_threshold,
        default_locale=settings.default_locale,
    )
