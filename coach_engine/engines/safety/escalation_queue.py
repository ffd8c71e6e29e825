"""
Escalation Queue - redacted hand-off of crisis-flagged messages to human review.

CRITICAL INVARIANTS:
- Redaction runs before anything is persisted; unverifiable redaction fails
  closed (content withheld, metadata kept)
- At most one record per triggering message
- Queue writes are best-effort: a failure is logged as a critical
  operational fault and never changes the user-facing response
- Status only moves pending → in_review → {completed, escalated}, and only
  through the human-review collaborator calling ``transition``
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

from pydantic import BaseModel
from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from coach_engine.core.exceptions import (
    EscalationNotFoundError,
    InvalidStatusTransition,
    QueueWriteFault,
    RedactionFault,
)
from coach_engine.engines.safety.redaction import redact_pii
from coach_engine.engines.safety.resources import RegionalResourceDirectory
from coach_engine.engines.safety.risk_assessor import RiskSignalBundle
from coach_engine.kernel.models.escalation import (
    EscalationPriority,
    EscalationRecord,
    EscalationStatus,
)
from coach_engine.logging_config import get_logger, log_security_event

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[EscalationStatus, Set[EscalationStatus]] = {
    EscalationStatus.PENDING: {EscalationStatus.IN_REVIEW},
    EscalationStatus.IN_REVIEW: {EscalationStatus.COMPLETED, EscalationStatus.ESCALATED},
    EscalationStatus.COMPLETED: set(),
    EscalationStatus.ESCALATED: set(),
}


class EscalationRequest(BaseModel):
    """Everything needed to queue one flagged message for review."""

    user_id: uuid.UUID
    message_id: uuid.UUID
    session_id: Optional[uuid.UUID] = None
    content: str
    signals: RiskSignalBundle
    locale: Optional[str] = None


class EnqueueResult(BaseModel):
    """What happened to an escalation request."""

    record_id: Optional[uuid.UUID] = None
    priority: EscalationPriority
    queued: bool
    content_withheld: bool = False
    duplicate: bool = False


class EscalationQueue:
    """
    Service for the human-review queue.

    Usage:
        queue = EscalationQueue(session, resources)
        result = await queue.enqueue(EscalationRequest(...))
    """

    def __init__(
        self,
        session: AsyncSession,
        resources: RegionalResourceDirectory,
        urgent_threshold: float = 0.9,
    ):
        self.session = session
        self.resources = resources
        self.urgent_threshold = urgent_threshold

    def priority_for(self, composite_score: float) -> EscalationPriority:
        if composite_score >= self.urgent_threshold:
            return EscalationPriority.URGENT
        return EscalationPriority.HIGH

    async def enqueue(self, request: EscalationRequest) -> EnqueueResult:
        """
        Redact and persist an escalation record. Never raises for queue faults.

        Returns:
            EnqueueResult; ``queued`` is False when the write failed
        """
        score = request.signals.composite_score
        priority = self.priority_for(score)
        meta = {
            "user_id": str(request.user_id),
            "message_id": str(request.message_id),
            "risk_score": round(score, 4),
            "priority": priority.value,
        }

        content_withheld = False
        redacted: Optional[str]
        try:
            redacted = redact_pii(request.content).content
        except RedactionFault as exc:
            redacted = None
            content_withheld = True
            log_security_event("redaction_unverified", severity="high", reason=str(exc), **meta)

        try:
            existing = await self.get_by_message(request.message_id)
        except SQLAlchemyError as exc:
            fault = QueueWriteFault("Escalation queue unreachable", {"error": type(exc).__name__})
            self._report_write_failure(fault, meta)
            return EnqueueResult(priority=priority, queued=False, content_withheld=content_withheld)
        if existing is not None:
            return self._duplicate(existing)

        record = EscalationRecord(
            user_id=request.user_id,
            session_id=request.session_id,
            message_id=request.message_id,
            content_type="crisis_detection",
            risk_score=score,
            signals=request.signals.model_dump(mode="json"),
            redacted_content=redacted,
            content_withheld=content_withheld,
            suggested_resources=self.resources.suggested_resources(request.locale),
            priority=priority.value,
            status=EscalationStatus.PENDING.value,
        )

        try:
            await self._persist(record)
        except IntegrityError:
            # Lost a race against a concurrent enqueue for the same message
            existing = await self.get_by_message(request.message_id)
            if existing is not None:
                return self._duplicate(existing)
            fault = QueueWriteFault("Escalation insert conflicted without a surviving record", meta)
            self._report_write_failure(fault, meta)
            return EnqueueResult(priority=priority, queued=False, content_withheld=content_withheld)
        except QueueWriteFault as fault:
            self._report_write_failure(fault, meta)
            return EnqueueResult(priority=priority, queued=False, content_withheld=content_withheld)

        log_security_event(
            "crisis_escalation_queued",
            severity="high",
            record_id=str(record.id),
            content_withheld=content_withheld,
            **meta,
        )
        return EnqueueResult(
            record_id=record.id,
            priority=priority,
            queued=True,
            content_withheld=content_withheld,
        )

    async def _persist(self, record: EscalationRecord) -> None:
        # Savepoint so a failed insert leaves the caller's transaction usable
        try:
            async with self.session.begin_nested():
                self.session.add(record)
                await self.session.flush()
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            raise QueueWriteFault("Escalation record could not be persisted", {"error": type(exc).__name__}) from exc

    @staticmethod
    def _duplicate(existing: EscalationRecord) -> EnqueueResult:
        return EnqueueResult(
            record_id=existing.id,
            priority=EscalationPriority(existing.priority),
            queued=True,
            content_withheld=existing.content_withheld,
            duplicate=True,
        )

    def _report_write_failure(self, fault: QueueWriteFault, meta: dict) -> None:
        logger.critical("Escalation record lost: %s", fault, extra=meta, exc_info=fault)
        log_security_event("escalation_write_failed", severity="critical", **meta)

    # ── Review-side operations ───────────────────────────────────────────

    async def get(self, record_id: uuid.UUID) -> EscalationRecord:
        record = await self.session.get(EscalationRecord, record_id)
        if record is None:
            raise EscalationNotFoundError(f"Escalation record not found: {record_id}")
        return record

    async def get_by_message(self, message_id: uuid.UUID) -> Optional[EscalationRecord]:
        result = await self.session.execute(
            select(EscalationRecord).where(EscalationRecord.message_id == message_id)
        )
        return result.scalar_one_or_none()

    async def count_for_user(self, user_id: uuid.UUID) -> int:
        return await self.session.scalar(
            select(func.count()).select_from(EscalationRecord).where(EscalationRecord.user_id == user_id)
        ) or 0

    async def pending(self, limit: int = 50) -> List[EscalationRecord]:
        """Review backlog: urgent before high, oldest first within a priority."""
        urgent_first = case(
            (EscalationRecord.priority == EscalationPriority.URGENT.value, 0),
            else_=1,
        )
        result = await self.session.execute(
            select(EscalationRecord)
            .where(EscalationRecord.status == EscalationStatus.PENDING.value)
            .order_by(urgent_first, EscalationRecord.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def transition(
        self,
        record_id: uuid.UUID,
        new_status: EscalationStatus,
        reviewer_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> EscalationRecord:
        """
        Move a record forward in the review lifecycle.

        Called by the human-review collaborator only; the engine never
        changes review status on its own.

        Raises:
            EscalationNotFoundError: unknown record
            InvalidStatusTransition: move not allowed from the current status
        """
        record = await self.get(record_id)
        current = EscalationStatus(record.status)
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransition(current.value, new_status.value)

        values: dict = {
            "status": new_status.value,
            "reviewed_by": reviewer_id,
            "reviewed_at": datetime.now(timezone.utc),
        }
        if notes is not None:
            values["notes"] = notes

        # Compare-and-set on the current status so concurrent reviewers cannot
        # move a record backwards.
        result = await self.session.execute(
            update(EscalationRecord)
            .where(
                EscalationRecord.id == record_id,
                EscalationRecord.status == current.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.session.refresh(record)
            raise InvalidStatusTransition(record.status, new_status.value)

        await self.session.refresh(record)
        logger.info(
            "Escalation status changed",
            extra={"record_id": str(record_id), "from": current.value, "to": new_status.value},
        )
        return record
