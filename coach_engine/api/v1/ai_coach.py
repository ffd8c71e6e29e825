"""
AI coach endpoints - chat turns, conversation history and reply feedback.

Routes are thin: every coaching decision lives in ``CoachingEngine``.
"""

import uuid
from typing import List

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy import select

from coach_engine.api.deps import CurrentUserId, DbSession, Engine
from coach_engine.core.exceptions import SessionNotFoundError
from coach_engine.kernel.models.conversation import (
    CoachingSession,
    ConversationMessage,
    MessageSender,
)
from coach_engine.kernel.models.feedback import MessageFeedback
from coach_engine.logging_config import get_logger
from coach_engine.schemas.coach import (
    ChatMessageIn,
    CoachTurnRequest,
    CoachTurnResult,
    FeedbackIn,
    FeedbackOut,
    MessageOut,
    SessionDetailOut,
    SessionOut,
)

logger = get_logger(__name__)
router = APIRouter()


@router.post("/chat", response_model=CoachTurnResult)
async def chat(
    body: ChatMessageIn,
    user_id: CurrentUserId,
    db: DbSession,
    engine: Engine,
):
    """Send a message to the AI coach and receive its reply."""
    result = await engine.handle_message(
        db,
        CoachTurnRequest(
            user_id=user_id,
            session_id=body.conversation_id,
            message=body.message,
            user_context=body.user_context,
        ),
    )
    if result.outcome == "rejected":
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": result.reply_text, "code": result.rejection_reason},
        )
    return result


@router.get("/conversations", response_model=List[SessionOut])
async def list_conversations(
    user_id: CurrentUserId,
    db: DbSession,
    engine: Engine,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    """The current user's coaching conversations, newest first."""
    store = engine.conversation_store(db)
    sessions = await store.list_sessions(user_id, limit=limit, offset=offset)
    return [SessionOut.model_validate(s) for s in sessions]


@router.get("/conversations/{conversation_id}", response_model=SessionDetailOut)
async def get_conversation(
    conversation_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
    engine: Engine,
):
    """One conversation with its full message history."""
    store = engine.conversation_store(db)
    try:
        session = await store.get(conversation_id, user_id=user_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

    messages = await store.messages(session.id)
    detail = SessionDetailOut.model_validate(session)
    detail.messages = [MessageOut.model_validate(m) for m in messages]
    return detail


@router.post("/conversations/{conversation_id}/close", response_model=SessionOut)
async def close_conversation(
    conversation_id: uuid.UUID,
    user_id: CurrentUserId,
    db: DbSession,
    engine: Engine,
):
    """End a conversation; the next message starts a new one."""
    store = engine.conversation_store(db)
    try:
        session = await store.close(conversation_id, user_id=user_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return SessionOut.model_validate(session)


@router.post("/feedback", response_model=FeedbackOut, status_code=status.HTTP_201_CREATED)
async def submit_feedback(
    body: FeedbackIn,
    user_id: CurrentUserId,
    db: DbSession,
):
    """Rate a coach reply (1-5) with an optional comment. Re-rating replaces the earlier rating."""
    result = await db.execute(
        select(ConversationMessage)
        .join(CoachingSession, ConversationMessage.session_id == CoachingSession.id)
        .where(
            ConversationMessage.id == body.message_id,
            CoachingSession.user_id == user_id,
            ConversationMessage.sender == MessageSender.ASSISTANT.value,
        )
    )
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Message not found")

    existing = await db.execute(
        select(MessageFeedback).where(
            MessageFeedback.message_id == body.message_id,
            MessageFeedback.user_id == user_id,
        )
    )
    feedback = existing.scalar_one_or_none()
    if feedback is None:
        feedback = MessageFeedback(
            message_id=body.message_id,
            user_id=user_id,
            rating=body.rating,
            comment=body.feedback,
        )
        db.add(feedback)
    else:
        feedback.rating = body.rating
        feedback.comment = body.feedback
    await db.flush()

    logger.info(
        "Coach reply rated",
        extra={"message_id": str(body.message_id), "rating": body.rating},
    )
    return FeedbackOut(id=feedback.id, message_id=feedback.message_id, rating=feedback.rating)
