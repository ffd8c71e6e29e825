"""
FastAPI dependencies for authentication, database sessions and the engine.
"""

import uuid
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from coach_engine.database import get_db
from coach_engine.kernel.identity.jwt import verify_access_token
from coach_engine.orchestration.coaching_engine import CoachingEngine, build_engine


# Security scheme
security = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


async def get_current_user_id(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> uuid.UUID:
    """User id from a verified bearer token, or 401."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_access_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload.user_id


CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]


def get_engine(request: Request) -> CoachingEngine:
    """The application's engine (built at startup, or on first use)."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = build_engine()
        request.app.state.engine = engine
    return engine


Engine = Annotated[CoachingEngine, Depends(get_engine)]
