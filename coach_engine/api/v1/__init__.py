"""
API v1 routes.
"""

from fastapi import APIRouter

from coach_engine.api.v1 import ai_coach

router = APIRouter()

router.include_router(ai_coach.router, prefix="/ai-coach", tags=["AI Coach"])
