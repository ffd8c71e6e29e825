"""
Common schema types used across the API.
"""

from typing import List, Optional

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    database: str = "connected"
    providers: List[str] = []
    risk_policy_version: Optional[str] = None
