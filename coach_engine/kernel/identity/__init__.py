"""
Identity - bearer token verification.
"""

from coach_engine.kernel.identity.jwt import (
    AccessTokenPayload,
    JWTManager,
    create_access_token,
    verify_access_token,
)

__all__ = ["AccessTokenPayload", "JWTManager", "create_access_token", "verify_access_token"]
