"""Unit tests for access-token verification."""

import uuid
from datetime import timedelta

from jose import jwt

from coach_engine.kernel.identity.jwt import JWTManager


class TestJWTManager:
    def setup_method(self):
        self.manager = JWTManager(secret_key="test-secret-key-that-is-long-enough", algorithm="HS256")

    def test_round_trip(self):
        user_id = uuid.uuid4()
        payload = self.manager.verify_access_token(self.manager.create_access_token(user_id))
        assert payload is not None
        assert payload.user_id == user_id
        assert payload.role == "user"

    def test_expired_token_rejected(self):
        token = self.manager.create_access_token(uuid.uuid4(), expires_delta=timedelta(seconds=-5))
        assert self.manager.verify_access_token(token) is None

    def test_wrong_secret_rejected(self):
        other = JWTManager(secret_key="a-completely-different-secret-key", algorithm="HS256")
        assert self.manager.verify_access_token(other.create_access_token(uuid.uuid4())) is None

    def test_non_access_token_rejected(self):
        token = jwt.encode(
            {"sub": str(uuid.uuid4()), "type": "refresh"},
            "test-secret-key-that-is-long-enough",
            algorithm="HS256",
        )
        assert self.manager.verify_access_token(token) is None

    def test_garbage_rejected(self):
        assert self.manager.verify_access_token("not-a-jwt") is None
