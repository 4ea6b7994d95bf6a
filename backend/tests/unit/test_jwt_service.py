"""
Tests for JWT service functionality.
"""

from datetime import datetime, timedelta, timezone

import jwt

from services.jwt_service import JWTService, TokenPayload, jwt_service


class TestJWTService:
    """Test JWT token creation and validation."""

    def test_create_access_token(self):
        """Test creating a JWT access token."""
        token = jwt_service.create_access_token(TokenPayload(sub="patient-1", role="patient", patient_id=1))
        assert isinstance(token, str)
        assert len(token) > 0

    def test_verify_token_valid(self):
        """Test verifying a valid JWT token."""
        payload = TokenPayload(sub="therapist-3", role="therapist", therapist_id=3)

        verified_payload = jwt_service.verify_token(jwt_service.create_access_token(payload))

        assert verified_payload is not None
        assert verified_payload.sub == "therapist-3"
        assert verified_payload.role == "therapist"
        assert verified_payload.therapist_id == 3
        assert verified_payload.patient_id is None
        assert verified_payload.exp is not None

    def test_verify_token_expired(self):
        """Test verifying an expired JWT token."""
        token = jwt_service.create_access_token(
            TokenPayload(sub="admin", role="admin"), expires_in=timedelta(seconds=-1)
        )
        assert jwt_service.verify_token(token) is None

    def test_verify_token_wrong_secret(self):
        token = JWTService(secret_key="another-secret").create_access_token(TokenPayload(sub="admin", role="admin"))
        assert jwt_service.verify_token(token) is None

    def test_verify_token_garbage(self):
        assert jwt_service.verify_token("not.a.token") is None

    def test_verify_token_missing_role(self):
        """A correctly signed token without a role is rejected."""
        now = datetime.now(timezone.utc)
        token = jwt.encode(
            {"sub": "someone", "iat": now, "exp": now + timedelta(minutes=5)},
            jwt_service.secret_key,
            algorithm=JWTService.ALGORITHM,
        )
        assert jwt_service.verify_token(token) is None
