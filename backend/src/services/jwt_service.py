"""
JWT service for validating caller identity.

Tokens are issued by the identity provider; this service only needs to
verify them. ``create_access_token`` exists for tooling and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel, ValidationError

from core.config import JWT_ACCESS_TOKEN_EXPIRE_MINUTES, JWT_SECRET_KEY


class TokenPayload(BaseModel):
    """Payload structure for JWT tokens."""
    sub: str  # Identity provider subject id
    role: str  # "patient", "therapist" or "admin"
    patient_id: Optional[int] = None  # Set for patients
    therapist_id: Optional[int] = None  # Set for therapists
    iat: Optional[int] = None  # Set by JWT service
    exp: Optional[int] = None  # Set by JWT service


class JWTService:
    """Service for JWT token operations."""

    ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = JWT_ACCESS_TOKEN_EXPIRE_MINUTES

    def __init__(self, secret_key: str = JWT_SECRET_KEY):
        self.secret_key = secret_key

    def create_access_token(self, payload: TokenPayload, expires_in: Optional[timedelta] = None) -> str:
        """Create a signed access token."""
        to_encode = payload.model_dump(exclude={"iat", "exp"})
        now = datetime.now(timezone.utc)
        expire = now + (expires_in or timedelta(minutes=self.ACCESS_TOKEN_EXPIRE_MINUTES))
        to_encode.update({"exp": expire, "iat": now})
        return jwt.encode(to_encode, self.secret_key, algorithm=self.ALGORITHM)

    def verify_token(self, token: str) -> Optional[TokenPayload]:
        """Verify and decode a token. Returns None if invalid or expired."""
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.ALGORITHM])
            return TokenPayload(**payload)
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None
        except ValidationError:
            return None


# Global JWT service instance
jwt_service = JWTService()
