"""
Authentication utilities: password hashing, JWT tokens and identity verification
"""

import logging
import re
import jwt
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from passlib.context import CryptContext
from typing import Optional

from config.settings import Settings

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(
    schemes=["argon2"],
    deprecated="auto"
)

# JWT configuration
ALGORITHM = "HS256"

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


def hash_password(password: str) -> str:
    """Hash a password using argon2"""
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash"""
    return pwd_context.verify(password, password_hash)


def validate_email(email: str) -> bool:
    """Validate email format"""
    return EMAIL_PATTERN.match(email) is not None


def validate_password_strength(password: str) -> None:
    """
    Enforce minimum password strength: 8+ characters with at least one
    letter and one digit.

    Raises:
        ValueError: If password does not meet strength requirements
    """
    if not password or len(password) < 8:
        raise ValueError("Password must be at least 8 characters long")
    if not re.search(r'[A-Za-z]', password):
        raise ValueError("Password must contain at least one letter")
    if not re.search(r'[0-9]', password):
        raise ValueError("Password must contain at least one digit")


def create_jwt(user_id: str, settings: Settings, expires_in: Optional[timedelta] = None) -> str:
    """Create a JWT token for a user"""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot create JWT token.")

    if expires_in is None:
        expires_in = timedelta(days=settings.jwt_expire_days)
    payload = {
        "sub": str(user_id),
        "exp": datetime.now(timezone.utc) + expires_in
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)


def decode_jwt(token: str, settings: Settings) -> Optional[dict]:
    """Decode a JWT token. Returns None if invalid."""
    if not settings.jwt_secret_key:
        raise ValueError("JWT_SECRET_KEY is not set. Cannot decode JWT token.")

    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


@dataclass(frozen=True)
class Identity:
    user_id: int


class IdentityVerifier:
    """Turns a bearer credential into an Identity, or None when it does not verify."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def verify(self, token: Optional[str]) -> Optional[Identity]:
        if not token:
            return None
        if not self.settings.jwt_secret_key:
            logger.error("JWT_SECRET_KEY is not set; treating credentials as unverifiable")
            return None
        payload = decode_jwt(token, self.settings)
        if not payload:
            return None
        try:
            return Identity(user_id=int(payload.get("sub")))
        except (TypeError, ValueError):
            return None
