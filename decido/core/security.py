"""Security utilities: bearer tokens, shared secrets, ballot fingerprints."""

from datetime import datetime, timedelta, timezone
from uuid import UUID
import hashlib
import hmac
import logging

import jwt
from pydantic import BaseModel

from .config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)


# JWT Token handling
class TokenPayload(BaseModel):
    """JWT token payload issued by the external identity service."""

    sub: str  # User ID
    name: str | None = None
    exp: datetime
    iat: datetime
    type: str = "access"


def create_access_token(
    user_id: UUID,
    name: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )

    payload = {
        "sub": str(user_id),
        "name": name,
        "exp": expire,
        "iat": now,
        "type": "access",
    }

    return jwt.encode(payload, settings.secret_key, algorithm="HS256")


def decode_token(token: str) -> TokenPayload | None:
    """Decode and validate a JWT token (HS256)."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=["HS256"])
        return TokenPayload(**payload)
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def verify_cron_secret(authorization: str | None) -> bool:
    """Check an ``Authorization: Bearer <secret>`` header against CRON_SECRET.

    An unset secret rejects every call.
    """
    if not settings.cron_secret or not authorization:
        return False
    expected = f"Bearer {settings.cron_secret}"
    return hmac.compare_digest(expected.encode(), authorization.encode())


def hash_fingerprint(dedup_key: str) -> str:
    """One-way fingerprint for anonymous ballots.

    HMAC-SHA256 keyed with the application secret, so the raw key (usually a
    client address) cannot be recovered by hashing candidate values.
    """
    return hmac.new(
        settings.secret_key.encode(),
        dedup_key.encode(),
        hashlib.sha256,
    ).hexdigest()
