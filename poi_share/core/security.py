"""JWT verification for the external identity provider."""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict
import jwt

from poi_share.config.settings import settings


def issue_token(subject: str, expires_minutes: int = 60) -> str:
    """Issue a token for ``subject``; used by tests and local tooling only."""
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": subject,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.security.jwt_secret, algorithm=settings.security.jwt_algorithm)


def verify_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(
            token,
            settings.security.jwt_secret,
            algorithms=[settings.security.jwt_algorithm],
        )
    except jwt.PyJWTError:
        return {}
