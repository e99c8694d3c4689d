from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from jose import JWTError, jwt

from afe_approval.core.config import settings


def create_access_token(
    subject: str,
    email: str,
    name: str | None = None,
    role: str | None = None,
    expires_minutes: int = 60,
    extra_claims: Mapping[str, Any] | None = None,
) -> str:
    """Issue a token shaped like the identity provider's; used by tooling and tests."""
    to_encode: dict[str, Any] = {
        "sub": subject,
        "email": email,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    if name:
        to_encode["name"] = name
    if role:
        to_encode["role"] = role
    if extra_claims:
        to_encode.update(extra_claims)
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_token(token: str) -> dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc
    if not payload.get("sub") and not payload.get("email"):
        raise ValueError("Invalid token payload")
    return payload
