"""Bearer token helpers for resolving the calling user."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from config import settings


TOKEN_ROLE = "authenticated"
TOKEN_ALGORITHM = "HS256"


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def create_session_token(
    user_id: str,
    email: Optional[str] = None,
    expires_hours: int = 24,
    signing_key: Optional[str] = None,
) -> Dict[str, Any]:
    """Create a signed access token for a user (local development and tests)."""
    now = datetime.now(timezone.utc)
    expires_at = now + timedelta(hours=max(int(expires_hours), 1))
    claims: Dict[str, Any] = {
        "sub": user_id,
        "role": TOKEN_ROLE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if email:
        claims["email"] = email

    token = jwt.encode(claims, signing_key or settings.STORAGE_ANON_KEY, algorithm=TOKEN_ALGORITHM)
    return {
        "token": token,
        "expires_at": int(expires_at.timestamp()),
    }


def decode_session_token(token: str, verification_key: Optional[str] = None) -> Dict[str, Any]:
    """Verify a token with the low-privilege storage key and return its claims."""
    key = verification_key or settings.STORAGE_ANON_KEY
    if not key:
        raise ValueError("Token verification key is not configured.")
    try:
        payload = jwt.decode(token, key, algorithms=[TOKEN_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid or expired session token.") from exc

    role = str(payload.get("role", "")).strip()
    if role != TOKEN_ROLE:
        raise ValueError("Invalid session token role.")

    subject = str(payload.get("sub", "")).strip()
    if not subject:
        raise ValueError("Session token missing subject.")

    return payload


def resolve_user_id(authorization: Optional[str], verification_key: Optional[str] = None) -> str:
    """Resolve an Authorization header to a user id or raise ValueError."""
    token = extract_bearer_token(authorization)
    if not token:
        raise ValueError("Missing authorization header")
    payload = decode_session_token(token, verification_key)
    return str(payload["sub"]).strip()
