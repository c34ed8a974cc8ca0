"""Bearer tokens for the API: issue for a user, verify and resolve back to a user id."""

from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from fitlink.config import settings
from fitlink.errors import AuthError


def _keys() -> tuple[str, str, str]:
    """(signing key, verification key, algorithm); RS256 when a public key is configured."""
    if settings.use_rs256:
        return settings.jwt_private_key.strip(), settings.jwt_public_key.strip(), "RS256"
    return settings.secret_key, settings.secret_key, settings.jwt_algorithm


def create_access_token(user_id: int, email: str) -> str:
    signing_key, _, algorithm = _keys()
    claims = {
        "sub": str(user_id),
        "email": email,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return jwt.encode(claims, signing_key, algorithm=algorithm)


def decode_token(token: str) -> dict[str, Any]:
    _, verify_key, algorithm = _keys()
    return jwt.decode(token, verify_key, algorithms=[algorithm])


def user_id_from_token(token: str) -> int:
    """Verified subject of a bearer token. Raises AuthError for anything unusable."""
    try:
        subject = decode_token(token).get("sub")
    except JWTError:
        raise AuthError("Invalid or expired token")
    if not subject or not str(subject).isdigit():
        raise AuthError("Invalid token")
    return int(subject)
