from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from .config import settings


REQUIRED_CLAIMS = ["sub", "role", "exp"]


class AuthError(Exception):
    pass


def create_access_token(
    subject: str,
    role: str,
    center_id: str | None = None,
    student_ids: list[str] | None = None,
    expires_minutes: int = 60,
) -> str:
    """Issue a token the way the auth platform does; used by scripts and tests."""
    issued_at = datetime.now(timezone.utc)
    claims: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=expires_minutes),
    }
    if center_id:
        claims["center_id"] = center_id
    if student_ids:
        claims["student_ids"] = list(student_ids)
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            leeway=settings.jwt_leeway_seconds,
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired") from exc
    except jwt.MissingRequiredClaimError as exc:
        raise AuthError(f"Token is missing the '{exc.claim}' claim") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token") from exc
