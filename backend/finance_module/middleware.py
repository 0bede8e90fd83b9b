from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .capabilities import Capabilities, Role, resolve_capabilities
from .database import get_db_session
from .security import AuthError, decode_access_token


@dataclass(frozen=True)
class Actor:
    subject: str
    role: Role
    center_id: str | None
    # Children a parent token may see.
    student_ids: tuple[str, ...] = ()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _bearer_token(authorization: str | None) -> str:
    scheme, _, token = (authorization or "").strip().partition(" ")
    if not scheme:
        raise _unauthorized("Missing Authorization header")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _unauthorized("Invalid auth scheme")
    return token


def get_current_actor(authorization: str | None = Header(default=None, alias="Authorization")) -> Actor:
    try:
        payload = decode_access_token(_bearer_token(authorization))
    except AuthError as exc:
        raise _unauthorized(str(exc)) from exc

    try:
        role = Role(payload["role"])
    except ValueError as exc:
        raise _unauthorized("Unknown role") from exc
    student_ids = payload.get("student_ids") or []
    if not isinstance(student_ids, list):
        raise _unauthorized("Invalid student_ids claim")
    return Actor(
        subject=payload["sub"],
        role=role,
        center_id=payload.get("center_id"),
        student_ids=tuple(str(s) for s in student_ids),
    )


def get_capabilities(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db_session),
) -> Capabilities:
    return resolve_capabilities(db, role=actor.role, center_id=actor.center_id, student_ids=actor.student_ids)
