"""Common FastAPI dependencies for caller identity and authorization.

Authentication happens upstream; the gateway forwards the authenticated
caller in ``X-User-Id`` / ``X-User-Role`` headers.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Request

from app.core.exceptions import AuthenticationException, InsufficientPermissionsError
from app.core.sanitize import clean_single_line
from app.models.enums import UserRole

USER_ID_HEADER = "X-User-Id"
USER_ROLE_HEADER = "X-User-Role"


@dataclass(frozen=True)
class Caller:
    id: str
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


def get_current_caller(request: Request) -> Caller:
    user_id = clean_single_line(request.headers.get(USER_ID_HEADER))
    if not user_id:
        raise AuthenticationException(
            "not_authenticated",
            error_code="NOT_AUTHENTICATED",
            status_code=401,
        )
    raw_role = clean_single_line(request.headers.get(USER_ROLE_HEADER)).lower() or UserRole.user.value
    try:
        role = UserRole(raw_role)
    except ValueError:
        raise AuthenticationException(
            "invalid_role",
            error_code="INVALID_ROLE",
            status_code=401,
        )
    return Caller(id=user_id[:64], role=role)


def require_roles(*required: UserRole):
    allowed = set(required)

    def _checker(caller: Caller = Depends(get_current_caller)) -> Caller:
        if caller.role not in allowed:
            raise InsufficientPermissionsError("forbidden")
        return caller

    return _checker


def require_admin(caller: Caller = Depends(get_current_caller)) -> Caller:
    if caller.role != UserRole.admin:
        raise InsufficientPermissionsError("forbidden")
    return caller
