"""
Bearer-token identity.

The identity provider issues signed JWTs carrying ``sub`` (user id),
``email`` and ``role``. Handlers get a ``RequestContext`` built from the
token rather than reading a session singleton.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from fastapi import Depends, Header
from jose import JWTError, jwt

from config import get_settings
from errors import Forbidden, Unauthorized
from permissions import Action, Role, has_permission

logger = logging.getLogger(__name__)

ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24


def guest_user_id(email: str) -> str:
    """Owner id recorded for records created without a session."""
    return f"guest:{email.lower()}"


@dataclass(frozen=True)
class RequestContext:
    user_id: str
    email: Optional[str]
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    @property
    def recipient_ids(self) -> List[str]:
        # guest records made with this email belong to the signed-in user
        ids = [self.user_id]
        if self.email:
            ids.append(guest_user_id(self.email))
        return ids

    def can(self, action: Action) -> bool:
        return has_permission(self.role, action)

    def require(self, action: Action) -> None:
        if not self.can(action):
            raise Forbidden("Forbidden - Insufficient permissions")


def create_access_token(
    user_id: str,
    email: Optional[str] = None,
    role: str = Role.USER.value,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Create a signed token in the identity provider's format."""
    settings = get_settings()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": user_id, "email": email, "role": role, "exp": expire}
    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> RequestContext:
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise Unauthorized("Could not validate credentials")
    user_id = payload.get("sub")
    if not user_id:
        raise Unauthorized("Could not validate credentials")
    return RequestContext(
        user_id=str(user_id),
        email=(payload.get("email") or None),
        role=Role.from_claim(payload.get("role", Role.USER.value)),
    )


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return None


def get_optional_context(
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Optional[RequestContext]:
    """Context for endpoints open to guests; a malformed token is still rejected."""
    token = _bearer(authorization)
    if token is None:
        if authorization:
            raise Unauthorized("Could not validate credentials")
        return None
    return decode_token(token)


def get_context(ctx: Optional[RequestContext] = Depends(get_optional_context)) -> RequestContext:
    if ctx is None or ctx.role is Role.GUEST:
        raise Unauthorized()
    return ctx


def require_admin(ctx: RequestContext = Depends(get_context)) -> RequestContext:
    if not ctx.is_admin:
        raise Forbidden("Forbidden - Insufficient permissions")
    return ctx


def require_permission(action: Action):
    """Dependency factory: authenticated context holding ``action``."""

    def dependency(ctx: RequestContext = Depends(get_context)) -> RequestContext:
        ctx.require(action)
        return ctx

    return dependency
