"""
Session handling.

The primary session is a bearer JWT from the identity provider. The admin
MFA flag is a second, independently expiring token scoped to one user id,
sent back by the client in the X-Admin-MFA header.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from fastapi import Depends, Header
from jose import JWTError, jwt
from pydantic import BaseModel

from config import JWT_ALGORITHM, JWT_SECRET, MFA_SECRET, MFA_VERIFIED_HOURS
from errors import MfaRequired, NotAuthorized

MFA_SCOPE = "admin_mfa"


class AuthContext(BaseModel):
    user_id: str
    email: Optional[str] = None
    role: Optional[str] = None
    mfa_verified_until: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def mfa_verified(self, now: Optional[datetime] = None) -> bool:
        if self.mfa_verified_until is None:
            return False
        return self.mfa_verified_until > (now or datetime.now(timezone.utc))


def decode_session_token(token: str) -> dict:
    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise NotAuthorized()


def create_mfa_token(user_id: str, now: Optional[datetime] = None) -> Tuple[str, datetime]:
    expires_at = (now or datetime.now(timezone.utc)) + timedelta(hours=MFA_VERIFIED_HOURS)
    token = jwt.encode({"sub": user_id, "scope": MFA_SCOPE, "exp": expires_at}, MFA_SECRET,
                       algorithm=JWT_ALGORITHM)
    return token, expires_at


def read_mfa_token(token: Optional[str], user_id: str) -> Optional[datetime]:
    """Expiry of a valid MFA token for this user, or None."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, MFA_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    if payload.get("scope") != MFA_SCOPE or payload.get("sub") != user_id:
        return None
    return datetime.fromtimestamp(payload["exp"], tz=timezone.utc)


def get_auth_context(authorization: Optional[str] = Header(default=None),
                     x_admin_mfa: Optional[str] = Header(default=None)) -> AuthContext:
    if not authorization or not authorization.startswith("Bearer "):
        raise NotAuthorized()
    payload = decode_session_token(authorization.split(" ", 1)[1])
    user_id = payload.get("sub")
    if not user_id:
        raise NotAuthorized()
    role = (payload.get("app_metadata") or {}).get("role") or payload.get("role")
    return AuthContext(
        user_id=user_id,
        email=payload.get("email"),
        role=role,
        mfa_verified_until=read_mfa_token(x_admin_mfa, user_id),
    )


def require_admin(ctx: AuthContext = Depends(get_auth_context)) -> AuthContext:
    if not ctx.is_admin:
        raise NotAuthorized(status_code=403)
    return ctx


def require_verified_admin(ctx: AuthContext = Depends(require_admin)) -> AuthContext:
    if not ctx.mfa_verified():
        raise MfaRequired("Admin verification required")
    return ctx
