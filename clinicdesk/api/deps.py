# clinicdesk/api/deps.py
from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, HTTPException
from jose import jwt, JWTError
from sqlalchemy.orm import Session

from clinicdesk.core.config import settings
from clinicdesk.core.errors import ForbiddenError
from clinicdesk.db.session import get_db
from clinicdesk.models.user import User

__all__ = ["get_db", "current_user", "require_roles", "has_role"]


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_token(raw_token: str) -> dict:
    try:
        return jwt.decode(raw_token,
                          settings.JWT_SECRET,
                          algorithms=[settings.JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def current_user(
        authorization: Optional[str] = Header(None),
        db: Session = Depends(get_db),
) -> User:
    raw = _extract_bearer(authorization)
    if not raw:
        raise HTTPException(status_code=401, detail="Missing token")

    payload = _decode_token(raw)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user: Optional[User] = db.get(User, str(user_id))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="User inactive")
    return user


# =========================================================
# ROLE CHECKS
# =========================================================
def has_role(user: User, *roles: str) -> bool:
    if not user:
        return False
    if user.is_admin:
        return True
    return user.role in roles


def require_roles(user: User, *roles: str) -> None:
    """Raise 403 unless the user holds one of `roles` (admin always passes)."""
    if not has_role(user, *roles):
        raise ForbiddenError(
            f"This action requires role: {', '.join(roles)}",
            code="ROLE_NOT_PERMITTED",
        )
