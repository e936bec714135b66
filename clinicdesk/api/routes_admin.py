# FILE: clinicdesk/api/routes_admin.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from clinicdesk.api.deps import current_user, get_db, require_roles
from clinicdesk.api.response import ok
from clinicdesk.models.user import User
from clinicdesk.schemas.queue import StaleTokenOut
from clinicdesk.services.queue_service import QueueService

router = APIRouter()


@router.post("/cleanup/stuck-consultations")
def cleanup_stuck_consultations(
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    """Close every queue token left open from an earlier day."""
    require_roles(user, "admin")
    closed = QueueService(db).close_stale_tokens(user=user)
    msg = (f"Closed {len(closed)} stale token(s)"
           if closed else "No stale tokens found")
    return ok(
        {
            "fixed": len(closed),
            "tokens": [StaleTokenOut(**c).model_dump() for c in closed],
        },
        message=msg,
    )
