import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinicdesk.core.errors import ForbiddenError, ValidationError
from clinicdesk.models.opd import Visit

logger = logging.getLogger(__name__)


def get_patient_active_visit(db: Session, patient_id: str) -> Optional[Visit]:
    """The patient's in_progress visit (most recent if data is dirty)."""
    return (db.query(Visit).filter(
        Visit.patient_id == patient_id,
        Visit.status == "in_progress",
    ).order_by(Visit.started_at.desc()).first())


def require_active_visit(db: Session, patient_id: Optional[str]) -> Visit:
    if not patient_id:
        raise ValidationError("patient_id is required")
    visit = get_patient_active_visit(db, patient_id)
    if visit is None:
        raise ForbiddenError(
            "Patient has no active visit. Start a visit before recording "
            "clinical data.",
            code="NO_ACTIVE_VISIT",
        )
    return visit


def check_active_visit(db: Session, patient_id: Optional[str]) -> Optional[Visit]:
    """Non-blocking variant for read paths; lookup failures are only logged."""
    if not patient_id:
        return None
    try:
        return get_patient_active_visit(db, patient_id)
    except SQLAlchemyError as e:
        logger.warning("Active visit lookup failed for patient=%s: %s",
                       patient_id, e)
        db.rollback()
        return None
