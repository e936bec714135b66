import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinicdesk.models.audit import AuditLog

logger = logging.getLogger(__name__)


def log_audit_event(
    db: Session,
    *,
    user: Any = None,
    action: str,  # "CREATE" | "UPDATE" | "DELETE"
    table_name: str,
    record_id: Any,
    patient_id: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    result: str = "success",
    note: Optional[str] = None,
) -> None:
    """
    Persist one audit event in its own savepoint.
    Never raises: an audit failure must not fail the clinical write.
    """
    try:
        with db.begin_nested():
            db.add(
                AuditLog(
                    user_id=getattr(user, "id", None),
                    role=getattr(user, "role", None) or "system",
                    action=action,
                    table_name=table_name,
                    record_id=str(record_id),
                    patient_id=patient_id,
                    old_values=old_values,
                    new_values=new_values,
                    result=result,
                    note=note,
                ))
    except SQLAlchemyError as e:
        logger.error("[AUDIT] Failed to log %s on %s/%s: %s", action,
                     table_name, record_id, e)
