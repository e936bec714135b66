
from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
)

from clinicdesk.db.base import Base
from clinicdesk.utils.timezone import now_local


class AuditLog(Base):
    """
    Clinic audit trail.
    Visit creation and every diagnosis / allergy write lands here.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(String(36), nullable=True)  # system jobs may be null
    role = Column(String(20), nullable=True)
    action = Column(String(20), nullable=False)  # CREATE / UPDATE / DELETE

    table_name = Column(String(255), nullable=False)
    record_id = Column(String(100), nullable=False)
    patient_id = Column(String(36), nullable=True, index=True)

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    result = Column(String(16), nullable=False, default="success")
    note = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=now_local, nullable=False)
