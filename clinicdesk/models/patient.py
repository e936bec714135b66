# FILE: clinicdesk/models/patient.py
from sqlalchemy import (
    Column,
    String,
    Date,
    DateTime,
    func,
)

from clinicdesk.db.base import Base, new_uuid


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=new_uuid)
    # human facing number printed on cards / invoices (P-000123)
    patient_number = Column(String(32), unique=True, index=True, nullable=False)

    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(16), nullable=True)
    phone = Column(String(20), index=True, nullable=True)
    email = Column(String(191), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(
        DateTime,
        onupdate=func.now(),
        server_default=func.now(),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()
