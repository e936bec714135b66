
from sqlalchemy import (
    Column,
    String,
    Date,
    DateTime,
    Boolean,
    ForeignKey,
    Text,
    Index,
)

from sqlalchemy.orm import relationship

from clinicdesk.db.base import Base, new_uuid
from clinicdesk.utils.timezone import now_local


class PatientDiagnosis(Base):
    __tablename__ = "patient_diagnoses"
    __table_args__ = (Index("ix_patient_diagnoses_patient", "patient_id",
                            "deleted_at"), )

    id = Column(String(36), primary_key=True, default=new_uuid)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    visit_id = Column(String(36),
                      ForeignKey("visits.id"),
                      nullable=True,
                      index=True)

    diagnosis_name = Column(String(255), nullable=False)
    diagnosis_code = Column(String(32), nullable=True)  # ICD-10 etc.
    notes = Column(Text, nullable=True)

    status = Column(String(16), nullable=False, default="active")  # active | resolved
    diagnosed_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    diagnosed_date = Column(Date, nullable=False)
    resolved_date = Column(Date, nullable=True)
    status_changed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=now_local)
    updated_at = Column(DateTime,
                        default=now_local,
                        onupdate=now_local)
    deleted_at = Column(DateTime, nullable=True)

    patient = relationship("Patient", foreign_keys=[patient_id])


class PatientAllergy(Base):
    __tablename__ = "patient_allergies"
    __table_args__ = (Index("ix_patient_allergies_patient", "patient_id",
                            "deleted_at"), )

    id = Column(String(36), primary_key=True, default=new_uuid)
    patient_id = Column(String(36), ForeignKey("patients.id"), nullable=False)
    visit_id = Column(String(36), ForeignKey("visits.id"), nullable=True)

    allergy_name = Column(String(255), nullable=False)
    allergy_type = Column(String(32), nullable=True)  # drug | food | environmental | other
    severity = Column(String(16), nullable=True)  # mild | moderate | severe
    reaction = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)

    # clinical flag (allergy still relevant); deletion is deleted_at only
    is_active = Column(Boolean, nullable=False, default=True)
    diagnosed_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    diagnosed_date = Column(Date, nullable=True)

    created_at = Column(DateTime, default=now_local)
    updated_at = Column(DateTime,
                        default=now_local,
                        onupdate=now_local)
    deleted_at = Column(DateTime, nullable=True)

    patient = relationship("Patient", foreign_keys=[patient_id])
