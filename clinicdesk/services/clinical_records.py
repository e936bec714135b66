# FILE: clinicdesk/services/clinical_records.py
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session, joinedload

from clinicdesk.core.errors import ConflictError, NotFoundError, ValidationError
from clinicdesk.models.clinical import PatientAllergy, PatientDiagnosis
from clinicdesk.models.opd import Visit
from clinicdesk.models.patient import Patient
from clinicdesk.models.user import User
from clinicdesk.services.audit_logger import log_audit_event
from clinicdesk.utils.timezone import now_local

logger = logging.getLogger(__name__)


def _snapshot(obj) -> Dict[str, Any]:
    return jsonable_encoder(
        {c.name: getattr(obj, c.name)
         for c in obj.__table__.columns})


class _ClinicalRecordService:
    """
    Shared CRUD for per-patient clinical records.

    Writes assume the caller already passed the active-visit gate; the gate's
    visit is handed in so the record can be stamped with it. Deletion only
    sets `deleted_at`.
    """

    model: Type = None
    table_name: str = ""
    label: str = "Record"
    name_field: str = ""
    updatable: Tuple[str, ...] = ()
    # who can be recorded as the clinician
    clinician_roles: Tuple[str, ...] = ("doctor", )

    def __init__(self, db: Session, *, now: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.now = now or now_local

    # ---------- lookups ----------
    def get(self, record_id: str):
        """By id, soft-deleted rows included."""
        row = self.db.get(self.model, record_id) if record_id else None
        if row is None:
            raise NotFoundError(f"{self.label} not found")
        return row

    def get_live(self, record_id: str):
        row = self.get(record_id)
        if row.deleted_at is not None:
            raise NotFoundError(f"{self.label} not found")
        return row

    def _live(self):
        return self.db.query(self.model).filter(
            self.model.deleted_at.is_(None))

    def list_for_visit(self, visit_id: str) -> List:
        return (self._live().filter(self.model.visit_id == visit_id).order_by(
            self.model.created_at.desc()).all())

    # ---------- helpers ----------
    def _resolve_clinician(self, requested: Optional[str],
                           user: Optional[User]) -> str:
        if requested:
            u = self.db.get(User, requested)
            if not u or u.role not in self.clinician_roles:
                raise ValidationError(
                    f"diagnosed_by must be an existing "
                    f"{'/'.join(self.clinician_roles)} user",
                    code="INVALID_DIAGNOSED_BY",
                )
            return u.id
        if user is not None and user.role in self.clinician_roles:
            return user.id
        raise ValidationError(
            "diagnosed_by is required when the requester is not a clinician",
            code="DIAGNOSED_BY_REQUIRED",
        )

    def _resolve_visit(self, patient_id: str, requested: Optional[str],
                       active_visit: Optional[Visit]) -> Optional[str]:
        if not requested:
            return active_visit.id if active_visit is not None else None
        visit = self.db.get(Visit, requested)
        if visit is None or visit.patient_id != patient_id:
            raise ValidationError("visit_id does not belong to this patient",
                                  code="INVALID_VISIT")
        return visit.id

    def _require_patient(self, patient_id: str) -> None:
        if not self.db.get(Patient, patient_id):
            raise NotFoundError("Patient not found", code="PATIENT_NOT_FOUND")

    def _build(self, data: Dict[str, Any]):
        raise NotImplementedError

    # ---------- writes ----------
    def create(self,
               data: Dict[str, Any],
               *,
               user: Optional[User] = None,
               active_visit: Optional[Visit] = None):
        patient_id = (data.get("patient_id") or "").strip()
        name = (data.get(self.name_field) or "").strip()
        if not patient_id or not name:
            raise ValidationError(
                f"patient_id and {self.name_field} are required")
        self._require_patient(patient_id)

        row = self._build(data)
        row.patient_id = patient_id
        setattr(row, self.name_field, name)
        row.visit_id = self._resolve_visit(patient_id, data.get("visit_id"),
                                           active_visit)
        row.diagnosed_by = self._resolve_clinician(data.get("diagnosed_by"),
                                                   user)
        row.diagnosed_date = data.get("diagnosed_date") or self.now().date()
        row.created_at = row.updated_at = self.now()

        self.db.add(row)
        self.db.flush()
        log_audit_event(
            self.db,
            user=user,
            action="CREATE",
            table_name=self.table_name,
            record_id=row.id,
            patient_id=patient_id,
            new_values=_snapshot(row),
        )
        self.db.commit()
        self.db.refresh(row)
        logger.info("%s %s created for patient=%s", self.label, row.id,
                    patient_id)
        return row

    def update(self,
               record_id: str,
               data: Dict[str, Any],
               *,
               user: Optional[User] = None):
        row = self.get_live(record_id)
        before = _snapshot(row)
        changed = False
        for field in self.updatable:
            if field in data and data[field] is not None:
                setattr(row, field, data[field])
                changed = True
        if not changed:
            raise ValidationError("No updatable fields supplied")
        row.updated_at = self.now()
        self.db.flush()
        log_audit_event(
            self.db,
            user=user,
            action="UPDATE",
            table_name=self.table_name,
            record_id=row.id,
            patient_id=row.patient_id,
            old_values=before,
            new_values=_snapshot(row),
        )
        self.db.commit()
        self.db.refresh(row)
        return row

    def delete(self, record_id: str, *, user: Optional[User] = None):
        row = self.get_live(record_id)
        row.deleted_at = self.now()
        self.db.flush()
        log_audit_event(
            self.db,
            user=user,
            action="DELETE",
            table_name=self.table_name,
            record_id=row.id,
            patient_id=row.patient_id,
            note="soft delete",
        )
        self.db.commit()
        self.db.refresh(row)
        return row


class DiagnosisService(_ClinicalRecordService):
    model = PatientDiagnosis
    table_name = "patient_diagnoses"
    label = "Diagnosis"
    name_field = "diagnosis_name"
    updatable = ("diagnosis_name", "diagnosis_code", "notes",
                 "diagnosed_date")
    clinician_roles = ("doctor", )

    def _build(self, data):
        status = data.get("status") or "active"
        if status not in ("active", "resolved"):
            raise ValidationError("status must be 'active' or 'resolved'")
        return PatientDiagnosis(
            diagnosis_code=data.get("diagnosis_code"),
            notes=data.get("notes"),
            status=status,
            resolved_date=(self.now().date()
                           if status == "resolved" else None),
        )

    def list_for_patient(self, patient_id: str,
                         include_resolved: bool = False) -> List:
        q = self._live().filter(PatientDiagnosis.patient_id == patient_id)
        if not include_resolved:
            q = q.filter(PatientDiagnosis.status == "active")
        return q.order_by(PatientDiagnosis.diagnosed_date.desc(),
                          PatientDiagnosis.created_at.desc()).all()

    def list_active(self) -> List:
        return (self._live().options(joinedload(
            PatientDiagnosis.patient)).filter(
                PatientDiagnosis.status == "active").order_by(
                    PatientDiagnosis.diagnosed_date.desc()).all())

    def update_status(self,
                      record_id: str,
                      status: str,
                      resolved_date: Optional[date] = None,
                      *,
                      user: Optional[User] = None):
        if status not in ("active", "resolved"):
            raise ValidationError("status must be 'active' or 'resolved'")
        row = self.get_live(record_id)
        if row.status == status:
            raise ConflictError(f"Diagnosis is already {status}",
                                code="STATUS_UNCHANGED")
        old = {"status": row.status, "resolved_date": row.resolved_date}
        row.status = status
        row.resolved_date = ((resolved_date or self.now().date())
                             if status == "resolved" else None)
        row.status_changed_at = self.now()
        row.updated_at = self.now()
        self.db.flush()
        log_audit_event(
            self.db,
            user=user,
            action="UPDATE",
            table_name=self.table_name,
            record_id=row.id,
            patient_id=row.patient_id,
            old_values=jsonable_encoder(old),
            new_values=jsonable_encoder({
                "status": row.status,
                "resolved_date": row.resolved_date
            }),
            note="status change",
        )
        self.db.commit()
        self.db.refresh(row)
        return row


class AllergyService(_ClinicalRecordService):
    model = PatientAllergy
    table_name = "patient_allergies"
    label = "Allergy"
    name_field = "allergy_name"
    updatable = ("allergy_name", "allergy_type", "severity", "reaction",
                 "notes", "is_active", "diagnosed_date")
    clinician_roles = ("doctor", "nurse")

    def _build(self, data):
        return PatientAllergy(
            allergy_type=data.get("allergy_type"),
            severity=data.get("severity"),
            reaction=data.get("reaction"),
            notes=data.get("notes"),
            is_active=True,
        )

    def list_for_patient(self, patient_id: str,
                         include_inactive: bool = False) -> List:
        q = self._live().filter(PatientAllergy.patient_id == patient_id)
        if not include_inactive:
            q = q.filter(PatientAllergy.is_active.is_(True))
        return q.order_by(PatientAllergy.created_at.desc()).all()

    def list_active(self) -> List:
        return (self._live().options(joinedload(
            PatientAllergy.patient)).filter(
                PatientAllergy.is_active.is_(True)).order_by(
                    PatientAllergy.created_at.desc()).all())
