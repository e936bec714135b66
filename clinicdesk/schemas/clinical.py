# clinicdesk/schemas/clinical.py
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinicdesk.schemas.common import PatientBrief

Severity = Literal["mild", "moderate", "severe"]
AllergyType = Literal["drug", "food", "environmental", "other"]


def _required_text(v: Optional[str]) -> str:
    v = (v or "").strip()
    if not v:
        raise ValueError("must not be blank")
    return v


# ---------- Diagnoses ----------
class DiagnosisCreate(BaseModel):
    patient_id: str
    diagnosis_name: str = Field(..., max_length=255)
    diagnosis_code: Optional[str] = Field(None, max_length=32)
    notes: Optional[str] = None
    status: Literal["active", "resolved"] = "active"
    visit_id: Optional[str] = None
    diagnosed_by: Optional[str] = None
    diagnosed_date: Optional[date] = None

    @field_validator("patient_id", "diagnosis_name")
    @classmethod
    def _req(cls, v):
        return _required_text(v)


class DiagnosisUpdate(BaseModel):
    diagnosis_name: Optional[str] = Field(None, max_length=255)
    diagnosis_code: Optional[str] = Field(None, max_length=32)
    notes: Optional[str] = None
    diagnosed_date: Optional[date] = None

    @field_validator("diagnosis_name")
    @classmethod
    def _name(cls, v):
        return None if v is None else _required_text(v)


class DiagnosisStatusIn(BaseModel):
    status: Literal["active", "resolved"]
    resolved_date: Optional[date] = None


class DiagnosisOut(BaseModel):
    id: str
    patient_id: str
    visit_id: Optional[str] = None
    diagnosis_name: str
    diagnosis_code: Optional[str] = None
    notes: Optional[str] = None
    status: str
    diagnosed_by: str
    diagnosed_date: date
    resolved_date: Optional[date] = None
    status_changed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ActiveDiagnosisOut(DiagnosisOut):
    patient: Optional[PatientBrief] = None


# ---------- Allergies ----------
class AllergyCreate(BaseModel):
    patient_id: str
    allergy_name: str = Field(..., max_length=255)
    allergy_type: Optional[AllergyType] = None
    severity: Optional[Severity] = None
    reaction: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    visit_id: Optional[str] = None
    diagnosed_by: Optional[str] = None
    diagnosed_date: Optional[date] = None

    @field_validator("patient_id", "allergy_name")
    @classmethod
    def _req(cls, v):
        return _required_text(v)


class AllergyUpdate(BaseModel):
    allergy_name: Optional[str] = Field(None, max_length=255)
    allergy_type: Optional[AllergyType] = None
    severity: Optional[Severity] = None
    reaction: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None
    is_active: Optional[bool] = None
    diagnosed_date: Optional[date] = None

    @field_validator("allergy_name")
    @classmethod
    def _name(cls, v):
        return None if v is None else _required_text(v)


class AllergyOut(BaseModel):
    id: str
    patient_id: str
    visit_id: Optional[str] = None
    allergy_name: str
    allergy_type: Optional[str] = None
    severity: Optional[str] = None
    reaction: Optional[str] = None
    notes: Optional[str] = None
    is_active: bool
    diagnosed_by: Optional[str] = None
    diagnosed_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ActiveAllergyOut(AllergyOut):
    patient: Optional[PatientBrief] = None
