# FILE: clinicdesk/schemas/common.py
from __future__ import annotations

from typing import Any, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class ApiSuccess(BaseModel):
    success: Literal[True] = True
    data: Optional[Any] = None
    message: Optional[str] = None


class ApiFailure(BaseModel):
    success: Literal[False] = False
    message: str
    code: Optional[str] = None
    details: Optional[Any] = None


class PersonBrief(BaseModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PatientBrief(PersonBrief):
    patient_number: Optional[str] = None
    gender: Optional[str] = None
    phone: Optional[str] = None


class DoctorBrief(PersonBrief):
    specialty: Optional[str] = None
    full_name: str = Field(default="")
