# FILE: clinicdesk/api/routes_patient_diagnoses.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from clinicdesk.api.deps import current_user, get_db, require_roles
from clinicdesk.api.response import ok
from clinicdesk.models.user import User
from clinicdesk.schemas.clinical import (
    ActiveDiagnosisOut,
    DiagnosisCreate,
    DiagnosisOut,
    DiagnosisStatusIn,
    DiagnosisUpdate,
)
from clinicdesk.services.clinical_records import DiagnosisService
from clinicdesk.services.visit_gate import (
    check_active_visit,
    require_active_visit,
)

router = APIRouter()

READERS = ("doctor", "nurse")


def _out(row) -> dict:
    return DiagnosisOut.model_validate(row).model_dump()


@router.get("/patient/{patient_id}")
def patient_diagnoses(
        patient_id: str,
        include_resolved: bool = Query(False),
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *READERS)
    rows = DiagnosisService(db).list_for_patient(patient_id, include_resolved)
    visit = check_active_visit(db, patient_id)
    return ok({
        "records": [_out(r) for r in rows],
        "has_active_visit": visit is not None,
        "active_visit_id": visit.id if visit else None,
    })


@router.get("/visit/{visit_id}")
def visit_diagnoses(
        visit_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *READERS)
    return ok([_out(r) for r in DiagnosisService(db).list_for_visit(visit_id)])


@router.get("/active/all")
def all_active_diagnoses(
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *READERS)
    rows = DiagnosisService(db).list_active()
    return ok([ActiveDiagnosisOut.model_validate(r).model_dump() for r in rows])


@router.get("/{diagnosis_id}")
def get_diagnosis(
        diagnosis_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *READERS)
    return ok(_out(DiagnosisService(db).get(diagnosis_id)))


@router.post("/")
def create_diagnosis(
        payload: DiagnosisCreate,
        request: Request,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    visit = require_active_visit(db, payload.patient_id)
    request.state.active_visit = visit
    row = DiagnosisService(db).create(payload.model_dump(),
                                      user=user,
                                      active_visit=visit)
    return ok(_out(row), message="Diagnosis recorded", status_code=201)


@router.put("/{diagnosis_id}")
def update_diagnosis(
        diagnosis_id: str,
        payload: DiagnosisUpdate,
        request: Request,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    svc = DiagnosisService(db)
    record = svc.get_live(diagnosis_id)
    request.state.active_visit = require_active_visit(db, record.patient_id)
    row = svc.update(diagnosis_id,
                     payload.model_dump(exclude_unset=True),
                     user=user)
    return ok(_out(row), message="Diagnosis updated")


@router.patch("/{diagnosis_id}/status")
def change_diagnosis_status(
        diagnosis_id: str,
        payload: DiagnosisStatusIn,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    row = DiagnosisService(db).update_status(diagnosis_id,
                                             payload.status,
                                             payload.resolved_date,
                                             user=user)
    return ok(_out(row), message=f"Diagnosis marked {row.status}")


@router.delete("/{diagnosis_id}")
def delete_diagnosis(
        diagnosis_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    DiagnosisService(db).delete(diagnosis_id, user=user)
    return ok({"id": diagnosis_id}, message="Diagnosis deleted")
