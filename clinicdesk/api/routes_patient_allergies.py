# FILE: clinicdesk/api/routes_patient_allergies.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from clinicdesk.api.deps import current_user, get_db, require_roles
from clinicdesk.api.response import ok
from clinicdesk.models.user import User
from clinicdesk.schemas.clinical import (
    ActiveAllergyOut,
    AllergyCreate,
    AllergyOut,
    AllergyUpdate,
)
from clinicdesk.services.clinical_records import AllergyService
from clinicdesk.services.visit_gate import (
    check_active_visit,
    require_active_visit,
)

router = APIRouter()

READERS = ("doctor", "nurse", "pharmacist")
WRITERS = ("doctor", "nurse")


def _out(row) -> dict:
    return AllergyOut.model_validate(row).model_dump()


@router.get("/patient/{patient_id}")
def patient_allergies(
        patient_id: str,
        include_inactive: bool = Query(False),
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *READERS)
    rows = AllergyService(db).list_for_patient(patient_id, include_inactive)
    visit = check_active_visit(db, patient_id)
    return ok({
        "records": [_out(r) for r in rows],
        "has_active_visit": visit is not None,
        "active_visit_id": visit.id if visit else None,
    })


@router.get("/active/all")
def all_active_allergies(
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *READERS)
    rows = AllergyService(db).list_active()
    return ok([ActiveAllergyOut.model_validate(r).model_dump() for r in rows])


@router.get("/{allergy_id}")
def get_allergy(
        allergy_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *READERS)
    return ok(_out(AllergyService(db).get(allergy_id)))


@router.post("/")
def create_allergy(
        payload: AllergyCreate,
        request: Request,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *WRITERS)
    visit = require_active_visit(db, payload.patient_id)
    request.state.active_visit = visit
    row = AllergyService(db).create(payload.model_dump(),
                                    user=user,
                                    active_visit=visit)
    return ok(_out(row), message="Allergy recorded", status_code=201)


@router.put("/{allergy_id}")
def update_allergy(
        allergy_id: str,
        payload: AllergyUpdate,
        request: Request,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *WRITERS)
    svc = AllergyService(db)
    record = svc.get_live(allergy_id)
    request.state.active_visit = require_active_visit(db, record.patient_id)
    row = svc.update(allergy_id,
                     payload.model_dump(exclude_unset=True),
                     user=user)
    return ok(_out(row), message="Allergy updated")


@router.delete("/{allergy_id}")
def delete_allergy(
        allergy_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *WRITERS)
    AllergyService(db).delete(allergy_id, user=user)
    return ok({"id": allergy_id}, message="Allergy deleted")
