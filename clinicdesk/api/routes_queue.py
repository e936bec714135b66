# FILE: clinicdesk/api/routes_queue.py
from __future__ import annotations

from datetime import date as dt_date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from clinicdesk.api.deps import current_user, get_db, require_roles
from clinicdesk.api.response import ok
from clinicdesk.models.user import User
from clinicdesk.schemas.common import DoctorBrief
from clinicdesk.schemas.queue import (
    BulkIssueIn,
    BulkResultOut,
    BulkStatusIn,
    CapacityOut,
    CompleteConsultationIn,
    DelayIn,
    DisplayBoardOut,
    DoctorQueueOut,
    DoctorStatusOut,
    MarkReadyIn,
    PatientQueueInfoOut,
    PriorityIn,
    QueueAnalyticsOut,
    QueueStatsOut,
    QueueTokenOut,
    TokenIssueIn,
)
from clinicdesk.services.queue_service import QueueService

router = APIRouter()

STAFF = ("doctor", "nurse", "receptionist", "pharmacist")


def _token(t) -> Optional[Dict[str, Any]]:
    if t is None:
        return None
    return QueueTokenOut.from_token(t).model_dump()


def _bulk(res: Dict[str, Any]) -> Dict[str, Any]:
    return BulkResultOut(
        successful=[QueueTokenOut.from_token(t) for t in res["successful"]],
        failed=res["failed"],
        summary=res["summary"],
    ).model_dump()


def _view(v: Dict[str, Any]) -> Dict[str, Any]:
    return DoctorQueueOut(
        doctor=DoctorBrief.model_validate(v["doctor"]),
        date=v["date"],
        tokens=[QueueTokenOut.from_token(t) for t in v["tokens"]],
        status=DoctorStatusOut(**v["status"].to_dict()),
        statistics=QueueStatsOut(**v["statistics"]),
    ).model_dump()


# ------------------------------------------------------------------
# Issue
# ------------------------------------------------------------------
@router.post("/token")
def issue_token(
        payload: TokenIssueIn,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "receptionist", "nurse")
    tok = QueueService(db).issue_token(
        payload.doctor_id,
        payload.patient_id,
        payload.priority,
        appointment_id=payload.appointment_id,
        user=user,
    )
    return ok(_token(tok),
              message=f"Token #{tok.token_number} issued",
              status_code=201)


# ------------------------------------------------------------------
# Views
# ------------------------------------------------------------------
@router.get("/doctors")
def all_doctors_queue(
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *STAFF)
    views = QueueService(db).get_all_doctors_queue_status()
    return ok([_view(v) for v in views])


@router.get("/doctor/{doctor_id}")
def doctor_queue(
        doctor_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *STAFF)
    return ok(_view(QueueService(db).get_doctor_queue_status(doctor_id)))


@router.get("/doctor/{doctor_id}/capacity")
def doctor_capacity(
        doctor_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *STAFF)
    return ok(CapacityOut(**QueueService(db).capacity(doctor_id)).model_dump())


@router.get("/doctor/{doctor_id}/display-board")
def display_board(doctor_id: str, db: Session = Depends(get_db)):
    # waiting-room screen, no login
    board = QueueService(db).get_display_board(doctor_id)
    board["doctor"] = DoctorBrief.model_validate(board["doctor"])
    return ok(DisplayBoardOut(**board).model_dump())


@router.get("/doctor/{doctor_id}/analytics")
def doctor_analytics(
        doctor_id: str,
        start_date: Optional[dt_date] = Query(None),
        end_date: Optional[dt_date] = Query(None),
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    svc = QueueService(db)
    default_start, default_end = svc.default_analytics_range()
    data = svc.analytics(doctor_id, start_date or default_start, end_date
                         or default_end)
    return ok(QueueAnalyticsOut(**data).model_dump())


@router.get("/doctor/{doctor_id}/active-consultation")
def active_consultation(
        doctor_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, *STAFF)
    return ok(_token(QueueService(db).get_active_consultation(doctor_id)))


@router.get("/patient/{patient_id}/info")
def patient_queue_info(
        patient_id: str,
        doctor_id: Optional[str] = Query(None),
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    info = QueueService(db).get_patient_queue_info(patient_id, doctor_id)
    tok = info.pop("token", None)
    out = PatientQueueInfoOut(
        token=QueueTokenOut.from_token(tok) if tok is not None else None,
        **info)
    return ok(out.model_dump())


# ------------------------------------------------------------------
# Doctor flow
# ------------------------------------------------------------------
@router.post("/call-next/{doctor_id}")
def call_next(
        doctor_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor", "nurse")
    tok = QueueService(db).call_next(doctor_id)
    if tok is None:
        return ok(None, message="No patients waiting")
    return ok(_token(tok), message=f"Token #{tok.token_number} called")


@router.post("/call-next-and-start/{doctor_id}")
def call_next_and_start(
        doctor_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    tok = QueueService(db).call_next_and_start(doctor_id)
    if tok is None:
        return ok(None, message="No patients waiting")
    name = tok.patient.full_name if tok.patient else "patient"
    return ok(_token(tok),
              message=f"Consultation started with {name} "
              f"(Token #{tok.token_number})")


@router.put("/token/{token_id}/start-consultation")
def start_consultation(
        token_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    return ok(_token(QueueService(db).start_consultation(token_id)),
              message="Consultation started")


@router.put("/token/{token_id}/complete-consultation")
def complete_consultation(
        token_id: str,
        payload: Optional[CompleteConsultationIn] = None,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    outcome = payload.outcome if payload else "completed"
    tok = QueueService(db).complete_consultation(token_id, outcome)
    return ok(_token(tok), message=f"Token {tok.status}")


@router.put("/token/{token_id}/mark-missed")
def mark_missed(
        token_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor", "nurse", "receptionist")
    return ok(_token(QueueService(db).mark_missed(token_id)),
              message="Token marked missed")


@router.put("/token/{token_id}/cancel")
def cancel_token(
        token_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor", "nurse", "receptionist")
    return ok(_token(QueueService(db).cancel(token_id)),
              message="Token cancelled")


@router.put("/doctor/{doctor_id}/force-complete")
def force_complete(
        doctor_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    return ok(_token(QueueService(db).force_complete(doctor_id)),
              message="Consultation force-completed")


# ------------------------------------------------------------------
# Nurse flow
# ------------------------------------------------------------------
@router.put("/token/{token_id}/delay")
def delay_token(
        token_id: str,
        payload: Optional[DelayIn] = None,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "nurse", "doctor")
    reason = payload.reason if payload else None
    return ok(_token(QueueService(db).delay(token_id, reason)),
              message="Token delayed")


@router.put("/token/{token_id}/undelay")
def undelay_token(
        token_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "nurse", "doctor")
    tok = QueueService(db).undelay(token_id)
    return ok(_token(tok),
              message=f"Token back in queue as #{tok.token_number}")


@router.put("/token/{token_id}/mark-ready")
def mark_ready(
        token_id: str,
        payload: Optional[MarkReadyIn] = None,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "nurse", "doctor")
    payload = payload or MarkReadyIn()
    tok = QueueService(db).mark_ready(token_id, payload.vitals, payload.notes)
    return ok(_token(tok), message="Patient ready for consultation")


@router.put("/token/{token_id}/mark-waiting")
def mark_waiting(
        token_id: str,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "nurse", "doctor")
    return ok(_token(QueueService(db).mark_waiting(token_id)))


@router.put("/token/{token_id}/priority")
def set_priority(
        token_id: str,
        payload: PriorityIn,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "nurse", "receptionist", "doctor")
    return ok(_token(QueueService(db).set_priority(token_id,
                                                   payload.priority)))


# ------------------------------------------------------------------
# Bulk
# ------------------------------------------------------------------
@router.post("/bulk/issue-tokens")
def bulk_issue_tokens(
        payload: BulkIssueIn,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "receptionist", "nurse")
    res = QueueService(db).issue_tokens(
        [t.model_dump() for t in payload.tokens], user=user)
    return ok(_bulk(res))


@router.put("/bulk/update-status")
def bulk_update_status(
        payload: BulkStatusIn,
        db: Session = Depends(get_db),
        user: User = Depends(current_user),
):
    require_roles(user, "doctor")
    res = QueueService(db).update_statuses(
        [u.model_dump() for u in payload.updates])
    return ok(_bulk(res))
