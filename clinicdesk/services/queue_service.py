# FILE: clinicdesk/services/queue_service.py
from __future__ import annotations

import logging
from collections import Counter
from datetime import date as dt_date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from clinicdesk.core.config import settings
from clinicdesk.core.errors import (
    AppError,
    ConflictError,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from clinicdesk.models.opd import (
    DoctorAvailability,
    QueueCounter,
    QueueToken,
    Visit,
)
from clinicdesk.models.patient import Patient
from clinicdesk.models.user import User
from clinicdesk.services.audit_logger import log_audit_event
from clinicdesk.services.doctor_status import (
    DoctorStatus,
    compute_doctor_status,
    current_slot,
    working_hours_label,
)
from clinicdesk.utils.timezone import now_local

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("waiting", "called", "serving")
TERMINAL_STATUSES = ("completed", "missed", "cancelled")
URGENT_PRIORITY = 4

# display order of status buckets on the doctor's queue
_BUCKET_ORDER = {
    "serving": 0,
    "called": 1,
    "waiting": 2,
    "completed": 3,
    "missed": 4,
    "cancelled": 5,
}

# allowed source statuses per target
TRANSITIONS = {
    "called": {"waiting"},
    "serving": {"called"},
    "completed": {"serving"},
    "missed": {"waiting", "called", "serving"},
    "cancelled": {"waiting", "called", "serving"},
}


def queue_sort_key(t: QueueToken):
    """Urgent (priority >= 4) first, then issued_time, then token number."""
    urgent = 0 if (t.priority or 0) >= URGENT_PRIORITY else 1
    return (urgent, t.issued_time or datetime.min, t.token_number or 0)


def _bucket_sort_key(t: QueueToken):
    return (_BUCKET_ORDER.get(t.status, 9), ) + queue_sort_key(t)


def _short_name(p: Optional[Patient]) -> str:
    """'Anita R.' style name for public screens."""
    if p is None:
        return "Patient"
    first = (p.first_name or "").strip()
    last = (p.last_name or "").strip()
    if last:
        return f"{first} {last[0]}."
    return first or "Patient"


class QueueService:
    """
    Token lifecycle per doctor per day.

    Every mutating call commits its own unit of work. Transitions that can
    race (call-next, start-consultation, completion) are conditional updates
    guarded on the expected current status; a zero row count means another
    request got there first.
    """

    def __init__(
        self,
        db: Session,
        *,
        now: Optional[Callable[[], datetime]] = None,
        max_waiting: Optional[int] = None,
        consultation_minutes: Optional[int] = None,
    ):
        self.db = db
        self.now = now or now_local
        self.max_waiting = max_waiting or settings.QUEUE_MAX_WAITING
        self.consultation_minutes = (consultation_minutes
                                     or settings.CONSULTATION_MINUTES)

    # ------------------------------------------------------------------
    # lookups
    # ------------------------------------------------------------------
    def _today(self) -> dt_date:
        return self.now().date()

    def _get_doctor(self, doctor_id: str) -> User:
        if not doctor_id:
            raise ValidationError("doctor_id is required")
        doc = self.db.get(User, doctor_id)
        if not doc or doc.role != "doctor":
            raise NotFoundError("Doctor not found", code="DOCTOR_NOT_FOUND")
        return doc

    def _get_token(self, token_id: str) -> QueueToken:
        if not token_id:
            raise ValidationError("token_id is required")
        tok = self.db.get(QueueToken, token_id)
        if not tok:
            raise NotFoundError("Queue token not found",
                                code="TOKEN_NOT_FOUND")
        return tok

    def _slots(self, doctor_id: str) -> List[DoctorAvailability]:
        return (self.db.query(DoctorAvailability).filter(
            DoctorAvailability.doctor_id == doctor_id,
            DoctorAvailability.is_active.is_(True),
        ).all())

    def _tokens_for_day(self, doctor_id: str,
                        d: dt_date) -> List[QueueToken]:
        return (self.db.query(QueueToken).options(
            joinedload(QueueToken.patient)).filter(
                QueueToken.doctor_id == doctor_id,
                QueueToken.issued_date == d,
            ).all())

    def _waiting(self, doctor_id: str, d: dt_date) -> List[QueueToken]:
        rows = (self.db.query(QueueToken).filter(
            QueueToken.doctor_id == doctor_id,
            QueueToken.issued_date == d,
            QueueToken.status == "waiting",
        ).all())
        rows.sort(key=queue_sort_key)
        return rows

    def _serving(self, doctor_id: str) -> Optional[QueueToken]:
        return (self.db.query(QueueToken).filter(
            QueueToken.doctor_id == doctor_id,
            QueueToken.status == "serving",
        ).order_by(QueueToken.served_at.desc()).first())

    # ------------------------------------------------------------------
    # token numbers
    # ------------------------------------------------------------------
    def _next_token_number(self, doctor_id: str, d: dt_date) -> int:
        """
        Atomic token generator per doctor+date using a locked counter row.
        A missing counter is seeded from the highest number already issued.
        """
        for _ in range(3):
            row = (self.db.query(QueueCounter).filter(
                QueueCounter.doctor_id == doctor_id,
                QueueCounter.date == d,
            ).with_for_update().first())
            if row is None:
                highest = (self.db.query(QueueToken.token_number).filter(
                    QueueToken.doctor_id == doctor_id,
                    QueueToken.issued_date == d,
                ).order_by(QueueToken.token_number.desc()).limit(1).scalar())
                try:
                    with self.db.begin_nested():
                        row = QueueCounter(
                            doctor_id=doctor_id,
                            date=d,
                            last_token_number=int(highest or 0),
                        )
                        self.db.add(row)
                except IntegrityError:
                    # another request created the counter; lock theirs
                    logger.info("Queue counter race for doctor=%s date=%s",
                                doctor_id, d)
                    continue

            row.last_token_number = int(row.last_token_number or 0) + 1
            self.db.flush()
            return row.last_token_number

        raise UpstreamError("Could not allocate token number")

    # ------------------------------------------------------------------
    # doctor status / capacity
    # ------------------------------------------------------------------
    def doctor_status(self, doctor_id: str) -> DoctorStatus:
        self._get_doctor(doctor_id)
        return self._status_for(doctor_id)

    def _status_for(self, doctor_id: str) -> DoctorStatus:
        now = self.now()
        waiting_count = (self.db.query(QueueToken).filter(
            QueueToken.doctor_id == doctor_id,
            QueueToken.issued_date == now.date(),
            QueueToken.status == "waiting",
        ).count())
        return compute_doctor_status(
            self._slots(doctor_id),
            now,
            is_consulting=self._serving(doctor_id) is not None,
            waiting_count=waiting_count,
            max_waiting=self.max_waiting,
        )

    def capacity(self, doctor_id: str) -> Dict[str, Any]:
        """Can one more walk-in be seen before the current slot ends?"""
        self._get_doctor(doctor_id)
        now = self.now()
        slots = self._slots(doctor_id)
        hours = working_hours_label(slots, now)
        slot = current_slot(slots, now)

        queued = (self.db.query(QueueToken).filter(
            QueueToken.doctor_id == doctor_id,
            QueueToken.issued_date == now.date(),
            QueueToken.status.in_(("waiting", "called")),
        ).count())

        if slot is None:
            return {
                "can_accept": False,
                "reason": ("Doctor is outside working hours"
                           if hours else "Doctor is not scheduled today"),
                "current_queue": queued,
                "available_slots": 0,
                "remaining_minutes": 0,
                "estimated_time_needed": None,
                "working_hours": hours,
            }

        slot_end = datetime.combine(now.date(), slot.end_time)
        remaining = max(0, int((slot_end - now).total_seconds() // 60))
        needed = (queued + 1) * self.consultation_minutes
        free = max(0, remaining // self.consultation_minutes - queued)
        can_accept = needed <= remaining

        return {
            "can_accept": can_accept,
            "reason": ("Capacity available" if can_accept else
                       f"Not enough time left today ({remaining} min "
                       f"remaining, {needed} min needed)"),
            "current_queue": queued,
            "available_slots": free,
            "remaining_minutes": remaining,
            "estimated_time_needed": needed,
            "working_hours": hours,
        }

    # ------------------------------------------------------------------
    # issue
    # ------------------------------------------------------------------
    def issue_token(
        self,
        doctor_id: str,
        patient_id: str,
        priority: int = 0,
        *,
        appointment_id: Optional[str] = None,
        user: Optional[User] = None,
    ) -> QueueToken:
        if not doctor_id or not patient_id:
            raise ValidationError("doctor_id and patient_id are required")
        priority = int(priority or 0)
        if priority < 0:
            raise ValidationError("priority must be >= 0")

        self._get_doctor(doctor_id)
        patient = self.db.get(Patient, patient_id)
        if not patient:
            raise NotFoundError("Patient not found", code="PATIENT_NOT_FOUND")

        today = self._today()

        # yesterday's leftovers must not block today's visit
        self.close_stale_tokens(patient_id, user=user)

        active_visit = (self.db.query(Visit.id).filter(
            Visit.patient_id == patient_id,
            Visit.status == "in_progress",
        ).first())
        if active_visit:
            details = {"visit_id": active_visit[0]}
            open_token = (self.db.query(QueueToken).filter(
                QueueToken.visit_id == active_visit[0],
                QueueToken.status.in_(ACTIVE_STATUSES),
            ).first())
            if open_token is not None:
                details.update(
                    token_id=open_token.id,
                    token_number=open_token.token_number,
                    issued_date=open_token.issued_date.isoformat(),
                )
            raise ConflictError(
                "Patient already has an active visit",
                code="ACTIVE_VISIT_EXISTS",
                details=details,
            )

        active_token = (self.db.query(QueueToken).filter(
            QueueToken.patient_id == patient_id,
            QueueToken.issued_date == today,
            QueueToken.status.in_(ACTIVE_STATUSES),
        ).first())
        if active_token:
            raise ConflictError(
                "Patient already has an active token today",
                code="ACTIVE_TOKEN_EXISTS",
                details={
                    "token_id": active_token.id,
                    "token_number": active_token.token_number,
                },
            )

        status = self._status_for(doctor_id)
        if status.status == "unavailable":
            raise ValidationError(f"Doctor is unavailable: {status.description}",
                                  code="DOCTOR_UNAVAILABLE")
        if not status.can_accept_patients:
            raise ValidationError(f"Doctor cannot accept patients: "
                                  f"{status.description}",
                                  code="QUEUE_FULL")
        if not appointment_id:
            cap = self.capacity(doctor_id)
            if not cap["can_accept"]:
                raise ValidationError(cap["reason"],
                                      code="CAPACITY_EXCEEDED",
                                      details=cap)

        now = self.now()
        visit = Visit(
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_id=appointment_id,
            visit_type="appointment" if appointment_id else "walk_in",
            status="in_progress",
            started_at=now,
        )
        self.db.add(visit)
        self.db.flush()

        token = QueueToken(
            doctor_id=doctor_id,
            patient_id=patient_id,
            visit_id=visit.id,
            appointment_id=appointment_id,
            token_number=self._next_token_number(doctor_id, today),
            issued_date=today,
            status="waiting",
            priority=priority,
            issued_time=now,
            nurse_status="waiting",
            vitals_taken=False,
        )
        self.db.add(token)
        self.db.flush()

        log_audit_event(
            self.db,
            user=user,
            action="CREATE",
            table_name="visits",
            record_id=visit.id,
            patient_id=patient_id,
            new_values={
                "doctor_id": doctor_id,
                "visit_type": visit.visit_type,
                "token_id": token.id,
                "token_number": token.token_number,
            },
        )
        self.db.commit()
        self.db.refresh(token)
        logger.info("Issued token #%s doctor=%s patient=%s",
                    token.token_number, doctor_id, patient_id)
        return token

    # ------------------------------------------------------------------
    # transitions
    # ------------------------------------------------------------------
    def _guarded_update(self, token_id: str, expected: str,
                        **values) -> bool:
        values.setdefault("updated_at", self.now())
        res = self.db.execute(
            update(QueueToken).where(
                QueueToken.id == token_id,
                QueueToken.status == expected,
            ).values(**values).execution_options(synchronize_session=False))
        return res.rowcount == 1

    def call_next(self, doctor_id: str) -> Optional[QueueToken]:
        """
        Earliest waiting token (urgent first) becomes `called`.
        Delayed tokens are skipped until undelayed. None when nobody waits.
        """
        self._get_doctor(doctor_id)
        candidates = [
            t for t in self._waiting(doctor_id, self._today())
            if t.nurse_status != "delayed"
        ]
        for cand in candidates:
            if self._guarded_update(cand.id, "waiting",
                                    status="called",
                                    called_at=self.now()):
                self.db.commit()
                self.db.refresh(cand)
                logger.info("Called token #%s doctor=%s", cand.token_number,
                            doctor_id)
                return cand
            # lost the race for this one; try the next candidate
            logger.info("Token %s no longer waiting, trying next", cand.id)
        return None

    @staticmethod
    def _busy(busy: Optional[QueueToken] = None) -> ConflictError:
        details = None
        if busy is not None:
            details = {"token_id": busy.id, "token_number": busy.token_number}
        return ConflictError("Doctor is already serving another patient",
                             code="DOCTOR_BUSY",
                             details=details)

    def _check_single_serving(self, doctor_id: str) -> None:
        self.db.flush()
        serving = (self.db.query(QueueToken.id).filter(
            QueueToken.doctor_id == doctor_id,
            QueueToken.status == "serving",
        ).count())
        if serving > 1:
            raise self._busy()

    def start_consultation(self, token_id: str) -> QueueToken:
        tok = self._get_token(token_id)
        if tok.status == "serving":
            raise ConflictError("Consultation already started",
                                code="ALREADY_SERVING")
        if tok.status not in TRANSITIONS["serving"]:
            raise ConflictError(
                f"Cannot start consultation from status '{tok.status}'",
                code="INVALID_TRANSITION")

        doctor_id = tok.doctor_id
        busy = self._serving(doctor_id)
        if busy is not None:
            raise self._busy(busy)

        try:
            moved = self._guarded_update(token_id,
                                         "called",
                                         status="serving",
                                         served_at=self.now())
            if not moved:
                raise ConflictError("Token status changed, refresh the queue",
                                    code="INVALID_TRANSITION")
            self._check_single_serving(doctor_id)
            self.db.commit()
        except IntegrityError:
            # one-serving-per-doctor index
            self.db.rollback()
            raise self._busy()
        except ConflictError:
            self.db.rollback()
            raise

        self.db.refresh(tok)
        return tok

    def call_next_and_start(self, doctor_id: str) -> Optional[QueueToken]:
        """
        Call the next patient straight into the consultation room.
        Refused while the doctor is still serving someone; None when nobody
        waits.
        """
        self._get_doctor(doctor_id)
        busy = self._serving(doctor_id)
        if busy is not None:
            raise self._busy(busy)

        candidates = [
            t for t in self._waiting(doctor_id, self._today())
            if t.nurse_status != "delayed"
        ]
        for cand in candidates:
            now = self.now()
            try:
                if not self._guarded_update(cand.id, "waiting",
                                            status="called",
                                            called_at=now):
                    logger.info("Token %s no longer waiting, trying next",
                                cand.id)
                    continue
                self._guarded_update(cand.id,
                                     "called",
                                     status="serving",
                                     served_at=now)
                self._check_single_serving(doctor_id)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                raise self._busy()
            except ConflictError:
                self.db.rollback()
                raise

            self.db.refresh(cand)
            logger.info("Called and started token #%s doctor=%s",
                        cand.token_number, doctor_id)
            return cand
        return None

    def _close_visit(self, tok: QueueToken, status: str,
                     reason: Optional[str] = None) -> None:
        if not tok.visit_id:
            return
        values = {"status": status, "ended_at": self.now()}
        if reason:
            values["cancel_reason"] = reason
        self.db.execute(
            update(Visit).where(
                Visit.id == tok.visit_id,
                Visit.status == "in_progress",
            ).values(**values).execution_options(synchronize_session=False))

    def _finish(self, tok: QueueToken, target: str) -> QueueToken:
        if tok.status in TERMINAL_STATUSES:
            raise ConflictError(f"Token is already {tok.status}",
                                code="ALREADY_TERMINAL")
        if tok.status not in TRANSITIONS[target]:
            raise ConflictError(
                f"Cannot move token from '{tok.status}' to '{target}'",
                code="INVALID_TRANSITION")

        stamp = {
            "completed": "completed_at",
            "missed": "missed_at",
            "cancelled": "cancelled_at",
        }[target]
        if not self._guarded_update(tok.id, tok.status, **{
                "status": target,
                stamp: self.now()
        }):
            self.db.rollback()
            raise ConflictError("Token status changed, refresh the queue",
                                code="INVALID_TRANSITION")

        if target == "completed":
            self._close_visit(tok, "completed")
        else:
            self._close_visit(tok, "cancelled",
                              "no_show" if target == "missed" else "cancelled")
        self.db.commit()
        self.db.refresh(tok)
        logger.info("Token #%s doctor=%s -> %s", tok.token_number,
                    tok.doctor_id, target)
        return tok

    def complete_consultation(self,
                              token_id: str,
                              outcome: str = "completed") -> QueueToken:
        if outcome not in ("completed", "missed"):
            raise ValidationError("outcome must be 'completed' or 'missed'")
        return self._finish(self._get_token(token_id), outcome)

    def mark_missed(self, token_id: str) -> QueueToken:
        return self._finish(self._get_token(token_id), "missed")

    def cancel(self, token_id: str) -> QueueToken:
        return self._finish(self._get_token(token_id), "cancelled")

    def force_complete(self, doctor_id: str) -> QueueToken:
        """Complete whatever the doctor is stuck serving (any date)."""
        self._get_doctor(doctor_id)
        tok = self._serving(doctor_id)
        if tok is None:
            raise NotFoundError("No active consultation for this doctor",
                                code="NO_ACTIVE_CONSULTATION")
        logger.warning("Force-completing token %s for doctor=%s", tok.id,
                       doctor_id)
        return self._finish(tok, "completed")

    def get_active_consultation(self,
                                doctor_id: str) -> Optional[QueueToken]:
        self._get_doctor(doctor_id)
        return self._serving(doctor_id)

    # ------------------------------------------------------------------
    # stale tokens
    # ------------------------------------------------------------------
    def close_stale_tokens(self,
                           patient_id: Optional[str] = None,
                           *,
                           user: Optional[User] = None
                           ) -> List[Dict[str, Any]]:
        """
        Close tokens still open from an earlier day, so their visits stop
        blocking new tokens.

        A consultation left `serving` is completed. A patient who never
        reached the doctor (`waiting` / `called`) is marked missed and the
        visit is cancelled as a no-show. Returns one entry per closed token.
        """
        q = (self.db.query(QueueToken).options(
            joinedload(QueueToken.patient)).filter(
                QueueToken.issued_date < self._today(),
                QueueToken.status.in_(ACTIVE_STATUSES),
            ))
        if patient_id:
            q = q.filter(QueueToken.patient_id == patient_id)
        stale = q.order_by(QueueToken.issued_date,
                           QueueToken.token_number).all()

        closed: List[Dict[str, Any]] = []
        for tok in stale:
            before = tok.status
            target = "completed" if before == "serving" else "missed"
            stamp = "completed_at" if target == "completed" else "missed_at"
            if not self._guarded_update(tok.id, before, **{
                    "status": target,
                    stamp: self.now()
            }):
                continue
            if target == "completed":
                self._close_visit(tok, "completed")
            else:
                self._close_visit(tok, "cancelled", "no_show")
            log_audit_event(
                self.db,
                user=user,
                action="UPDATE",
                table_name="queue_tokens",
                record_id=tok.id,
                patient_id=tok.patient_id,
                old_values={"status": before},
                new_values={"status": target},
                note=f"Stale token from {tok.issued_date.isoformat()}",
            )
            logger.warning("Closed stale token #%s doctor=%s from %s: %s -> %s",
                           tok.token_number, tok.doctor_id, tok.issued_date,
                           before, target)
            closed.append({
                "token_id": tok.id,
                "token_number": tok.token_number,
                "doctor_id": tok.doctor_id,
                "patient_id": tok.patient_id,
                "patient_name": tok.patient.full_name if tok.patient else None,
                "issued_date": tok.issued_date,
                "previous_status": before,
                "status": target,
            })

        if closed:
            self.db.commit()
        return closed

    # ------------------------------------------------------------------
    # bulk
    # ------------------------------------------------------------------
    @staticmethod
    def _bulk_result(successful: List[QueueToken],
                     failed: List[Dict[str, Any]],
                     total: int) -> Dict[str, Any]:
        return {
            "successful": successful,
            "failed": failed,
            "summary": {
                "total": total,
                "successful": len(successful),
                "failed": len(failed),
            },
        }

    def issue_tokens(self,
                     entries: List[Dict[str, Any]],
                     *,
                     user: Optional[User] = None) -> Dict[str, Any]:
        """Issue several tokens; each one succeeds or fails on its own."""
        if not entries:
            raise ValidationError("At least one token is required")
        successful: List[QueueToken] = []
        failed: List[Dict[str, Any]] = []
        for i, entry in enumerate(entries):
            try:
                successful.append(
                    self.issue_token(
                        entry.get("doctor_id"),
                        entry.get("patient_id"),
                        entry.get("priority") or 0,
                        appointment_id=entry.get("appointment_id"),
                        user=user,
                    ))
            except AppError as e:
                self.db.rollback()
                failed.append({
                    "index": i,
                    "doctor_id": entry.get("doctor_id"),
                    "patient_id": entry.get("patient_id"),
                    "code": e.code,
                    "error": e.message,
                })
        return self._bulk_result(successful, failed, len(entries))

    def update_statuses(self, updates: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Apply {token_id, status} pairs one by one through the regular
        transitions. `called` needs the doctor's queue, so it goes through
        call-next instead and is rejected here.
        """
        if not updates:
            raise ValidationError("At least one update is required")
        actions = {
            "serving": self.start_consultation,
            "completed": self.complete_consultation,
            "missed": self.mark_missed,
            "cancelled": self.cancel,
        }
        successful: List[QueueToken] = []
        failed: List[Dict[str, Any]] = []
        for i, upd in enumerate(updates):
            token_id = upd.get("token_id")
            status = upd.get("status")
            try:
                action = actions.get(status)
                if action is None:
                    raise ValidationError(
                        f"Status '{status}' cannot be set in bulk",
                        code="INVALID_STATUS")
                successful.append(action(token_id))
            except AppError as e:
                self.db.rollback()
                failed.append({
                    "index": i,
                    "token_id": token_id,
                    "status": status,
                    "code": e.code,
                    "error": e.message,
                })
        return self._bulk_result(successful, failed, len(updates))

    # ------------------------------------------------------------------
    # nurse annotations (status is left alone)
    # ------------------------------------------------------------------
    def _require_open(self, tok: QueueToken) -> None:
        if tok.status not in ("waiting", "called"):
            raise ConflictError(
                f"Token is {tok.status}; only waiting/called tokens can be "
                f"updated by the nurse",
                code="INVALID_TRANSITION")

    def delay(self, token_id: str,
              reason: Optional[str] = None) -> QueueToken:
        tok = self._get_token(token_id)
        self._require_open(tok)
        if tok.nurse_status == "delayed":
            raise ConflictError("Token is already delayed",
                                code="ALREADY_DELAYED")
        tok.nurse_status = "delayed"
        tok.delay_reason = (reason or "").strip() or "Patient not ready"
        tok.delayed_at = self.now()
        self.db.commit()
        self.db.refresh(tok)
        return tok

    def undelay(self, token_id: str) -> QueueToken:
        """Back into the queue at the end: new token number, re-issued now."""
        tok = self._get_token(token_id)
        self._require_open(tok)
        if tok.nurse_status != "delayed":
            raise ConflictError("Token is not delayed", code="NOT_DELAYED")

        tok.token_number = self._next_token_number(tok.doctor_id,
                                                   tok.issued_date)
        tok.issued_time = self.now()
        tok.nurse_status = "waiting"
        tok.delay_reason = None
        tok.delayed_at = None
        self.db.commit()
        self.db.refresh(tok)
        return tok

    def mark_ready(self,
                   token_id: str,
                   vitals: Optional[Dict[str, Any]] = None,
                   notes: Optional[str] = None) -> QueueToken:
        tok = self._get_token(token_id)
        self._require_open(tok)
        tok.nurse_status = "ready"
        tok.ready_at = self.now()
        if vitals:
            tok.vitals = dict(vitals)
            tok.vitals_taken = True
        if notes is not None:
            tok.nurse_notes = notes
        tok.delay_reason = None
        tok.delayed_at = None
        self.db.commit()
        self.db.refresh(tok)
        return tok

    def mark_waiting(self, token_id: str) -> QueueToken:
        tok = self._get_token(token_id)
        self._require_open(tok)
        if tok.nurse_status != "ready":
            raise ConflictError("Token is not marked ready",
                                code="NOT_READY")
        tok.nurse_status = "waiting"
        tok.ready_at = None
        self.db.commit()
        self.db.refresh(tok)
        return tok

    def set_priority(self, token_id: str, priority: int) -> QueueToken:
        if priority is None or int(priority) < 0:
            raise ValidationError("priority must be >= 0")
        tok = self._get_token(token_id)
        if tok.status in TERMINAL_STATUSES:
            raise ConflictError(f"Token is already {tok.status}",
                                code="ALREADY_TERMINAL")
        tok.priority = int(priority)
        self.db.commit()
        self.db.refresh(tok)
        return tok

    # ------------------------------------------------------------------
    # views
    # ------------------------------------------------------------------
    @staticmethod
    def statistics(tokens: List[QueueToken]) -> Dict[str, int]:
        c = Counter(t.status for t in tokens)
        return {
            "total": len(tokens),
            "waiting": c.get("waiting", 0),
            "called": c.get("called", 0),
            "serving": c.get("serving", 0),
            "completed": c.get("completed", 0),
            "missed": c.get("missed", 0),
            "cancelled": c.get("cancelled", 0),
            "delayed": sum(1 for t in tokens
                           if t.nurse_status == "delayed"
                           and t.status in ACTIVE_STATUSES),
            "high_priority": sum(1 for t in tokens
                                 if (t.priority or 0) >= URGENT_PRIORITY
                                 and t.status in ACTIVE_STATUSES),
        }

    def _doctor_view(self, doc: User) -> Dict[str, Any]:
        today = self._today()
        tokens = self._tokens_for_day(doc.id, today)
        tokens.sort(key=_bucket_sort_key)
        return {
            "doctor": doc,
            "date": today,
            "tokens": tokens,
            "status": self._status_for(doc.id),
            "statistics": self.statistics(tokens),
        }

    def get_doctor_queue_status(self, doctor_id: str) -> Dict[str, Any]:
        return self._doctor_view(self._get_doctor(doctor_id))

    def get_all_doctors_queue_status(self) -> List[Dict[str, Any]]:
        doctors = (self.db.query(User).filter(
            User.role == "doctor",
            User.is_active.is_(True),
        ).order_by(User.first_name, User.last_name).all())
        return [self._doctor_view(d) for d in doctors]

    def get_patient_queue_info(
            self,
            patient_id: str,
            doctor_id: Optional[str] = None) -> Dict[str, Any]:
        if not patient_id:
            raise ValidationError("patient_id is required")
        today = self._today()
        q = (self.db.query(QueueToken).filter(
            QueueToken.patient_id == patient_id,
            QueueToken.issued_date == today,
            QueueToken.status.in_(ACTIVE_STATUSES),
        ))
        if doctor_id:
            q = q.filter(QueueToken.doctor_id == doctor_id)
        tok = q.order_by(QueueToken.issued_time.desc()).first()

        if tok is None:
            return {
                "has_token": False,
                "message": "No active queue token for today",
            }

        if tok.status == "serving":
            return {
                "has_token": True,
                "token": tok,
                "status": tok.status,
                "queue_position": 0,
                "estimated_wait_minutes": 0,
                "message": "You are with the doctor now",
            }
        if tok.status == "called":
            return {
                "has_token": True,
                "token": tok,
                "status": tok.status,
                "queue_position": 0,
                "estimated_wait_minutes": 0,
                "message": "Please proceed to the consultation room",
            }

        # call-next passes over delayed tokens, so they hold nobody up
        waiting = [
            t for t in self._waiting(tok.doctor_id, today)
            if t.nurse_status != "delayed" or t.id == tok.id
        ]
        ahead = next(
            (i for i, t in enumerate(waiting) if t.id == tok.id),
            len(waiting),
        )
        in_progress = 1 if self._serving(tok.doctor_id) else 0
        wait = (ahead + in_progress) * self.consultation_minutes
        if ahead == 0:
            message = "You are next in line"
        else:
            message = (f"{ahead} patient(s) ahead of you, "
                       f"about {wait} minutes")
        if tok.nurse_status == "delayed":
            message = "Your token is on hold, please see the nurse"
        return {
            "has_token": True,
            "token": tok,
            "status": tok.status,
            "queue_position": ahead + 1,
            "estimated_wait_minutes": wait,
            "message": message,
        }

    def get_display_board(self, doctor_id: str) -> Dict[str, Any]:
        doc = self._get_doctor(doctor_id)
        tokens = self._tokens_for_day(doctor_id, self._today())

        def entry(t: QueueToken) -> Dict[str, Any]:
            return {
                "token_number": t.token_number,
                "patient_name": _short_name(t.patient),
                "is_urgent": (t.priority or 0) >= URGENT_PRIORITY,
            }

        serving = next((t for t in tokens if t.status == "serving"), None)
        waiting = sorted((t for t in tokens if t.status == "waiting"
                          and t.nurse_status != "delayed"),
                         key=queue_sort_key)
        called = sorted((t for t in tokens if t.status == "called"),
                        key=lambda t: t.called_at or datetime.min)
        return {
            "doctor": doc,
            "currently_serving": entry(serving) if serving else None,
            "waiting_queue": [entry(t) for t in waiting[:10]],
            "called_tokens": [entry(t) for t in called],
        }

    def analytics(self, doctor_id: str, start_date: dt_date,
                  end_date: dt_date) -> Dict[str, Any]:
        self._get_doctor(doctor_id)
        if start_date > end_date:
            raise ValidationError("start_date must be on or before end_date")

        tokens = (self.db.query(QueueToken).filter(
            QueueToken.doctor_id == doctor_id,
            QueueToken.issued_date >= start_date,
            QueueToken.issued_date <= end_date,
        ).all())
        days = (end_date - start_date).days + 1

        waits = [(t.served_at - t.issued_time).total_seconds() / 60
                 for t in tokens if t.served_at and t.issued_time]
        avg_wait = round(sum(waits) / len(waits)) if waits else 0

        hours = Counter(t.issued_time.hour for t in tokens if t.issued_time)
        peak = sorted(hours.items(), key=lambda kv: (-kv[1], kv[0]))[:3]

        return {
            "doctor_id": doctor_id,
            "start_date": start_date,
            "end_date": end_date,
            "total_patients": len(tokens),
            "average_tokens_per_day": round(len(tokens) / days, 1),
            "status_breakdown": dict(Counter(t.status for t in tokens)),
            "average_wait_minutes": avg_wait,
            "peak_hours": [{"hour": h, "count": n} for h, n in peak],
        }

    def default_analytics_range(self):
        """Last 30 days including today."""
        end = self._today()
        return end - timedelta(days=29), end
