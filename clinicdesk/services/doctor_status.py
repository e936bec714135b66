# FILE: clinicdesk/services/doctor_status.py
from __future__ import annotations

from dataclasses import dataclass, asdict
from datetime import datetime, time
from typing import Iterable, List, Optional

from clinicdesk.models.opd import DoctorAvailability, WEEKDAYS


@dataclass
class DoctorStatus:
    status: str  # unavailable | available | consulting | full
    text: str
    can_accept_patients: bool
    description: str
    waiting_count: int = 0
    working_hours: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _fmt(t: time) -> str:
    return t.strftime("%H:%M")


def today_slots(slots: Iterable[DoctorAvailability],
                now: datetime) -> List[DoctorAvailability]:
    weekday = WEEKDAYS[now.weekday()]
    out = [s for s in slots if s.is_active and s.day_of_week == weekday]
    out.sort(key=lambda s: s.start_time)
    return out


def current_slot(slots: Iterable[DoctorAvailability],
                 now: datetime) -> Optional[DoctorAvailability]:
    """Active slot for today covering `now` (start inclusive, end exclusive)."""
    t = now.time()
    for s in today_slots(slots, now):
        if s.start_time <= t < s.end_time:
            return s
    return None


def working_hours_label(slots: Iterable[DoctorAvailability],
                        now: datetime) -> Optional[str]:
    todays = today_slots(slots, now)
    if not todays:
        return None
    return ", ".join(f"{_fmt(s.start_time)}-{_fmt(s.end_time)}"
                     for s in todays)


def compute_doctor_status(
    slots: Iterable[DoctorAvailability],
    now: datetime,
    *,
    is_consulting: bool,
    waiting_count: int,
    max_waiting: int,
) -> DoctorStatus:
    """
    unavailable  no active slot today covering now
    consulting   a token is being served; accepts while waiting < max
    full         waiting >= max
    available    otherwise
    """
    slots = list(slots)
    hours = working_hours_label(slots, now)

    if current_slot(slots, now) is None:
        if hours:
            desc = f"Outside working hours (today {hours})"
        else:
            desc = "Not scheduled today"
        return DoctorStatus(
            status="unavailable",
            text="Unavailable",
            can_accept_patients=False,
            description=desc,
            waiting_count=waiting_count,
            working_hours=hours,
        )

    if is_consulting:
        can_accept = waiting_count < max_waiting
        return DoctorStatus(
            status="consulting",
            text="In Consultation",
            can_accept_patients=can_accept,
            description=(f"{waiting_count} waiting" if can_accept else
                         f"Queue full ({waiting_count}/{max_waiting})"),
            waiting_count=waiting_count,
            working_hours=hours,
        )

    if waiting_count >= max_waiting:
        return DoctorStatus(
            status="full",
            text="Queue Full",
            can_accept_patients=False,
            description=f"Queue full ({waiting_count}/{max_waiting})",
            waiting_count=waiting_count,
            working_hours=hours,
        )

    return DoctorStatus(
        status="available",
        text="Available",
        can_accept_patients=True,
        description=(f"{waiting_count} waiting"
                     if waiting_count else "No patients waiting"),
        waiting_count=waiting_count,
        working_hours=hours,
    )
