from datetime import datetime, time

from clinicdesk.models.opd import DoctorAvailability
from clinicdesk.services.doctor_status import (
    compute_doctor_status,
    current_slot,
    working_hours_label,
)

MONDAY_10 = datetime(2026, 10, 19, 10, 0)


def _slot(day="Monday", start=time(9, 0), end=time(13, 0), active=True):
    return DoctorAvailability(day_of_week=day,
                              start_time=start,
                              end_time=end,
                              is_active=active)


def _status(slots, consulting=False, waiting=0, cap=20, now=MONDAY_10):
    return compute_doctor_status(slots,
                                 now,
                                 is_consulting=consulting,
                                 waiting_count=waiting,
                                 max_waiting=cap)


def test_unavailable_without_schedule():
    st = _status([])
    assert st.status == "unavailable"
    assert st.can_accept_patients is False
    assert st.description == "Not scheduled today"


def test_unavailable_outside_hours_reports_todays_hours():
    slots = [_slot(start=time(14, 0), end=time(18, 0))]
    st = _status(slots)
    assert st.status == "unavailable"
    assert "14:00-18:00" in st.description


def test_other_weekday_and_inactive_slots_are_ignored():
    slots = [_slot(day="Tuesday"), _slot(active=False)]
    assert current_slot(slots, MONDAY_10) is None
    assert working_hours_label(slots, MONDAY_10) is None


def test_available():
    st = _status([_slot()], waiting=3)
    assert st.status == "available"
    assert st.can_accept_patients is True
    assert st.waiting_count == 3


def test_consulting_accepts_until_cap():
    assert _status([_slot()], consulting=True,
                   waiting=19).can_accept_patients is True
    st = _status([_slot()], consulting=True, waiting=20)
    assert st.status == "consulting"
    assert st.can_accept_patients is False


def test_full_when_waiting_reaches_cap():
    st = _status([_slot()], waiting=5, cap=5)
    assert st.status == "full"
    assert st.can_accept_patients is False


def test_split_shift_label():
    slots = [
        _slot(start=time(14, 0), end=time(17, 0)),
        _slot(start=time(9, 0), end=time(12, 0)),
    ]
    assert working_hours_label(slots, MONDAY_10) == "09:00-12:00, 14:00-17:00"
    assert current_slot(slots, MONDAY_10).start_time == time(9, 0)
