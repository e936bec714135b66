# FILE: clinicdesk/utils/timezone.py
from __future__ import annotations

from datetime import datetime
from zoneinfo import ZoneInfo

from clinicdesk.core.config import settings

LOCAL_TZ = ZoneInfo(settings.LOCAL_TZ)


def now_local() -> datetime:
    """
    Returns a *naive* datetime representing clinic-local time.
    DateTime columns are naive, so everything stored is local wall time.
    """
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def to_local_naive(dt: datetime) -> datetime:
    """Aware datetimes are converted to local wall time; naive ones pass through."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(LOCAL_TZ).replace(tzinfo=None)
