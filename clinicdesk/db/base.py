# clinicdesk/db/base.py
import uuid

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All clinic tables (users, patients, visits, queue, billing, ...) inherit from this."""
    pass


def new_uuid() -> str:
    return str(uuid.uuid4())
