import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("LOCAL_TZ", "Asia/Kolkata")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, time, timedelta  # noqa: E402
from decimal import Decimal  # noqa: E402
import itertools  # noqa: E402

import pytest  # noqa: E402
from fastapi import HTTPException  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine, event  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from clinicdesk.api.deps import current_user  # noqa: E402
from clinicdesk.db.base import Base  # noqa: E402
from clinicdesk.db.session import get_db  # noqa: E402
from clinicdesk.main import app  # noqa: E402
from clinicdesk.models import (  # noqa: E402
    DoctorAvailability,
    Invoice,
    InvoiceItem,
    Patient,
    User,
    Visit,
)
from clinicdesk.models.opd import WEEKDAYS  # noqa: E402
from clinicdesk.services import (  # noqa: E402
    clinical_records,
    dispense_service,
    queue_service,
)

# Monday
BASE_NOW = datetime(2026, 10, 19, 10, 0, 0)

_seq = itertools.count(1)


class FakeClock:

    def __init__(self, start: datetime = BASE_NOW):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, minutes: int = 0, seconds: int = 0) -> datetime:
        self.current = self.current + timedelta(minutes=minutes,
                                                seconds=seconds)
        return self.current


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # let SQLAlchemy own BEGIN so SAVEPOINTs behave on pysqlite
    @event.listens_for(eng, "connect")
    def _connect(dbapi_conn, _rec):
        dbapi_conn.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# factories
# ---------------------------------------------------------------------------
@pytest.fixture
def make_user(db):

    def _make(role="doctor", first_name=None, last_name="Test", **kw):
        n = next(_seq)
        u = User(
            first_name=first_name or f"{role.title()}{n}",
            last_name=last_name,
            email=f"{role}{n}@clinic.test",
            role=role,
            is_active=True,
            **kw,
        )
        db.add(u)
        db.commit()
        return u

    return _make


@pytest.fixture
def make_patient(db):

    def _make(first_name=None, last_name="Patient", **kw):
        n = next(_seq)
        p = Patient(
            patient_number=f"P-{n:06d}",
            first_name=first_name or f"Pat{n}",
            last_name=last_name,
            **kw,
        )
        db.add(p)
        db.commit()
        return p

    return _make


@pytest.fixture
def make_slot(db):

    def _make(doctor, days=WEEKDAYS, start=time(9, 0), end=time(17, 0)):
        for day in days:
            db.add(
                DoctorAvailability(doctor_id=doctor.id,
                                   day_of_week=day,
                                   start_time=start,
                                   end_time=end,
                                   is_active=True))
        db.commit()

    return _make


@pytest.fixture
def doctor(make_user, make_slot):
    doc = make_user("doctor", first_name="Asha", last_name="Menon")
    make_slot(doc)
    return doc


@pytest.fixture
def make_visit(db):

    def _make(patient, doctor=None, status="in_progress", started_at=None):
        v = Visit(
            patient_id=patient.id,
            doctor_id=doctor.id if doctor else None,
            status=status,
            started_at=started_at or BASE_NOW,
        )
        db.add(v)
        db.commit()
        return v

    return _make


@pytest.fixture
def make_invoice(db):

    def _make(patient,
              items,
              status="paid",
              completed_at=BASE_NOW,
              completed_by=None):
        inv = Invoice(
            patient_id=patient.id if patient else "missing-patient",
            status=status,
            completed_at=completed_at,
            completed_by=completed_by.id if completed_by else None,
        )
        for i, line in enumerate(items):
            qty = Decimal(str(line.get("quantity", 1)))
            price = Decimal(str(line.get("unit_price", 10)))
            inv.items.append(
                InvoiceItem(
                    item_type=line.get("item_type", "medicine"),
                    item_name=line["name"],
                    quantity=qty,
                    unit_price=price,
                    total_price=qty * price,
                    fulfillment_type=line.get("fulfillment_type",
                                              "dispensed"),
                    added_at=(completed_at or BASE_NOW) + timedelta(seconds=i),
                ))
        total = sum((it.total_price for it in inv.items), Decimal("0"))
        inv.total_amount = total
        inv.paid_amount = total if status == "paid" else Decimal("0")
        inv.balance = total - inv.paid_amount
        db.add(inv)
        db.commit()
        return inv

    return _make


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------
class AuthHolder:
    user = None


@pytest.fixture
def auth():
    return AuthHolder()


@pytest.fixture
def client(db, auth, clock, monkeypatch):
    # services created inside routes read the module-level clock
    for mod in (queue_service, dispense_service, clinical_records):
        monkeypatch.setattr(mod, "now_local", clock)

    def _get_db():
        yield db

    def _current_user():
        if auth.user is None:
            raise HTTPException(status_code=401, detail="Missing token")
        return auth.user

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[current_user] = _current_user
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
