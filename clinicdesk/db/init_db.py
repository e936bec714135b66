# clinicdesk/db/init_db.py
from __future__ import annotations

import argparse
import logging
from datetime import time

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinicdesk.db.session import engine as default_engine
from clinicdesk.db.base import Base

# Import all models so metadata is complete
from clinicdesk import models  # noqa: F401
from clinicdesk.models.opd import DoctorAvailability, WEEKDAYS
from clinicdesk.models.user import User

logger = logging.getLogger(__name__)


def create_tables(bind: Engine) -> None:
    Base.metadata.create_all(bind=bind)


def seed_default_availability(db: Session,
                              start: time = time(9, 0),
                              end: time = time(17, 0)) -> int:
    """
    Give every active doctor without any schedule a Monday..Saturday shift.
    Safe to run multiple times.
    """
    added = 0
    doctors = db.query(User).filter(User.role == "doctor",
                                    User.is_active.is_(True)).all()
    for doc in doctors:
        has_any = (db.query(DoctorAvailability.id).filter(
            DoctorAvailability.doctor_id == doc.id).first())
        if has_any:
            continue
        for day in WEEKDAYS[:6]:
            db.add(
                DoctorAvailability(doctor_id=doc.id,
                                   day_of_week=day,
                                   start_time=start,
                                   end_time=end,
                                   is_active=True))
            added += 1
    return added


def run(fresh: bool = False, seed: bool = False, bind: Engine = None) -> None:
    bind = bind or default_engine
    if fresh:
        logger.warning("Dropping ALL tables (dev only) ...")
        Base.metadata.drop_all(bind=bind)

    logger.info("Creating all missing tables ...")
    create_tables(bind)
    logger.info("Tables: %s", sorted(inspect(bind).get_table_names()))

    if not seed:
        return
    try:
        with Session(bind) as db:
            added = seed_default_availability(db)
            db.commit()
            logger.info("Seeded %s availability slots.", added)
    except SQLAlchemyError:
        logger.exception("Seeding failed")
        raise


if __name__ == "__main__":
    from clinicdesk.core.logging import configure_logging

    configure_logging()
    parser = argparse.ArgumentParser(
        description="Initialize DB (create tables, seed availability).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Add a default weekday shift for doctors without a schedule.",
    )
    args = parser.parse_args()
    run(fresh=args.fresh, seed=args.seed)
