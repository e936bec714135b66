# clinicdesk/models/opd.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    Date,
    Time,
    DateTime,
    Boolean,
    ForeignKey,
    UniqueConstraint,
    Text,
    Index,
    CheckConstraint,
    JSON,
    text,
)
from sqlalchemy.orm import relationship
from clinicdesk.db.base import Base, new_uuid
from clinicdesk.utils.timezone import now_local

WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


class DoctorAvailability(Base):
    __tablename__ = "doctor_availability"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_doc_avail_time"),
        Index("ix_doc_avail_doctor_day", "doctor_id", "day_of_week"),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    doctor_id = Column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    day_of_week = Column(String(10), nullable=False)  # Monday..Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True)

    doctor = relationship("User", foreign_keys=[doctor_id])


class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (Index("ix_visits_patient_status", "patient_id",
                            "status"), )

    id = Column(String(36), primary_key=True, default=new_uuid)
    patient_id = Column(
        String(36),
        ForeignKey("patients.id"),
        nullable=False,
    )
    doctor_id = Column(
        String(36),
        ForeignKey("users.id"),
        nullable=True,
        index=True,
    )
    appointment_id = Column(String(36), nullable=True)
    visit_type = Column(String(20), default="walk_in")  # walk_in | appointment
    # in_progress | completed | cancelled
    status = Column(String(20), nullable=False, default="in_progress")
    cancel_reason = Column(String(120), nullable=True)

    started_at = Column(DateTime, default=now_local)
    ended_at = Column(DateTime, nullable=True)

    patient = relationship("Patient", foreign_keys=[patient_id])
    doctor = relationship("User", foreign_keys=[doctor_id])


class QueueCounter(Base):
    """
    Last issued token number per doctor per day.
    Locked with SELECT ... FOR UPDATE while the next number is allocated.
    """
    __tablename__ = "queue_counters"
    __table_args__ = (UniqueConstraint("doctor_id",
                                       "date",
                                       name="uq_queue_counter_doctor_date"), )

    id = Column(Integer, primary_key=True, autoincrement=True)
    doctor_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    last_token_number = Column(Integer, nullable=False, default=0)


class QueueToken(Base):
    __tablename__ = "queue_tokens"
    __table_args__ = (
        UniqueConstraint(
            "doctor_id",
            "issued_date",
            "token_number",
            name="uq_queue_token_doctor_day_no",
        ),
        Index("ix_queue_tokens_doctor_day_status", "doctor_id", "issued_date",
              "status"),
        Index("ix_queue_tokens_patient_day", "patient_id", "issued_date"),
        # one serving token per doctor; MySQL has no partial indexes
        Index(
            "uq_queue_tokens_one_serving",
            "doctor_id",
            unique=True,
            postgresql_where=text("status = 'serving'"),
            sqlite_where=text("status = 'serving'"),
        ).ddl_if(dialect=("postgresql", "sqlite")),
    )

    id = Column(String(36), primary_key=True, default=new_uuid)
    doctor_id = Column(
        String(36),
        ForeignKey("users.id"),
        nullable=False,
    )
    patient_id = Column(
        String(36),
        ForeignKey("patients.id"),
        nullable=False,
    )
    visit_id = Column(
        String(36),
        ForeignKey("visits.id"),
        nullable=True,
        index=True,
    )
    appointment_id = Column(String(36), nullable=True)

    token_number = Column(Integer, nullable=False)
    issued_date = Column(Date, nullable=False)
    # waiting | called | serving | completed | missed | cancelled
    status = Column(String(16), nullable=False, default="waiting")
    priority = Column(Integer, nullable=False, default=0)  # >= 4 urgent

    issued_time = Column(DateTime, nullable=False, default=now_local)
    called_at = Column(DateTime, nullable=True)
    served_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    missed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # nurse side: waiting | delayed | ready (does not move `status`)
    nurse_status = Column(String(16), nullable=False, default="waiting")
    vitals_taken = Column(Boolean, nullable=False, default=False)
    vitals = Column(JSON, nullable=True)
    nurse_notes = Column(Text, nullable=True)
    delay_reason = Column(String(255), nullable=True)
    delayed_at = Column(DateTime, nullable=True)
    ready_at = Column(DateTime, nullable=True)

    updated_at = Column(
        DateTime,
        default=now_local,
        onupdate=now_local,
    )

    patient = relationship("Patient", foreign_keys=[patient_id])
    doctor = relationship("User", foreign_keys=[doctor_id])
    visit = relationship("Visit", foreign_keys=[visit_id])
