# clinicdesk/schemas/queue.py
from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clinicdesk.schemas.common import DoctorBrief, PatientBrief


# ---------- Requests ----------
class TokenIssueIn(BaseModel):
    patient_id: str = Field(..., min_length=1)
    doctor_id: str = Field(..., min_length=1)
    priority: int = Field(0, ge=0, le=5, description="0 normal, >= 4 urgent")
    appointment_id: Optional[str] = None

    @field_validator("patient_id", "doctor_id")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class CompleteConsultationIn(BaseModel):
    outcome: Literal["completed", "missed"] = "completed"


class DelayIn(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class MarkReadyIn(BaseModel):
    # bp / pulse / temperature / spo2 / weight ... as captured by the nurse
    vitals: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None


class PriorityIn(BaseModel):
    priority: int = Field(..., ge=0, le=5)


# ---------- Responses ----------
class QueueTokenOut(BaseModel):
    id: str
    doctor_id: str
    patient_id: str
    visit_id: Optional[str] = None
    appointment_id: Optional[str] = None

    token_number: int
    issued_date: date
    status: str
    priority: int
    is_urgent: bool = False

    issued_time: datetime
    called_at: Optional[datetime] = None
    served_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    missed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    nurse_status: str = "waiting"
    vitals_taken: bool = False
    vitals: Optional[Dict[str, Any]] = None
    nurse_notes: Optional[str] = None
    delay_reason: Optional[str] = None
    delayed_at: Optional[datetime] = None
    ready_at: Optional[datetime] = None

    patient: Optional[PatientBrief] = None

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_token(cls, t) -> "QueueTokenOut":
        out = cls.model_validate(t, from_attributes=True)
        out.is_urgent = (t.priority or 0) >= 4
        return out


class DoctorStatusOut(BaseModel):
    status: Literal["unavailable", "available", "consulting", "full"]
    text: str
    can_accept_patients: bool
    description: str
    waiting_count: int = 0
    working_hours: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class QueueStatsOut(BaseModel):
    total: int = 0
    waiting: int = 0
    called: int = 0
    serving: int = 0
    completed: int = 0
    missed: int = 0
    cancelled: int = 0
    delayed: int = 0
    high_priority: int = 0


class DoctorQueueOut(BaseModel):
    doctor: DoctorBrief
    date: date
    tokens: List[QueueTokenOut]
    status: DoctorStatusOut
    statistics: QueueStatsOut


class CapacityOut(BaseModel):
    can_accept: bool
    reason: str
    current_queue: int = 0
    available_slots: int = 0
    remaining_minutes: Optional[int] = None
    estimated_time_needed: Optional[int] = None
    working_hours: Optional[str] = None


class PatientQueueInfoOut(BaseModel):
    has_token: bool
    message: str
    token: Optional[QueueTokenOut] = None
    queue_position: Optional[int] = None
    estimated_wait_minutes: Optional[int] = None
    status: Optional[str] = None


class BoardEntry(BaseModel):
    token_number: int
    patient_name: str
    is_urgent: bool = False


class DisplayBoardOut(BaseModel):
    doctor: DoctorBrief
    currently_serving: Optional[BoardEntry] = None
    waiting_queue: List[BoardEntry] = Field(default_factory=list)
    called_tokens: List[BoardEntry] = Field(default_factory=list)


class PeakHour(BaseModel):
    hour: int
    count: int


class QueueAnalyticsOut(BaseModel):
    doctor_id: str
    start_date: date
    end_date: date
    total_patients: int
    average_tokens_per_day: float
    status_breakdown: Dict[str, int]
    average_wait_minutes: int
    peak_hours: List[PeakHour]


# ---------- Bulk / maintenance ----------
class BulkIssueIn(BaseModel):
    tokens: List[TokenIssueIn] = Field(..., min_length=1, max_length=50)


class BulkStatusItem(BaseModel):
    token_id: str = Field(..., min_length=1)
    # checked per item so one bad status does not sink the batch
    status: str


class BulkStatusIn(BaseModel):
    updates: List[BulkStatusItem] = Field(..., min_length=1, max_length=50)


class BulkFailure(BaseModel):
    index: int
    code: Optional[str] = None
    error: str
    token_id: Optional[str] = None
    status: Optional[str] = None
    doctor_id: Optional[str] = None
    patient_id: Optional[str] = None


class BulkSummary(BaseModel):
    total: int
    successful: int
    failed: int


class BulkResultOut(BaseModel):
    successful: List[QueueTokenOut]
    failed: List[BulkFailure]
    summary: BulkSummary


class StaleTokenOut(BaseModel):
    token_id: str
    token_number: int
    doctor_id: str
    patient_id: str
    patient_name: Optional[str] = None
    issued_date: date
    previous_status: str
    status: str
