# clinicdesk/schemas/dispense.py
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from clinicdesk.utils.timezone import to_local_naive

SortBy = Literal["dispensedAt", "medicineName", "patientName", "quantity"]
SortDir = Literal["asc", "desc"]


class DispenseFilters(BaseModel):
    """Query string of the dispense report; wire names are camelCase."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    from_: Optional[datetime] = Field(None, alias="from")
    to: Optional[datetime] = None
    search: Optional[str] = Field(None, max_length=100)
    page: int = Field(1, ge=1)
    page_size: int = Field(25, ge=1, le=100, alias="pageSize")
    sort_by: SortBy = Field("dispensedAt", alias="sortBy")
    sort_dir: SortDir = Field("desc", alias="sortDir")

    @field_validator("from_", "to", "search", "page", "page_size", "sort_by",
                     "sort_dir",
                     mode="before")
    @classmethod
    def _blank_is_default(cls, v, info):
        # ?page=&sortBy= behave like absent params
        if v is None or (isinstance(v, str) and not v.strip()):
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("search")
    @classmethod
    def _strip_search(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @model_validator(mode="after")
    def _range(self):
        if self.from_ and self.to:
            if to_local_naive(self.from_) > to_local_naive(self.to):
                raise ValueError("'from' must be before 'to'")
        return self


class _Camel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DispensedBy(_Camel):
    user_id: str
    name: str
    role: Optional[str] = None


class DispenseRow(_Camel):
    id: str
    dispensed_at: Optional[datetime] = None
    medicine_name: str
    quantity: float = 0
    unit_price: float = 0
    total_price: float = 0
    notes: Optional[str] = None
    patient_id: Optional[str] = None
    patient_name: str = "Unknown"
    patient_number: Optional[str] = None
    dispensed_by: Optional[DispensedBy] = None
    invoice_id: str


class MedicineUnits(_Camel):
    medicine_name: str
    units: float


class DispenseSummary(_Camel):
    total_items: int = 0
    total_units: float = 0
    by_medicine: List[MedicineUnits] = Field(default_factory=list)


class DispenseList(_Camel):
    items: List[DispenseRow] = Field(default_factory=list)
    total: int = 0
    summary: DispenseSummary = Field(default_factory=DispenseSummary)
    page: int = 1
    page_size: int = 25
