# FILE: clinicdesk/services/dispense_service.py
from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinicdesk.core.config import settings
from clinicdesk.core.errors import UpstreamError, ValidationError
from clinicdesk.models.billing import Invoice, InvoiceItem
from clinicdesk.models.patient import Patient
from clinicdesk.models.user import User
from clinicdesk.schemas.dispense import (
    DispenseFilters,
    DispenseList,
    DispenseRow,
    DispenseSummary,
    DispensedBy,
    MedicineUnits,
)
from clinicdesk.utils.timezone import now_local, to_local_naive

logger = logging.getLogger(__name__)

WRITE_OUT_MARKER = "write-out"
_IN_CHUNK = 500


def _num(x) -> float:
    if x is None:
        return 0.0
    return float(Decimal(str(x)))


def is_write_out(item: InvoiceItem) -> bool:
    """Prescribed-but-not-dispensed lines: typed flag or legacy name marker."""
    if (item.fulfillment_type or "dispensed") == "written_out":
        return True
    return WRITE_OUT_MARKER in (item.item_name or "").lower()


def parse_filters(
    raw: Union[DispenseFilters, Mapping[str, Any], None]
) -> DispenseFilters:
    if isinstance(raw, DispenseFilters):
        return raw
    try:
        return DispenseFilters.model_validate(dict(raw or {}))
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid dispense filters",
            details=[{
                "field": ".".join(str(p) for p in er.get("loc", ())),
                "message": er.get("msg"),
            } for er in e.errors()],
        )


_SORT_KEYS: Dict[str, Callable[[DispenseRow], Any]] = {
    "dispensedAt": lambda r: r.dispensed_at or datetime.min,
    "medicineName": lambda r: (r.medicine_name or "").lower(),
    "patientName": lambda r: (r.patient_name or "").lower(),
    "quantity": lambda r: r.quantity or 0,
}


class DispenseService:
    """
    Medicine lines of paid invoices, joined in memory with patients and the
    user who completed the invoice.
    """

    def __init__(self, db: Session, *, now: Optional[Callable[[], datetime]] = None):
        self.db = db
        self.now = now or now_local

    # ------------------------------------------------------------------
    def _range(self, f: DispenseFilters):
        today = self.now().date()
        start = to_local_naive(f.from_) if f.from_ else datetime.combine(
            today, time.min)
        end = to_local_naive(f.to) if f.to else datetime.combine(
            today, time.max)
        return start, end

    def _batch(self, model, ids) -> Dict[str, Any]:
        ids = [i for i in dict.fromkeys(ids) if i]
        out: Dict[str, Any] = {}
        for i in range(0, len(ids), _IN_CHUNK):
            chunk = ids[i:i + _IN_CHUNK]
            for row in self.db.query(model).filter(model.id.in_(chunk)).all():
                out[row.id] = row
        return out

    def _collect(self, f: DispenseFilters) -> List[DispenseRow]:
        start, end = self._range(f)

        invoices = (self.db.query(Invoice).filter(
            Invoice.status == "paid",
            Invoice.completed_at.isnot(None),
            Invoice.completed_at >= start,
            Invoice.completed_at <= end,
        ).order_by(Invoice.completed_at.desc(), Invoice.id).all())
        if not invoices:
            return []
        inv_by_id: "OrderedDict[str, Invoice]" = OrderedDict(
            (inv.id, inv) for inv in invoices)

        items: List[InvoiceItem] = []
        inv_ids = list(inv_by_id)
        for i in range(0, len(inv_ids), _IN_CHUNK):
            q = (self.db.query(InvoiceItem).filter(
                InvoiceItem.invoice_id.in_(inv_ids[i:i + _IN_CHUNK]),
                InvoiceItem.item_type == "medicine",
                InvoiceItem.fulfillment_type != "written_out",
            ))
            if f.search:
                q = q.filter(
                    InvoiceItem.item_name.icontains(f.search, autoescape=True))
            items.extend(q.order_by(InvoiceItem.added_at, InvoiceItem.id).all())
        if not items:
            return []

        patients = self._batch(Patient,
                               (inv.patient_id for inv in invoices))
        users = self._batch(User, (inv.completed_by for inv in invoices))

        # base order: invoice order (newest first), then line order
        pos = {inv_id: n for n, inv_id in enumerate(inv_by_id)}
        items.sort(key=lambda it: pos.get(it.invoice_id, len(pos)))

        rows: List[DispenseRow] = []
        for it in items:
            if is_write_out(it):
                continue
            inv = inv_by_id.get(it.invoice_id)
            if inv is None:
                continue
            p = patients.get(inv.patient_id)
            u = users.get(inv.completed_by) if inv.completed_by else None
            rows.append(
                DispenseRow(
                    id=it.id,
                    dispensed_at=inv.completed_at,
                    medicine_name=it.item_name,
                    quantity=_num(it.quantity),
                    unit_price=_num(it.unit_price),
                    total_price=_num(it.total_price),
                    notes=it.notes,
                    patient_id=inv.patient_id,
                    patient_name=(p.full_name if p else "") or "Unknown",
                    patient_number=p.patient_number if p else None,
                    dispensed_by=DispensedBy(
                        user_id=u.id, name=u.full_name, role=u.role)
                    if u else None,
                    invoice_id=inv.id,
                ))
        return rows

    @staticmethod
    def _summarize(rows: List[DispenseRow], sort_dir: str) -> DispenseSummary:
        units: "OrderedDict[str, float]" = OrderedDict()
        for r in rows:
            units[r.medicine_name] = units.get(r.medicine_name, 0.0) + (
                r.quantity or 0)
        by_med = sorted(
            (MedicineUnits(medicine_name=k, units=v) for k, v in units.items()),
            key=lambda m: m.units,
            reverse=(sort_dir == "desc"),
        )
        return DispenseSummary(
            total_items=len(rows),
            total_units=sum(r.quantity or 0 for r in rows),
            by_medicine=by_med,
        )

    # ------------------------------------------------------------------
    def list(self, filters=None) -> DispenseList:
        f = parse_filters(filters)
        try:
            rows = self._collect(f)
        except SQLAlchemyError as e:
            logger.exception("Dispense query failed")
            raise UpstreamError("Failed to load dispenses") from e

        # sorted() is stable for reverse=True as well
        rows = sorted(rows,
                      key=_SORT_KEYS[f.sort_by],
                      reverse=(f.sort_dir == "desc"))
        summary = self._summarize(rows, f.sort_dir)

        offset = (f.page - 1) * f.page_size
        return DispenseList(
            items=rows[offset:offset + f.page_size],
            total=len(rows),
            summary=summary,
            page=f.page,
            page_size=f.page_size,
        )

    def fetch_all(self, filters=None) -> List[DispenseRow]:
        """Whole filtered set, paging internally like the UI would."""
        f = parse_filters(filters)
        page_size = settings.DISPENSE_EXPORT_PAGE_SIZE
        out: List[DispenseRow] = []
        for page in range(1, settings.DISPENSE_EXPORT_MAX_PAGES + 1):
            res = self.list(
                f.model_copy(update={
                    "page": page,
                    "page_size": page_size
                }))
            if not res.items:
                break
            out.extend(res.items)
            if len(out) >= res.total:
                break
        else:
            logger.warning("Dispense export hit the %s page cap",
                           settings.DISPENSE_EXPORT_MAX_PAGES)
        return out

    def export_filename(self, ext: str = "csv") -> str:
        return f"dispenses_{self.now().date().isoformat()}.{ext}"
