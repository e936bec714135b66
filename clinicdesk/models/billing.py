# FILE: clinicdesk/models/billing.py
from __future__ import annotations

from sqlalchemy import (
    Column,
    String,
    Numeric,
    DateTime,
    Index,
    ForeignKey,
    Text,
)
from sqlalchemy.orm import relationship
from clinicdesk.db.base import Base, new_uuid
from clinicdesk.utils.timezone import now_local

class Invoice(Base):
    """
    Patient invoice built during consultation / checkout.

    - status moves pending -> partial -> paid (or cancelled)
    - completed_at / completed_by are stamped when payment is captured;
      for medicine lines the completing user is the dispenser
    """

    __tablename__ = "invoices"
    __table_args__ = (Index("ix_invoices_status_completed", "status",
                            "completed_at"), )

    id = Column(String(36), primary_key=True, default=new_uuid)
    patient_id = Column(
        String(36),
        ForeignKey("patients.id"),
        nullable=False,
        index=True,
    )
    visit_id = Column(String(36), ForeignKey("visits.id"), nullable=True)

    status = Column(String(16), nullable=False, default="pending")

    total_amount = Column(Numeric(12, 2), default=0)
    paid_amount = Column(Numeric(12, 2), default=0)
    balance = Column(Numeric(12, 2), default=0)

    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(36), ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, default=now_local)

    items = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
    )


class InvoiceItem(Base):
    __tablename__ = "invoice_items"
    __table_args__ = (
        Index("ix_invoice_items_invoice_type", "invoice_id", "item_type"), )

    id = Column(String(36), primary_key=True, default=new_uuid)
    invoice_id = Column(
        String(36),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    item_type = Column(String(16), nullable=False)  # service | medicine
    item_name = Column(String(300), nullable=False)

    quantity = Column(Numeric(10, 2), default=1)
    unit_price = Column(Numeric(12, 2), default=0)
    total_price = Column(Numeric(12, 2), default=0)
    notes = Column(Text, nullable=True)

    # dispensed: handed over from stock | written_out: prescribed, not dispensed
    fulfillment_type = Column(String(16), nullable=False, default="dispensed")

    added_at = Column(DateTime, default=now_local)

    invoice = relationship("Invoice", back_populates="items")
