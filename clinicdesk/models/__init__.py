# clinicdesk/models/__init__.py
from .user import User
from .patient import Patient
from .opd import DoctorAvailability, Visit, QueueCounter, QueueToken
from .billing import Invoice, InvoiceItem
from .clinical import PatientDiagnosis, PatientAllergy
from .audit import AuditLog

__all__ = [
    "User",
    "Patient",
    "DoctorAvailability",
    "Visit",
    "QueueCounter",
    "QueueToken",
    "Invoice",
    "InvoiceItem",
    "PatientDiagnosis",
    "PatientAllergy",
    "AuditLog",
]
