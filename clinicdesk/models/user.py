
from sqlalchemy import Column, String, Boolean, DateTime, Index
from clinicdesk.db.base import Base, new_uuid
from clinicdesk.utils.timezone import now_local


class User(Base):
    __tablename__ = "users"
    __table_args__ = (Index("ix_users_role", "role"), )

    id = Column(String(36), primary_key=True, default=new_uuid)
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=True)
    email = Column(String(191), unique=True, nullable=False)
    # doctor | nurse | receptionist | pharmacist | admin | patient
    role = Column(String(20), nullable=False, default="receptionist")
    specialty = Column(String(120), nullable=True)

    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=now_local)

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
