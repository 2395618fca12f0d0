"""SQLAlchemy models for QR access grants and the patient data they expose."""
from sqlalchemy import Column, String, Integer, Boolean, Text, ForeignKey, DateTime, Date, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import uuid

from .database import Base


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching stored timestamps."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Patient(Base):
    """Patient profile fields read when building disclosure payloads."""
    __tablename__ = "patients"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    date_of_birth = Column(Date, nullable=True)
    blood_type = Column(String(10), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Patient(id={self.id})>"


class EmergencyInfo(Base):
    """Emergency profile; list columns hold serialized JSON arrays."""
    __tablename__ = "emergency_info"

    patient_id = Column(String(36), ForeignKey("patients.id", ondelete="CASCADE"), primary_key=True)
    emergency_contact_name = Column(String(100), nullable=True)
    emergency_contact_phone = Column(String(20), nullable=True)
    critical_allergies = Column(Text, nullable=True)
    chronic_conditions = Column(Text, nullable=True)
    current_medications = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<EmergencyInfo(patient_id={self.patient_id})>"


class HealthRecord(Base):
    """Categorized health record (allergy, medication, condition, lab_result, vaccination)."""
    __tablename__ = "health_records"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    patient_id = Column(String(36), ForeignKey("patients.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    category = Column(String(50), nullable=False)
    content = Column(Text, nullable=False, default="")
    date_recorded = Column(DateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_health_records_patient_created", "patient_id", "is_active", "created_at"),
    )

    def __repr__(self):
        return f"<HealthRecord(id={self.id}, category={self.category})>"


class AccessGrant(Base):
    """
    Tokenized capability disclosing one tier of a patient's data until expiry.

    Revocation backdates ``expires_at``; there is no separate status column,
    so revoked and naturally expired grants look the same to verification.
    """
    __tablename__ = "access_grants"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    owner_id = Column(String(36), nullable=False, index=True)
    token = Column(String(64), nullable=False, unique=True, index=True)
    access_level = Column(String(20), nullable=False)
    issued_at = Column(DateTime, default=utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    last_viewed_at = Column(DateTime, nullable=True)
    view_count = Column(Integer, default=0, nullable=False)

    views = relationship(
        "AccessGrantView",
        back_populates="grant",
        cascade="all, delete-orphan",
        order_by="AccessGrantView.viewed_at",
    )

    __table_args__ = (
        Index("idx_access_grants_owner_expiry", "owner_id", "expires_at"),
    )

    @property
    def is_viewed(self) -> bool:
        return self.last_viewed_at is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def __repr__(self):
        return f"<AccessGrant(id={self.id}, owner_id={self.owner_id}, access_level={self.access_level})>"


class AccessGrantView(Base):
    """Append-only audit entry written on every successful verification."""
    __tablename__ = "access_grant_views"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    grant_id = Column(String(36), ForeignKey("access_grants.id", ondelete="CASCADE"), nullable=False, index=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(Text, nullable=True)
    viewed_at = Column(DateTime, default=utcnow, nullable=False)

    grant = relationship("AccessGrant", back_populates="views")

    def __repr__(self):
        return f"<AccessGrantView(grant_id={self.grant_id}, viewed_at={self.viewed_at})>"
