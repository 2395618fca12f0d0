"""Collaborator interfaces for patient data read by the projector, plus SQLAlchemy-backed implementations."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .db_models import EmergencyInfo, HealthRecord, Patient


@dataclass
class PatientProfile:
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    blood_type: Optional[str] = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class EmergencyInfoRecord:
    """Emergency profile as stored; list fields are raw serialized JSON."""
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    critical_allergies: Optional[str] = None
    chronic_conditions: Optional[str] = None
    current_medications: Optional[str] = None


@dataclass
class HealthRecordEntry:
    title: str
    category: str
    content: str
    date_recorded: Optional[datetime]
    created_at: datetime


class PatientProfileStore(Protocol):
    async def get_profile(self, owner_id: str) -> Optional[PatientProfile]:
        ...


class EmergencyInfoStore(Protocol):
    async def get_emergency_info(self, owner_id: str) -> Optional[EmergencyInfoRecord]:
        ...


class HealthRecordStore(Protocol):
    async def list_records(
        self,
        owner_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[HealthRecordEntry]:
        """Active records, newest created first."""
        ...


class SqlPatientProfileStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_profile(self, owner_id: str) -> Optional[PatientProfile]:
        patient = await self.db.get(Patient, owner_id)
        if patient is None:
            return None
        return PatientProfile(
            first_name=patient.first_name or "",
            last_name=patient.last_name or "",
            date_of_birth=patient.date_of_birth,
            blood_type=patient.blood_type,
        )


class SqlEmergencyInfoStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_emergency_info(self, owner_id: str) -> Optional[EmergencyInfoRecord]:
        info = await self.db.get(EmergencyInfo, owner_id)
        if info is None:
            return None
        return EmergencyInfoRecord(
            contact_name=info.emergency_contact_name,
            contact_phone=info.emergency_contact_phone,
            critical_allergies=info.critical_allergies,
            chronic_conditions=info.chronic_conditions,
            current_medications=info.current_medications,
        )


class SqlHealthRecordStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_records(
        self,
        owner_id: str,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[HealthRecordEntry]:
        stmt = select(HealthRecord).where(
            HealthRecord.patient_id == owner_id,
            HealthRecord.is_active.is_(True),
        )
        if since is not None:
            stmt = stmt.where(HealthRecord.created_at >= since)
        stmt = stmt.order_by(HealthRecord.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        result = await self.db.execute(stmt)
        return [
            HealthRecordEntry(
                title=record.title,
                category=record.category,
                content=record.content or "",
                date_recorded=record.date_recorded,
                created_at=record.created_at,
            )
            for record in result.scalars().all()
        ]
