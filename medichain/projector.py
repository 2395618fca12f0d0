"""Assembly of tier-filtered disclosure payloads for verified viewers."""
from __future__ import annotations

import json
import logging
from datetime import timedelta
from typing import List, Optional

from .access_levels import (
    ALL_HEALTH_RECORDS,
    CHRONIC_CONDITIONS,
    CRITICAL_ALLERGIES,
    CURRENT_MEDICATIONS,
    EMERGENCY_CONTACT,
    PATIENT_INFO,
    RECENT_HEALTH_RECORDS,
    AccessLevel,
    disclosure_fields,
    normalize_level,
)
from .db_models import utcnow
from .errors import AccessLevelMismatch
from .grants import Clock, VerificationResult
from .schemas import (
    DisclosurePayload,
    EmergencyContact,
    HealthRecordSummary,
    PatientInfo,
)
from .stores import (
    EmergencyInfoRecord,
    EmergencyInfoStore,
    HealthRecordEntry,
    HealthRecordStore,
    PatientProfileStore,
)

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."
UNKNOWN = "Unknown"


def decode_json_list(raw: Optional[str], field_name: str = "field") -> List[str]:
    """
    Decode a serialized JSON array of strings.

    Anything that is not a JSON list of strings degrades to an empty list.
    """
    if raw is None or not str(raw).strip():
        return []
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Malformed JSON in %s, disclosing empty list", field_name)
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        logger.warning("Unexpected JSON shape in %s, disclosing empty list", field_name)
        return []
    return value


def truncate_content(content: str, limit: int) -> str:
    if len(content) > limit:
        return content[:limit] + TRUNCATION_MARKER
    return content


class DataProjector:
    """Builds disclosure payloads from the profile, emergency-info, and record collaborators."""

    def __init__(
        self,
        profiles: PatientProfileStore,
        emergency_info: EmergencyInfoStore,
        records: HealthRecordStore,
        clock: Clock = utcnow,
        preview_length: int = 200,
        recent_days: int = 30,
        recent_limit: int = 10,
    ):
        self.profiles = profiles
        self.emergency_info = emergency_info
        self.records = records
        self.clock = clock
        self.preview_length = preview_length
        self.recent_days = recent_days
        self.recent_limit = recent_limit

    async def project_verified(self, verification: VerificationResult, requested_level) -> DisclosurePayload:
        """
        Project data for a verified grant after checking the requested tier.

        Raises:
            InvalidAccessLevel: If the requested level is unknown.
            AccessLevelMismatch: If it differs from the grant's stored level.
        """
        level = normalize_level(requested_level)
        if level != verification.access_level:
            logger.warning(
                "Access level mismatch for grant %s: requested %s, granted %s",
                verification.grant_id, level.value, verification.access_level.value,
            )
            raise AccessLevelMismatch()

        payload = await self.project(verification.owner_id, level)
        logger.info(
            "Health data accessed for owner %s with access level %s",
            verification.owner_id, level.value,
        )
        return payload

    async def project(self, owner_id: str, access_level) -> DisclosurePayload:
        """Assemble exactly the categories disclosed at the given tier."""
        level = normalize_level(access_level)
        fields = disclosure_fields(level)
        payload = DisclosurePayload(access_level=level.value)

        if PATIENT_INFO in fields:
            payload.patient_info = await self._patient_info(owner_id)

        info = await self.emergency_info.get_emergency_info(owner_id) or EmergencyInfoRecord()
        if EMERGENCY_CONTACT in fields:
            payload.emergency_contact = EmergencyContact(
                name=info.contact_name or "",
                phone=info.contact_phone or "",
            )
        if CRITICAL_ALLERGIES in fields:
            payload.critical_allergies = decode_json_list(info.critical_allergies, CRITICAL_ALLERGIES)
        if CURRENT_MEDICATIONS in fields:
            payload.current_medications = decode_json_list(info.current_medications, CURRENT_MEDICATIONS)
        if CHRONIC_CONDITIONS in fields:
            payload.chronic_conditions = decode_json_list(info.chronic_conditions, CHRONIC_CONDITIONS)

        if RECENT_HEALTH_RECORDS in fields:
            recent = await self.records.list_records(
                owner_id,
                since=self.clock() - timedelta(days=self.recent_days),
                limit=self.recent_limit,
            )
            truncate = level != AccessLevel.FULL
            payload.recent_health_records = [self._summarize(entry, truncate) for entry in recent]

        if ALL_HEALTH_RECORDS in fields:
            history = await self.records.list_records(owner_id)
            payload.all_health_records = [self._summarize(entry, False) for entry in history]

        return payload

    async def _patient_info(self, owner_id: str) -> PatientInfo:
        profile = await self.profiles.get_profile(owner_id)
        if profile is None:
            logger.warning("No patient profile for owner %s, disclosing placeholders", owner_id)
            return PatientInfo(name=UNKNOWN)
        return PatientInfo(
            name=profile.display_name or UNKNOWN,
            date_of_birth=profile.date_of_birth,
            blood_type=profile.blood_type or UNKNOWN,
        )

    def _summarize(self, entry: HealthRecordEntry, truncate: bool) -> HealthRecordSummary:
        content = entry.content or ""
        if truncate:
            content = truncate_content(content, self.preview_length)
        return HealthRecordSummary(
            title=entry.title,
            category=entry.category,
            content=content,
            date_recorded=entry.date_recorded,
            created_at=entry.created_at,
        )
