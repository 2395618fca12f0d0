"""Request/response models for the QR access API."""
from datetime import date, datetime, timezone
from typing import Annotated, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from .config import settings


def _utc_isoformat(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


# Stored timestamps are naive UTC; JSON output marks them with a trailing Z
UtcDatetime = Annotated[datetime, PlainSerializer(_utc_isoformat, return_type=str, when_used="json")]


class CamelModel(BaseModel):
    """Serializes with camelCase keys and accepts either spelling on input."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Grant management
# ============================================================================

class GenerateGrantRequest(CamelModel):
    """QR grant issuance request."""
    access_level: str = Field(..., min_length=1, max_length=32)
    expiration_hours: float = Field(
        default=settings.qr_default_duration_hours,
        validation_alias=AliasChoices("expirationHours", "durationHours", "expiration_hours", "duration_hours"),
    )


class GrantResponse(CamelModel):
    """Issued grant returned once to its owner."""
    grant_id: str
    token: str
    share_url: str
    access_level: str
    expires_at: UtcDatetime
    created_at: UtcDatetime


class ActiveGrantResponse(CamelModel):
    """Active grant as listed on the owner's dashboard."""
    grant_id: str
    access_level: str
    token: str
    share_url: str
    created_at: UtcDatetime
    expires_at: UtcDatetime
    viewed_at: Optional[UtcDatetime] = None
    is_viewed: bool
    view_count: int


class VerificationResponse(CamelModel):
    """Result of a public token verification."""
    is_valid: bool
    owner_id: str
    access_level: str
    expires_at: UtcDatetime
    owner_display_name: str
    view_count: int


class MessageResponse(BaseModel):
    message: str


# ============================================================================
# Disclosure payload
# ============================================================================

class PatientInfo(CamelModel):
    name: str
    date_of_birth: Optional[date] = None
    blood_type: str = "Unknown"


class EmergencyContact(CamelModel):
    name: str = ""
    phone: str = ""


class HealthRecordSummary(CamelModel):
    title: str
    category: str
    content: str
    date_recorded: Optional[UtcDatetime] = None
    created_at: UtcDatetime


class DisclosurePayload(CamelModel):
    """
    Tier-filtered data returned to a verified viewer.

    Fields outside the grant's tier stay None and are omitted on output.
    """
    access_level: str
    patient_info: Optional[PatientInfo] = None
    emergency_contact: Optional[EmergencyContact] = None
    critical_allergies: Optional[List[str]] = None
    current_medications: Optional[List[str]] = None
    recent_health_records: Optional[List[HealthRecordSummary]] = None
    all_health_records: Optional[List[HealthRecordSummary]] = None
    chronic_conditions: Optional[List[str]] = None

    def disclosed_fields(self) -> set:
        """Names of the data categories actually present in this payload."""
        return {
            name
            for name in self.model_dump(exclude_none=True)
            if name != "access_level"
        }
