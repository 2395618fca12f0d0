"""Access tiers and the data categories each of them discloses."""
from enum import Enum
from typing import Any, Dict, FrozenSet

from .errors import InvalidAccessLevel


class AccessLevel(str, Enum):
    """Disclosure tiers, ordered from narrowest to widest."""
    EMERGENCY = "emergency"
    BASIC = "basic"
    FULL = "full"


PATIENT_INFO = "patient_info"
EMERGENCY_CONTACT = "emergency_contact"
CRITICAL_ALLERGIES = "critical_allergies"
CURRENT_MEDICATIONS = "current_medications"
RECENT_HEALTH_RECORDS = "recent_health_records"
ALL_HEALTH_RECORDS = "all_health_records"
CHRONIC_CONDITIONS = "chronic_conditions"

_EMERGENCY_FIELDS = frozenset({
    PATIENT_INFO,
    EMERGENCY_CONTACT,
    CRITICAL_ALLERGIES,
    CURRENT_MEDICATIONS,
})
_BASIC_FIELDS = _EMERGENCY_FIELDS | {RECENT_HEALTH_RECORDS}
_FULL_FIELDS = _BASIC_FIELDS | {ALL_HEALTH_RECORDS, CHRONIC_CONDITIONS}

_DISCLOSURE: Dict[AccessLevel, FrozenSet[str]] = {
    AccessLevel.EMERGENCY: _EMERGENCY_FIELDS,
    AccessLevel.BASIC: _BASIC_FIELDS,
    AccessLevel.FULL: _FULL_FIELDS,
}


def is_valid_level(value: Any) -> bool:
    """Case-insensitive membership check against the known tiers."""
    if isinstance(value, AccessLevel):
        return True
    if not isinstance(value, str):
        return False
    return value.strip().lower() in {level.value for level in AccessLevel}


def normalize_level(value: Any) -> AccessLevel:
    """
    Convert a client-supplied level string into an AccessLevel.

    Raises:
        InvalidAccessLevel: If the value is not a known tier
    """
    if not is_valid_level(value):
        raise InvalidAccessLevel(details={"access_level": str(value)[:32]})
    if isinstance(value, AccessLevel):
        return value
    return AccessLevel(value.strip().lower())


def disclosure_fields(level: Any) -> FrozenSet[str]:
    """Return the data categories disclosed at the given tier."""
    return _DISCLOSURE[normalize_level(level)]
