"""Core utilities for MediChain QR-based tiered access to patient health data."""

from .access_levels import AccessLevel, disclosure_fields, is_valid_level, normalize_level  # noqa: F401
from .errors import (  # noqa: F401
    MedichainError,
    InvalidAccessLevel,
    InvalidDuration,
    InvalidTokenFormat,
    GrantNotFound,
    GrantExpired,
    AccessLevelMismatch,
    Unauthenticated,
)
from .tokens import generate_token, sanitize_token  # noqa: F401
