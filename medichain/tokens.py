"""Opaque bearer token minting and normalization for QR access grants."""
import base64
import re
import secrets
from typing import Optional

TOKEN_BYTES = 32  # 256 bits

_DISALLOWED = re.compile(r"[^A-Za-z0-9_-]")


def generate_token() -> str:
    """
    Generate an unguessable URL-safe token.

    Returns:
        43-character unpadded URL-safe base64 encoding of 32 random bytes
    """
    raw = secrets.token_bytes(TOKEN_BYTES)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def sanitize_token(raw_token: Optional[str]) -> str:
    """
    Normalize an externally supplied token before lookup or logging.

    Whitespace is trimmed first, then everything outside ``[A-Za-z0-9_-]``
    is dropped.

    Args:
        raw_token: Token as received from the client

    Returns:
        Cleaned token, or an empty string if nothing survives
    """
    if not raw_token or not isinstance(raw_token, str):
        return ""
    return _DISALLOWED.sub("", raw_token.strip())
