"""FastAPI dependencies for identifying the patient behind owner-scoped requests."""
import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth import get_owner_id_from_token
from .errors import Unauthenticated

logger = logging.getLogger(__name__)

# Security scheme for Swagger UI
security = HTTPBearer(auto_error=False)


async def get_current_owner_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Resolve the authenticated patient id from the bearer token.

    Usage:
        @router.get("/active")
        async def list_active(owner_id: str = Depends(get_current_owner_id)):
            ...

    Raises:
        Unauthenticated: If the token is missing, invalid, or has no subject
    """
    if not credentials:
        raise Unauthenticated()

    owner_id = get_owner_id_from_token(credentials.credentials)
    if not owner_id:
        logger.info("Rejected bearer token without a valid subject")
        raise Unauthenticated("Invalid authentication credentials")
    return owner_id


def get_client_ip(request: Request) -> str:
    """Client IP from X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"
