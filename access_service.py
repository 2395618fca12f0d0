"""
QR access service for MediChain.

Patients issue time-limited QR links that disclose a tier of their health data
(emergency, basic, full). Viewers open the link without logging in.

Usage:
    uvicorn access_service:app --host 0.0.0.0 --port 8200
"""
import time
from typing import List

from fastapi import APIRouter, Depends, FastAPI, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from medichain.access_levels import normalize_level
from medichain.auth_dependencies import get_client_ip, get_current_owner_id
from medichain.config import settings
from medichain.database import close_database, close_redis, get_redis_client, get_session, init_database
from medichain.errors import MedichainError, register_error_handlers
from medichain.grant_repository import AccessGrantRepository
from medichain.grants import GrantLifecycleManager, ViewerContext
from medichain.logging_config import log_error, log_request, log_response, setup_logging, token_hint
from medichain.observability import setup_instrumentation
from medichain.projector import UNKNOWN, DataProjector
from medichain.rate_limiter import RateLimitMiddleware
from medichain.schemas import (
    ActiveGrantResponse,
    DisclosurePayload,
    GenerateGrantRequest,
    GrantResponse,
    MessageResponse,
    VerificationResponse,
)
from medichain.stores import SqlEmergencyInfoStore, SqlHealthRecordStore, SqlPatientProfileStore
from medichain.tokens import sanitize_token

# Initialize app
app = FastAPI(title="MediChain QR Access Service", version="1.0.0")
setup_instrumentation(app)
register_error_handlers(app)
logger = setup_logging(settings.service_name, settings.log_level)

router = APIRouter(prefix="/api/qraccess", tags=["QR Access"])

if settings.rate_limit_enabled:
    app.add_middleware(
        RateLimitMiddleware,
        redis_client=get_redis_client,
        requests=settings.rate_limit_requests,
        window=settings.rate_limit_window,
        strategy=settings.rate_limit_strategy,
        include_paths=[f"{router.prefix}/verify/", f"{router.prefix}/data/"],
    )


# ============================================================================
# Dependencies
# ============================================================================

def get_grant_manager(db: AsyncSession = Depends(get_session)) -> GrantLifecycleManager:
    """Request-scoped lifecycle manager bound to the current session."""
    return GrantLifecycleManager(
        repository=AccessGrantRepository(db),
        base_url=settings.frontend_base_url,
        min_duration_hours=settings.qr_min_duration_hours,
        max_duration_hours=settings.qr_max_duration_hours,
        collision_retries=settings.token_collision_retries,
    )


def get_projector(db: AsyncSession = Depends(get_session)) -> DataProjector:
    """Request-scoped projector reading from the patient data tables."""
    return DataProjector(
        profiles=SqlPatientProfileStore(db),
        emergency_info=SqlEmergencyInfoStore(db),
        records=SqlHealthRecordStore(db),
        preview_length=settings.record_preview_length,
        recent_days=settings.recent_records_days,
        recent_limit=settings.recent_records_limit,
    )


def get_viewer_context(request: Request) -> ViewerContext:
    return ViewerContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


# ============================================================================
# Startup/Shutdown Events
# ============================================================================

@app.on_event("startup")
async def startup():
    """Verify database connectivity on startup."""
    await init_database()
    logger.info("QR access service started")


@app.on_event("shutdown")
async def shutdown():
    await close_database()
    await close_redis()
    logger.info("QR access service stopped")


# ============================================================================
# Owner Endpoints (Authentication Required)
# ============================================================================

@router.post("/generate", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def generate_grant(
    grant_request: GenerateGrantRequest,
    owner_id: str = Depends(get_current_owner_id),
    manager: GrantLifecycleManager = Depends(get_grant_manager),
):
    """
    Issue a QR access grant for the current patient.

    - **accessLevel**: emergency, basic or full
    - **expirationHours**: lifetime between 5 minutes (0.083) and 24 hours
    """
    issued = await manager.issue(owner_id, grant_request.access_level, grant_request.expiration_hours)
    grant = issued.grant
    return GrantResponse(
        grant_id=grant.id,
        token=grant.token,
        share_url=issued.share_url,
        access_level=grant.access_level,
        expires_at=grant.expires_at,
        created_at=grant.issued_at,
    )


@router.get("/active", response_model=List[ActiveGrantResponse])
async def list_active_grants(
    owner_id: str = Depends(get_current_owner_id),
    manager: GrantLifecycleManager = Depends(get_grant_manager),
):
    """List the current patient's unexpired grants, newest first."""
    grants = await manager.list_active(owner_id)
    return [
        ActiveGrantResponse(
            grant_id=grant.id,
            access_level=grant.access_level,
            token=grant.token,
            share_url=manager.share_url(grant),
            created_at=grant.issued_at,
            expires_at=grant.expires_at,
            viewed_at=grant.last_viewed_at,
            is_viewed=grant.is_viewed,
            view_count=grant.view_count,
        )
        for grant in grants
    ]


@router.delete("/revoke/{grant_id}", response_model=MessageResponse)
async def revoke_grant(
    grant_id: str,
    owner_id: str = Depends(get_current_owner_id),
    manager: GrantLifecycleManager = Depends(get_grant_manager),
):
    """Revoke one of the current patient's grants."""
    await manager.revoke(grant_id, owner_id)
    return MessageResponse(message="QR token revoked successfully")


# ============================================================================
# Public Endpoints (No Authentication Required)
# ============================================================================

@router.get("/verify/{token}", response_model=VerificationResponse)
async def verify_grant(
    token: str,
    viewer: ViewerContext = Depends(get_viewer_context),
    manager: GrantLifecycleManager = Depends(get_grant_manager),
    db: AsyncSession = Depends(get_session),
):
    """Check that a QR token is valid and record the view."""
    start_time = time.time()
    log_request(logger, "verify", token=token_hint(sanitize_token(token)))
    try:
        result = await manager.verify(token, viewer)
        profile = await SqlPatientProfileStore(db).get_profile(result.owner_id)
    except MedichainError as exc:
        log_error(logger, "verify", exc, duration_ms=(time.time() - start_time) * 1000)
        raise

    log_response(logger, "verify", True, (time.time() - start_time) * 1000, access_level=result.access_level.value)
    return VerificationResponse(
        is_valid=True,
        owner_id=result.owner_id,
        access_level=result.access_level.value,
        expires_at=result.expires_at,
        owner_display_name=(profile.display_name if profile else "") or UNKNOWN,
        view_count=result.view_count,
    )


@router.get(
    "/data/{token}/{access_level}",
    response_model=DisclosurePayload,
    response_model_exclude_none=True,
)
async def get_disclosed_data(
    token: str,
    access_level: str,
    viewer: ViewerContext = Depends(get_viewer_context),
    manager: GrantLifecycleManager = Depends(get_grant_manager),
    projector: DataProjector = Depends(get_projector),
):
    """Return the health data disclosed by a verified token at its tier."""
    start_time = time.time()
    log_request(logger, "data", token=token_hint(sanitize_token(token)), access_level=access_level)
    try:
        requested = normalize_level(access_level)
        verification = await manager.verify(token, viewer)
        payload = await projector.project_verified(verification, requested)
    except MedichainError as exc:
        log_error(logger, "data", exc, duration_ms=(time.time() - start_time) * 1000)
        raise

    log_response(logger, "data", True, (time.time() - start_time) * 1000, access_level=payload.access_level)
    return payload


app.include_router(router)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "healthy", "service": settings.service_name}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8200)
