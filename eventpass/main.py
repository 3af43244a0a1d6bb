import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional, Union

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from redis.asyncio import Redis

from . import admin, auth
from .audit import record_decision
from .config import Settings, get_settings
from .container import Services, build_services
from .deps import get_current_user, get_services, require_admin
from .domain import ScanReason, UserSummary
from .errors import EventNotFound, LedgerError, NotAuthorized, RegistrationNotFound, StorageFault
from .idempotency import get_cached_response, set_cached_response
from .logs import setup_logging
from .qr import credential_png
from .rate_limit import token_bucket

logger = logging.getLogger(__name__)

router = APIRouter()

MetadataValue = Union[str, int, float, bool, None]


# -------------------------
# Health / events
# -------------------------
@router.get("/health", tags=["health"])
def health():
    return {"status": "ok"}


@router.get("/events", tags=["events"])
async def list_events(services: Services = Depends(get_services)):
    events = await run_in_threadpool(services.events.list_events)
    return [e.to_dict() for e in events]


@router.get("/events/{event_id}", tags=["events"])
async def get_event(event_id: str, services: Services = Depends(get_services)):
    event = await run_in_threadpool(services.events.get_event, event_id)
    if event is None:
        raise EventNotFound("Event not found")
    registered = await run_in_threadpool(services.ledger.count_for_event, event_id)
    return {**event.to_dict(), "registered": registered}


# -------------------------
# Registrations
# -------------------------
class RegisterReq(BaseModel):
    event_id: str = Field(min_length=1)
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)


@router.post("/registrations", status_code=status.HTTP_201_CREATED, tags=["registrations"])
async def register_for_event(
    req: RegisterReq,
    request: Request,
    user: UserSummary = Depends(get_current_user),
    services: Services = Depends(get_services),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    redis = request.app.state.redis
    # A key reused for another event is a new request, not a replay.
    scope = f"register:{user.id}:{req.event_id}"

    cached = await get_cached_response(redis, scope, idempotency_key)
    if cached:
        return JSONResponse(status_code=cached[0], content=cached[1])

    registration = await run_in_threadpool(services.ledger.register, user.id, req.event_id, req.metadata)
    body = registration.to_dict()
    await set_cached_response(
        redis, scope, idempotency_key, status.HTTP_201_CREATED, body, services.settings.IDEMPOTENCY_TTL_SECONDS
    )
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body)


@router.get("/registrations", tags=["registrations"])
async def list_my_registrations(
    user: UserSummary = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    rows = await run_in_threadpool(services.ledger.list_for_user, user.id)
    return [r.to_dict() for r in rows]


@router.delete("/registrations/{registration_id}", tags=["registrations"])
async def cancel_registration(
    registration_id: str,
    user: UserSummary = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await run_in_threadpool(services.ledger.cancel, registration_id, user)
    return {"message": "Registration cancelled"}


@router.get("/registrations/{registration_id}/qr", tags=["registrations"])
async def registration_qr(
    registration_id: str,
    user: UserSummary = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    registration = await run_in_threadpool(services.ledger.get, registration_id)
    if registration is None:
        raise RegistrationNotFound("Registration not found")
    if registration.user_id != user.id and not user.is_admin:
        raise NotAuthorized("Not your registration")
    png = await run_in_threadpool(credential_png, registration.credential)
    return Response(content=png, media_type="image/png")


# -------------------------
# Scan (entry gate)
# -------------------------
class ScanReq(BaseModel):
    token: str
    # Set by scanners bound to one event; tokens for any other event read as NOT_FOUND.
    event_id: Optional[str] = None


@router.post("/scan", tags=["scan"])
async def scan_credential(
    req: ScanReq,
    request: Request,
    operator: UserSummary = Depends(require_admin),
    services: Services = Depends(get_services),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
):
    decision_id = str(uuid.uuid4())
    ip = request.client.host if request.client else "unknown"
    ua = request.headers.get("user-agent", "")
    redis = request.app.state.redis
    settings = services.settings
    scope = f"scan:{operator.id}"

    # Idempotency
    cached = await get_cached_response(redis, scope, idempotency_key)
    if cached:
        return JSONResponse(status_code=cached[0], content=cached[1])

    # Rate limit per client IP
    per_minute = settings.SCAN_RATE_LIMIT_PER_MINUTE
    allowed = await token_bucket(redis, key=f"scan:{ip}", capacity=per_minute, refill_per_sec=per_minute / 60)
    if not allowed:
        body = {"granted": False, "reason": ScanReason.RATE_LIMITED.value, "decision_id": decision_id}
        await _audit(services, decision_id, ip, ua, req.event_id, None, False, ScanReason.RATE_LIMITED.value)
        return JSONResponse(status_code=status.HTTP_429_TOO_MANY_REQUESTS, content=body)

    result = await run_in_threadpool(services.desk.scan, req.token, event_id=req.event_id)

    code = status.HTTP_400_BAD_REQUEST if result.reason == ScanReason.INVALID_FORMAT else status.HTTP_200_OK
    body = {**result.to_dict(), "decision_id": decision_id}
    await set_cached_response(redis, scope, idempotency_key, code, body, settings.IDEMPOTENCY_TTL_SECONDS)

    registration = result.registration
    await _audit(
        services,
        decision_id,
        ip,
        ua,
        registration.event_id if registration else req.event_id,
        registration.id if registration else None,
        result.granted,
        result.reason.value,
    )
    return JSONResponse(status_code=code, content=body)


async def _audit(services: Services, decision_id, ip, ua, event_id, registration_id, granted, reason):
    await run_in_threadpool(
        record_decision,
        services.session_factory,
        decision_id=decision_id,
        ip=ip,
        ua=ua,
        event_id=event_id,
        registration_id=registration_id,
        granted=granted,
        reason=reason,
    )


# -------------------------
# Notifications
# -------------------------
@router.get("/notifications", tags=["notifications"])
async def list_notifications(
    user: UserSummary = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await run_in_threadpool(services.notifications.list_for_user, user.id)


@router.patch("/notifications/{notification_id}/read", tags=["notifications"])
async def mark_notification_read(
    notification_id: int,
    user: UserSummary = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    await run_in_threadpool(services.notifications.mark_read, notification_id, user.id)
    return {"message": "Notification marked as read"}


# -------------------------
# App factory
# -------------------------
def create_app(settings: Optional[Settings] = None, *, services: Optional[Services] = None, redis=None) -> FastAPI:
    settings = settings or get_settings()
    services = services or build_services(settings)
    if redis is None and settings.REDIS_URL:
        redis = Redis.from_url(settings.REDIS_URL, decode_responses=False)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)
        logger.info("starting %s", settings.PROJECT_NAME)
        services.create_schema()
        if settings.BOOTSTRAP_ADMIN_USERNAME and settings.BOOTSTRAP_ADMIN_PASSWORD:
            services.users.ensure_admin(settings.BOOTSTRAP_ADMIN_USERNAME, settings.BOOTSTRAP_ADMIN_PASSWORD)
        yield
        if redis is not None:
            await redis.aclose()
        services.engine.dispose()
        logger.info("stopped %s", settings.PROJECT_NAME)

    app = FastAPI(title=settings.PROJECT_NAME, version=settings.VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.services = services
    app.state.redis = redis

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        if isinstance(exc, StorageFault):
            logger.error("storage fault on %s %s: %s", request.method, request.url.path, exc.detail)
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"reason": exc.reason, "detail": exc.detail},
            headers=headers,
        )

    app.include_router(router)
    app.include_router(auth.router)
    app.include_router(admin.router)
    return app


if __name__ == "__main__":
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
