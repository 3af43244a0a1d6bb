import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from .audit import recent_decisions
from .container import Services
from .deps import get_services, require_admin
from .domain import EventStatus, UserSummary

router = APIRouter(prefix="/admin", tags=["admin"])

logger = logging.getLogger(__name__)


# -------------------------
# Events
# -------------------------
class CreateEventReq(BaseModel):
    title: str = Field(min_length=1)
    date: str = ""
    location: str = ""
    description: str = ""
    status: EventStatus = EventStatus.UPCOMING
    banner_url: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=1)


class UpdateEventReq(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    date: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    status: Optional[EventStatus] = None
    banner_url: Optional[str] = None
    capacity: Optional[int] = Field(default=None, ge=1)


@router.post("/events", status_code=status.HTTP_201_CREATED)
async def create_event(
    req: CreateEventReq,
    admin: UserSummary = Depends(require_admin),
    services: Services = Depends(get_services),
):
    event = await run_in_threadpool(
        services.events.create_event,
        title=req.title,
        date=req.date,
        location=req.location,
        description=req.description,
        status=req.status,
        banner_url=req.banner_url,
        capacity=req.capacity,
        created_by=admin.id,
    )
    return event.to_dict()


@router.put("/events/{event_id}")
async def update_event(
    event_id: str,
    req: UpdateEventReq,
    admin: UserSummary = Depends(require_admin),
    services: Services = Depends(get_services),
):
    # Only the fields the client sent; an explicit null capacity makes the event unbounded.
    changes = req.model_dump(exclude_unset=True)
    event = await run_in_threadpool(services.events.update_event, event_id, changes)
    logger.info("event updated id=%s by=%s fields=%s", event_id, admin.id, sorted(changes))
    return event.to_dict()


@router.delete("/events/{event_id}")
async def delete_event(
    event_id: str,
    admin: UserSummary = Depends(require_admin),
    services: Services = Depends(get_services),
):
    removed = await run_in_threadpool(services.events.delete_cascade, event_id, services.ledger)
    return {"message": "Event deleted", "registrations_removed": removed}


# -------------------------
# Registrations
# -------------------------
@router.get("/registrations")
async def list_registrations(
    limit: Optional[int] = Query(default=None, ge=1, le=5000),
    offset: int = Query(default=0, ge=0),
    admin: UserSummary = Depends(require_admin),
    services: Services = Depends(get_services),
):
    rows = await run_in_threadpool(services.ledger.list_all, limit=limit, offset=offset)
    return [r.to_dict() for r in rows]


# -------------------------
# Users
# -------------------------
@router.get("/users")
async def list_users(admin: UserSummary = Depends(require_admin), services: Services = Depends(get_services)):
    users = await run_in_threadpool(services.users.list_users)
    return [u.to_dict() for u in users]


# -------------------------
# Logs
# -------------------------
@router.get("/audit")
async def get_audit(
    limit: int = Query(default=80, ge=1, le=1000),
    event_id: Optional[str] = None,
    admin: UserSummary = Depends(require_admin),
    services: Services = Depends(get_services),
):
    return await run_in_threadpool(recent_decisions, services.session_factory, limit=limit, event_id=event_id)
