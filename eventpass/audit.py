import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import storage_guard
from .models import AuditLog, Event

logger = logging.getLogger(__name__)


def record_decision(
    session_factory: sessionmaker,
    *,
    decision_id: str,
    ip: str,
    ua: str,
    event_id: Optional[str],
    registration_id: Optional[str],
    granted: bool,
    reason: str,
) -> None:
    """Append one scan decision to the audit trail.

    The decision has already been taken and persisted; a failed audit write
    is logged rather than turned into a failed scan.
    """
    try:
        with session_factory.begin() as db:
            db.add(
                AuditLog(
                    decision_id=decision_id,
                    ip=ip,
                    user_agent=ua,
                    event_id=event_id,
                    registration_id=registration_id,
                    granted=granted,
                    reason_code=reason,
                )
            )
    except SQLAlchemyError:
        logger.error("audit write failed decision_id=%s reason=%s", decision_id, reason, exc_info=True)


def recent_decisions(session_factory: sessionmaker, *, limit: int = 80, event_id: Optional[str] = None) -> list[dict]:
    with storage_guard(), session_factory() as db:
        q = db.query(AuditLog, Event).join(Event, Event.id == AuditLog.event_id, isouter=True)
        if event_id:
            q = q.filter(AuditLog.event_id == event_id)
        rows = q.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()

        return [
            {
                "created_at": str(log.created_at),
                "decision_id": log.decision_id,
                "registration_id": log.registration_id,
                "event_id": log.event_id,
                "event_title": ev.title if ev else None,
                "granted": log.granted,
                "reason_code": log.reason_code,
            }
            for log, ev in rows
        ]
