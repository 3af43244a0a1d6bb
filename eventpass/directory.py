"""Collaborators the ledger consumes: users, events, notifications.

They hold no invariants of their own; the ledger only sees the protocols.
"""
import logging
import uuid
from typing import TYPE_CHECKING, Any, Optional, Protocol, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from . import models
from .db import storage_guard
from .domain import EventStatus, EventSummary, Role, UserSummary
from .errors import AuthenticationFailed, EventNotFound, NotificationNotFound, ValidationError
from .security import Credential, hash_password, verify_password

if TYPE_CHECKING:
    from .ledger import RegistrationLedger

logger = logging.getLogger(__name__)

EVENT_FIELDS = ("title", "date", "location", "description", "status", "banner_url", "capacity")
NULLABLE_EVENT_FIELDS = ("banner_url", "capacity")


class UserDirectory(Protocol):
    def find_user(self, user_id: str) -> Optional[UserSummary]:
        raise NotImplementedError

    def authenticate(self, username: str, password: str) -> UserSummary:
        raise NotImplementedError


class EventCatalog(Protocol):
    def get_event(self, event_id: str) -> Optional[EventSummary]:
        raise NotImplementedError

    def delete_cascade(self, event_id: str, ledger: "RegistrationLedger") -> int:
        raise NotImplementedError


class NotificationSink(Protocol):
    def notify(self, user_id: str, title: str, message: str) -> None:
        raise NotImplementedError


class DirectoryGateway:
    """Resolves the identities a credential refers to."""

    def __init__(self, users: UserDirectory, events: EventCatalog):
        self._users = users
        self._events = events

    def resolve(self, credential: Credential) -> Optional[tuple[UserSummary, EventSummary]]:
        user = self._users.find_user(credential.user_id)
        if user is None:
            return None
        event = self._events.get_event(credential.event_id)
        if event is None:
            return None
        return user, event


def _user_summary(row: models.User) -> UserSummary:
    return UserSummary(
        id=row.id,
        username=row.username,
        name=row.name,
        email=row.email,
        role=Role(row.role),
        mobile=row.mobile or "",
        department=row.department or "",
    )


def _event_summary(row: models.Event) -> EventSummary:
    return EventSummary(
        id=row.id,
        title=row.title,
        capacity=row.capacity,
        status=EventStatus(row.status),
        date=row.date or "",
        location=row.location or "",
        description=row.description or "",
        banner_url=row.banner_url,
    )


class SqlUserDirectory:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def find_user(self, user_id: str) -> Optional[UserSummary]:
        with storage_guard(), self._session_factory() as db:
            row = db.get(models.User, user_id)
            return _user_summary(row) if row else None

    def authenticate(self, username: str, password: str) -> UserSummary:
        with storage_guard(), self._session_factory() as db:
            row = db.execute(select(models.User).where(models.User.username == username)).scalar_one_or_none()
        if row is None or not verify_password(row.password_hash, password):
            raise AuthenticationFailed("Invalid credentials")
        return _user_summary(row)

    def create_user(
        self,
        *,
        username: str,
        password: str,
        name: str,
        email: str,
        mobile: str = "",
        department: str = "",
        role: Role = Role.USER,
    ) -> UserSummary:
        row = models.User(
            id=uuid.uuid4().hex,
            username=username,
            password_hash=hash_password(password),
            name=name,
            email=email,
            mobile=mobile,
            department=department,
            role=role.value,
        )
        with storage_guard(), self._session_factory() as db:
            taken = db.execute(
                select(models.User.id).where(or_(models.User.username == username, models.User.email == email))
            ).first()
            if taken:
                raise ValidationError("Username or email already exists")
            db.add(row)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise ValidationError("Username or email already exists") from e
        logger.info("user created id=%s username=%s role=%s", row.id, username, role.value)
        return _user_summary(row)

    def ensure_admin(self, username: str, password: str) -> UserSummary:
        with storage_guard(), self._session_factory() as db:
            row = db.execute(select(models.User).where(models.User.username == username)).scalar_one_or_none()
            if row is not None:
                return _user_summary(row)
        return self.create_user(
            username=username,
            password=password,
            name="Administrator",
            email=f"{username}@localhost",
            role=Role.ADMIN,
        )

    def list_users(self) -> Sequence[UserSummary]:
        with storage_guard(), self._session_factory() as db:
            rows = db.execute(select(models.User).order_by(models.User.created_at, models.User.id)).scalars().all()
            return [_user_summary(r) for r in rows]


class SqlEventCatalog:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def get_event(self, event_id: str) -> Optional[EventSummary]:
        with storage_guard(), self._session_factory() as db:
            row = db.get(models.Event, event_id)
            return _event_summary(row) if row else None

    def list_events(self) -> Sequence[EventSummary]:
        with storage_guard(), self._session_factory() as db:
            rows = db.execute(select(models.Event).order_by(models.Event.date, models.Event.id)).scalars().all()
            return [_event_summary(r) for r in rows]

    def create_event(
        self,
        *,
        title: str,
        date: str = "",
        location: str = "",
        description: str = "",
        status: EventStatus = EventStatus.UPCOMING,
        banner_url: Optional[str] = None,
        capacity: Optional[int] = None,
        created_by: Optional[str] = None,
        event_id: Optional[str] = None,
    ) -> EventSummary:
        row = models.Event(
            id=event_id or f"evt_{uuid.uuid4().hex[:12]}",
            title=title,
            date=date,
            location=location,
            description=description,
            status=status.value,
            banner_url=banner_url,
            capacity=capacity,
            registered_count=0,
            created_by=created_by,
        )
        with storage_guard(), self._session_factory.begin() as db:
            db.add(row)
        logger.info("event created id=%s capacity=%s", row.id, capacity)
        return _event_summary(row)

    def update_event(self, event_id: str, changes: dict[str, Any]) -> EventSummary:
        values = {
            k: v for k, v in changes.items() if k in EVENT_FIELDS and (v is not None or k in NULLABLE_EVENT_FIELDS)
        }
        if "status" in values:
            values["status"] = EventStatus(values["status"]).value
        with storage_guard(), self._session_factory.begin() as db:
            if values:
                result = db.execute(
                    update(models.Event)
                    .where(models.Event.id == event_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise EventNotFound()
            row = db.get(models.Event, event_id)
            if row is None:
                raise EventNotFound()
            return _event_summary(row)

    def delete_cascade(self, event_id: str, ledger: "RegistrationLedger") -> int:
        """Delete the event and every registration that references it.

        Both go in one transaction owned by the registration store: a failure
        leaves the event and its registrations in place for another attempt,
        and a registration racing with the delete fails its seat claim.
        """
        if self.get_event(event_id) is None:
            raise EventNotFound()
        removed = ledger.delete_all_for_event(event_id, drop_event=True)
        logger.info("event deleted id=%s registrations_removed=%s", event_id, removed)
        return removed


class SqlNotificationSink:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def notify(self, user_id: str, title: str, message: str) -> None:
        with storage_guard(), self._session_factory.begin() as db:
            db.add(models.Notification(user_id=user_id, title=title, message=message, read=False))

    def list_for_user(self, user_id: str) -> list[dict]:
        with storage_guard(), self._session_factory() as db:
            rows = db.execute(
                select(models.Notification)
                .where(models.Notification.user_id == user_id)
                .order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
            ).scalars().all()
            return [
                {
                    "id": n.id,
                    "title": n.title,
                    "message": n.message,
                    "timestamp": str(n.created_at),
                    "read": n.read,
                }
                for n in rows
            ]

    def mark_read(self, notification_id: int, user_id: str) -> None:
        with storage_guard(), self._session_factory.begin() as db:
            result = db.execute(
                update(models.Notification)
                .where(models.Notification.id == notification_id, models.Notification.user_id == user_id)
                .values(read=True)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotificationNotFound()
