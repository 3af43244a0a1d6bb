"""Storage port for registrations and its two implementations.

Every implementation must give the ledger these atomic operations:

- ``create``: uniqueness-checked insert plus capacity-checked seat claim,
  as one unit;
- ``mark_attended``: conditional ``pending -> attended`` write;
- ``delete``: conditional removal that frees the seat;
- ``delete_for_event(drop_event=True)``: the event and all of its
  registrations removed together.

The SQL store gets them from the database (unique index, conditional
UPDATE/DELETE inside a transaction); the in-memory store from a lock.
"""
import threading
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from . import models
from .db import storage_guard
from .domain import Registration, RegistrationStatus
from .errors import AlreadyRegistered, CapacityExceeded, EventNotFound


class RegistrationStore(Protocol):
    def create(self, registration: Registration, *, capacity: Optional[int]) -> Registration:
        """Persist a new registration.

        Raises AlreadyRegistered when (user_id, event_id) exists and
        CapacityExceeded when the event already holds `capacity` registrations.
        `capacity` is the caller's snapshot; a store that keeps event rows
        checks the live value instead.
        """
        raise NotImplementedError

    def get(self, registration_id: str) -> Optional[Registration]:
        raise NotImplementedError

    def find_by_user_and_event(self, user_id: str, event_id: str) -> Optional[Registration]:
        raise NotImplementedError

    def mark_attended(self, registration_id: str, scanned_at: datetime) -> Optional[Registration]:
        """Return the updated row, or None when the row was not pending."""
        raise NotImplementedError

    def delete(self, registration_id: str, *, pending_only: bool = True) -> bool:
        raise NotImplementedError

    def delete_for_event(self, event_id: str, *, drop_event: bool = False) -> int:
        """Remove every registration for the event; return how many went.

        With `drop_event`, a store that keeps event rows removes the event in
        the same unit, so no registration can outlive it.
        """
        raise NotImplementedError

    def list_for_user(self, user_id: str) -> Sequence[Registration]:
        raise NotImplementedError

    def list_all(self, *, limit: Optional[int] = None, offset: int = 0) -> Sequence[Registration]:
        raise NotImplementedError

    def count_for_event(self, event_id: str) -> int:
        raise NotImplementedError


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_domain(row: models.Registration) -> Registration:
    return Registration(
        id=row.id,
        user_id=row.user_id,
        event_id=row.event_id,
        status=RegistrationStatus(row.status),
        registered_at=_utc(row.registered_at),
        scanned_at=_utc(row.scanned_at),
        credential=row.credential,
        metadata=dict(row.details or {}),
    )


class SqlRegistrationStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, registration: Registration, *, capacity: Optional[int]) -> Registration:
        with storage_guard():
            try:
                with self._session_factory.begin() as db:
                    db.add(
                        models.Registration(
                            id=registration.id,
                            user_id=registration.user_id,
                            event_id=registration.event_id,
                            status=registration.status.value,
                            registered_at=registration.registered_at,
                            scanned_at=registration.scanned_at,
                            credential=registration.credential,
                            details=dict(registration.metadata) or None,
                        )
                    )
                    db.flush()

                    # Seat claim against the live capacity, serialized by the row lock.
                    stmt = update(models.Event).where(
                        models.Event.id == registration.event_id,
                        or_(models.Event.capacity.is_(None), models.Event.registered_count < models.Event.capacity),
                    )
                    result = db.execute(
                        stmt.values(registered_count=models.Event.registered_count + 1).execution_options(
                            synchronize_session=False
                        )
                    )
                    if result.rowcount != 1:
                        exists = db.scalar(select(models.Event.id).where(models.Event.id == registration.event_id))
                        if exists is None:
                            raise EventNotFound()
                        raise CapacityExceeded("Event is at full capacity")
            except IntegrityError as e:
                raise AlreadyRegistered("Already registered for this event") from e
        return registration

    def get(self, registration_id: str) -> Optional[Registration]:
        with storage_guard(), self._session_factory() as db:
            row = db.get(models.Registration, registration_id)
            return _to_domain(row) if row else None

    def find_by_user_and_event(self, user_id: str, event_id: str) -> Optional[Registration]:
        with storage_guard(), self._session_factory() as db:
            row = db.execute(
                select(models.Registration).where(
                    models.Registration.user_id == user_id,
                    models.Registration.event_id == event_id,
                )
            ).scalar_one_or_none()
            return _to_domain(row) if row else None

    def mark_attended(self, registration_id: str, scanned_at: datetime) -> Optional[Registration]:
        with storage_guard(), self._session_factory.begin() as db:
            result = db.execute(
                update(models.Registration)
                .where(
                    models.Registration.id == registration_id,
                    models.Registration.status == RegistrationStatus.PENDING.value,
                )
                .values(status=RegistrationStatus.ATTENDED.value, scanned_at=scanned_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            row = db.get(models.Registration, registration_id)
            return _to_domain(row) if row else None

    def delete(self, registration_id: str, *, pending_only: bool = True) -> bool:
        with storage_guard(), self._session_factory.begin() as db:
            event_id = db.scalar(
                select(models.Registration.event_id).where(models.Registration.id == registration_id)
            )
            if event_id is None:
                return False

            stmt = delete(models.Registration).where(models.Registration.id == registration_id)
            if pending_only:
                stmt = stmt.where(models.Registration.status == RegistrationStatus.PENDING.value)
            result = db.execute(stmt.execution_options(synchronize_session=False))
            if result.rowcount != 1:
                return False

            db.execute(
                update(models.Event)
                .where(models.Event.id == event_id, models.Event.registered_count > 0)
                .values(registered_count=models.Event.registered_count - 1)
                .execution_options(synchronize_session=False)
            )
            return True

    def delete_for_event(self, event_id: str, *, drop_event: bool = False) -> int:
        with storage_guard(), self._session_factory.begin() as db:
            if drop_event:
                # Event row first: its lock makes racing seat claims wait, then find nothing.
                db.execute(
                    delete(models.Event).where(models.Event.id == event_id).execution_options(synchronize_session=False)
                )
            result = db.execute(
                delete(models.Registration)
                .where(models.Registration.event_id == event_id)
                .execution_options(synchronize_session=False)
            )
            removed = result.rowcount or 0
            if removed and not drop_event:
                db.execute(
                    update(models.Event)
                    .where(models.Event.id == event_id)
                    .values(registered_count=models.Event.registered_count - removed)
                    .execution_options(synchronize_session=False)
                )
            return removed

    def list_for_user(self, user_id: str) -> Sequence[Registration]:
        with storage_guard(), self._session_factory() as db:
            rows = db.execute(
                select(models.Registration)
                .where(models.Registration.user_id == user_id)
                .order_by(models.Registration.registered_at, models.Registration.id)
            ).scalars().all()
            return [_to_domain(r) for r in rows]

    def list_all(self, *, limit: Optional[int] = None, offset: int = 0) -> Sequence[Registration]:
        with storage_guard(), self._session_factory() as db:
            stmt = (
                select(models.Registration)
                .order_by(models.Registration.registered_at, models.Registration.id)
                .offset(offset)
            )
            if limit is not None:
                stmt = stmt.limit(limit)
            return [_to_domain(r) for r in db.execute(stmt).scalars().all()]

    def count_for_event(self, event_id: str) -> int:
        with storage_guard(), self._session_factory() as db:
            return db.scalar(
                select(func.count()).select_from(models.Registration).where(models.Registration.event_id == event_id)
            ) or 0


class InMemoryRegistrationStore:
    """Process-local store with the same atomicity contract as the SQL one."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[str, Registration] = {}
        self._by_pair: dict[tuple[str, str], str] = {}

    def create(self, registration: Registration, *, capacity: Optional[int]) -> Registration:
        key = (registration.user_id, registration.event_id)
        with self._lock:
            if key in self._by_pair or registration.id in self._rows:
                raise AlreadyRegistered("Already registered for this event")
            if capacity is not None and self._count(registration.event_id) >= capacity:
                raise CapacityExceeded("Event is at full capacity")
            self._rows[registration.id] = registration
            self._by_pair[key] = registration.id
        return registration

    def get(self, registration_id: str) -> Optional[Registration]:
        with self._lock:
            return self._rows.get(registration_id)

    def find_by_user_and_event(self, user_id: str, event_id: str) -> Optional[Registration]:
        with self._lock:
            rid = self._by_pair.get((user_id, event_id))
            return self._rows.get(rid) if rid else None

    def mark_attended(self, registration_id: str, scanned_at: datetime) -> Optional[Registration]:
        with self._lock:
            current = self._rows.get(registration_id)
            if current is None or current.status != RegistrationStatus.PENDING:
                return None
            updated = Registration(
                id=current.id,
                user_id=current.user_id,
                event_id=current.event_id,
                status=RegistrationStatus.ATTENDED,
                registered_at=current.registered_at,
                scanned_at=scanned_at,
                credential=current.credential,
                metadata=current.metadata,
            )
            self._rows[registration_id] = updated
            return updated

    def delete(self, registration_id: str, *, pending_only: bool = True) -> bool:
        with self._lock:
            current = self._rows.get(registration_id)
            if current is None:
                return False
            if pending_only and current.status != RegistrationStatus.PENDING:
                return False
            del self._rows[registration_id]
            self._by_pair.pop((current.user_id, current.event_id), None)
            return True

    def delete_for_event(self, event_id: str, *, drop_event: bool = False) -> int:
        # No event rows here; the catalog drops its own entry.
        with self._lock:
            doomed = [r for r in self._rows.values() if r.event_id == event_id]
            for r in doomed:
                del self._rows[r.id]
                self._by_pair.pop((r.user_id, r.event_id), None)
            return len(doomed)

    def list_for_user(self, user_id: str) -> Sequence[Registration]:
        with self._lock:
            rows = [r for r in self._rows.values() if r.user_id == user_id]
        return sorted(rows, key=lambda r: (r.registered_at, r.id))

    def list_all(self, *, limit: Optional[int] = None, offset: int = 0) -> Sequence[Registration]:
        with self._lock:
            rows = sorted(self._rows.values(), key=lambda r: (r.registered_at, r.id))
        end = None if limit is None else offset + limit
        return rows[offset:end]

    def count_for_event(self, event_id: str) -> int:
        with self._lock:
            return self._count(event_id)

    def _count(self, event_id: str) -> int:
        return sum(1 for r in self._rows.values() if r.event_id == event_id)
