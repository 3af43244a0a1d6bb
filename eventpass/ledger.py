import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Sequence, TypeVar

from .directory import EventCatalog, NotificationSink
from .domain import Registration, RegistrationStatus, UserSummary
from .errors import (
    AlreadyAttended,
    AlreadyRegistered,
    EventNotFound,
    NotAuthorized,
    RegistrationNotFound,
    StorageFault,
)
from .security import Credential, mint_credential
from .store import RegistrationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RegistrationLedger:
    """Creates, cancels and transitions registrations.

    This is the only writer of registration rows. Uniqueness and capacity
    are enforced by the store's atomic ``create``; the ledger adds the
    event lookup, credential minting, authorization and notifications.
    """

    def __init__(
        self,
        store: RegistrationStore,
        events: EventCatalog,
        notifications: Optional[NotificationSink] = None,
        *,
        credential_secret: str,
        storage_retries: int = 2,
        clock: Callable[[], datetime] | None = None,
    ):
        self._store = store
        self._events = events
        self._notifications = notifications
        self._secret = credential_secret
        self._retries = max(0, int(storage_retries))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # --- registration ---

    def register(self, user_id: str, event_id: str, metadata: Optional[dict[str, Any]] = None) -> Registration:
        event = self._with_retries("get_event", lambda: self._events.get_event(event_id))
        if event is None:
            raise EventNotFound("Event not found")

        registration_id = uuid.uuid4().hex
        registration = Registration(
            id=registration_id,
            user_id=user_id,
            event_id=event_id,
            status=RegistrationStatus.PENDING,
            registered_at=self._clock(),
            credential=mint_credential(user_id, event_id, registration_id, self._secret),
            metadata=dict(metadata or {}),
        )

        attempt = 0
        while True:
            try:
                created = self._store.create(registration, capacity=event.capacity)
                break
            except AlreadyRegistered:
                # A retried create whose first attempt committed finds its own row.
                if attempt:
                    existing = self._store.get(registration_id)
                    if existing is not None:
                        created = existing
                        break
                raise
            except StorageFault:
                if attempt >= self._retries:
                    raise
                attempt += 1
                logger.warning("register retry %s/%s user=%s event=%s", attempt, self._retries, user_id, event_id)

        logger.info("registered id=%s user=%s event=%s", created.id, user_id, event_id)
        self._notify(user_id, "Registration confirmed", f"You are registered for {event.title}.")
        return created

    def cancel(self, registration_id: str, requester: UserSummary) -> None:
        registration = self._store.get(registration_id)
        if registration is None:
            raise RegistrationNotFound("Registration not found")
        if registration.user_id != requester.id and not requester.is_admin:
            raise NotAuthorized("Only the owner or an admin can cancel this registration")
        if registration.attended:
            raise AlreadyAttended("Attendance already recorded; registration cannot be cancelled")

        deleted = self._with_retries("cancel", lambda: self._store.delete(registration_id, pending_only=True))
        if not deleted:
            current = self._store.get(registration_id)
            if current is not None and current.attended:
                raise AlreadyAttended("Attendance already recorded; registration cannot be cancelled")
            # Already gone: a concurrent or retried cancel won, which is the same outcome.

        logger.info("cancelled id=%s by=%s", registration_id, requester.id)
        try:
            event = self._events.get_event(registration.event_id)
        except StorageFault:
            # The cancel is committed; only the notice loses its event title.
            logger.warning("event lookup failed for cancel notice id=%s", registration_id, exc_info=True)
            event = None
        title = event.title if event else registration.event_id
        self._notify(registration.user_id, "Registration cancelled", f"Your registration for {title} was cancelled.")

    # --- reads ---

    def get(self, registration_id: str) -> Optional[Registration]:
        return self._store.get(registration_id)

    def find_for_credential(self, credential: Credential) -> Optional[Registration]:
        """Look up the registration a credential was minted for.

        The lookup goes by registration id, so a credential from a cancelled
        registration never matches a newer one for the same user and event.
        """
        registration = self._store.get(credential.registration_id)
        if registration is None:
            return None
        if registration.user_id != credential.user_id or registration.event_id != credential.event_id:
            return None
        return registration

    def list_for_user(self, user_id: str) -> Sequence[Registration]:
        return self._store.list_for_user(user_id)

    def list_all(self, *, limit: Optional[int] = None, offset: int = 0) -> Sequence[Registration]:
        return self._store.list_all(limit=limit, offset=offset)

    def count_for_event(self, event_id: str) -> int:
        return self._store.count_for_event(event_id)

    # --- transitions ---

    def mark_attended(self, registration_id: str, scanned_at: Optional[datetime] = None) -> Optional[Registration]:
        """Conditional pending -> attended write. None means it was not pending."""
        scanned_at = scanned_at or self._clock()
        return self._with_retries("mark_attended", lambda: self._store.mark_attended(registration_id, scanned_at))

    def delete_all_for_event(self, event_id: str, *, drop_event: bool = False) -> int:
        """Remove the event's registrations, and with `drop_event` the event row in the same unit."""
        return self._with_retries(
            "delete_all_for_event", lambda: self._store.delete_for_event(event_id, drop_event=drop_event)
        )

    # --- helpers ---

    def _with_retries(self, op: str, call: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return call()
            except StorageFault:
                if attempt >= self._retries:
                    raise
                attempt += 1
                logger.warning("%s retry %s/%s", op, attempt, self._retries)

    def _notify(self, user_id: str, title: str, message: str) -> None:
        if self._notifications is None:
            return
        try:
            self._notifications.notify(user_id, title, message)
        except Exception:
            # Best effort: the registration stands whatever happens here.
            logger.warning("notification failed user=%s title=%r", user_id, title, exc_info=True)
