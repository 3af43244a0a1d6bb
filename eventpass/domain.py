from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class RegistrationStatus(str, Enum):
    PENDING = "pending"
    ATTENDED = "attended"


class EventStatus(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    COMPLETED = "completed"


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class ScanReason(str, Enum):
    OK = "OK"
    INVALID_FORMAT = "INVALID_FORMAT"
    NOT_FOUND = "NOT_FOUND"
    ALREADY_SCANNED = "ALREADY_SCANNED"
    RATE_LIMITED = "RATE_LIMITED"


@dataclass(frozen=True)
class Registration:
    id: str
    user_id: str
    event_id: str
    status: RegistrationStatus
    registered_at: datetime
    credential: str
    scanned_at: Optional[datetime] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def attended(self) -> bool:
        return self.status == RegistrationStatus.ATTENDED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "event_id": self.event_id,
            "status": self.status.value,
            "registered_at": self.registered_at.isoformat(),
            "scanned_at": self.scanned_at.isoformat() if self.scanned_at else None,
            "credential": self.credential,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class UserSummary:
    id: str
    username: str
    name: str
    email: str
    role: Role = Role.USER
    mobile: str = ""
    department: str = ""

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "mobile": self.mobile,
            "department": self.department,
            "role": self.role.value,
        }


@dataclass(frozen=True)
class EventSummary:
    id: str
    title: str
    capacity: Optional[int] = None
    status: EventStatus = EventStatus.UPCOMING
    date: str = ""
    location: str = ""
    description: str = ""
    banner_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "date": self.date,
            "location": self.location,
            "description": self.description,
            "status": self.status.value,
            "banner_url": self.banner_url,
            "capacity": self.capacity,
        }


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one scan decision. Rejections are results, not errors."""

    granted: bool
    reason: ScanReason
    registration: Optional[Registration] = None
    attendee: Optional[UserSummary] = None
    event: Optional[EventSummary] = None

    def to_dict(self) -> dict:
        return {
            "granted": self.granted,
            "reason": self.reason.value,
            "registration": self.registration.to_dict() if self.registration else None,
            "attendee": self.attendee.to_dict() if self.attendee else None,
            "event": self.event.to_dict() if self.event else None,
        }
