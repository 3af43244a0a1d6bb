class LedgerError(Exception):
    """Base class for every outcome the service reports to a caller.

    `reason` is the stable machine-readable code, `status_code` the HTTP
    status the transport layer answers with.
    """

    reason = "ERROR"
    status_code = 500

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.reason)
        self.detail = detail or self.reason


class ValidationError(LedgerError):
    reason = "VALIDATION_ERROR"
    status_code = 400


class ConflictError(LedgerError):
    """Rejection expected under normal contention, not a system fault."""

    reason = "CONFLICT"
    status_code = 409


class AlreadyRegistered(ConflictError):
    reason = "ALREADY_REGISTERED"
    status_code = 400


class CapacityExceeded(ConflictError):
    reason = "CAPACITY_EXCEEDED"
    status_code = 400


class AlreadyAttended(ConflictError):
    reason = "ALREADY_ATTENDED"
    status_code = 409


class NotFoundError(LedgerError):
    reason = "NOT_FOUND"
    status_code = 404


class EventNotFound(NotFoundError):
    reason = "EVENT_NOT_FOUND"


class RegistrationNotFound(NotFoundError):
    reason = "REGISTRATION_NOT_FOUND"


class NotificationNotFound(NotFoundError):
    reason = "NOTIFICATION_NOT_FOUND"


class AuthenticationFailed(LedgerError):
    reason = "AUTHENTICATION_FAILED"
    status_code = 401


class NotAuthorized(LedgerError):
    reason = "NOT_AUTHORIZED"
    status_code = 403


class StorageFault(LedgerError):
    """Transaction failure or lost connectivity. The only retryable class."""

    reason = "STORAGE_FAULT"
    status_code = 503
