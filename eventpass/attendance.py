import logging
from typing import Optional, Union

from .directory import DirectoryGateway
from .domain import ScanReason, ScanResult
from .ledger import RegistrationLedger
from .security import DecodeError, decode_credential

logger = logging.getLogger(__name__)


class AttendanceDesk:
    """Turns one scanned credential into one attendance decision.

    A registration moves pending -> attended at most once. Repeat scans of
    an attended registration are reported as ALREADY_SCANNED and change
    nothing, so scanners may resubmit freely.
    """

    def __init__(self, ledger: RegistrationLedger, directory: DirectoryGateway, *, credential_secret: str):
        self._ledger = ledger
        self._directory = directory
        self._secret = credential_secret

    def scan(self, token: Union[str, bytes], *, event_id: Optional[str] = None) -> ScanResult:
        decoded = decode_credential(token, self._secret)
        if isinstance(decoded, DecodeError):
            logger.info("scan rejected: invalid format (%s)", decoded.reason)
            return ScanResult(granted=False, reason=ScanReason.INVALID_FORMAT)

        # Wrong event, unknown user and unknown registration all read the same to the scanner.
        if event_id is not None and decoded.event_id != event_id:
            return self._not_found(decoded.registration_id)

        resolved = self._directory.resolve(decoded)
        if resolved is None:
            return self._not_found(decoded.registration_id)
        attendee, event = resolved

        registration = self._ledger.find_for_credential(decoded)
        if registration is None:
            return self._not_found(decoded.registration_id)

        if registration.attended:
            logger.info("scan rejected: already scanned registration=%s", registration.id)
            return ScanResult(
                granted=False,
                reason=ScanReason.ALREADY_SCANNED,
                registration=registration,
                attendee=attendee,
                event=event,
            )

        updated = self._ledger.mark_attended(registration.id)
        if updated is None:
            # Lost the race to a concurrent scan, or the row was cancelled meanwhile.
            current = self._ledger.get(registration.id)
            if current is None:
                return self._not_found(registration.id)
            logger.info("scan rejected: concurrent scan won registration=%s", registration.id)
            return ScanResult(
                granted=False,
                reason=ScanReason.ALREADY_SCANNED,
                registration=current,
                attendee=attendee,
                event=event,
            )

        logger.info("scan granted registration=%s user=%s event=%s", updated.id, updated.user_id, updated.event_id)
        return ScanResult(granted=True, reason=ScanReason.OK, registration=updated, attendee=attendee, event=event)

    @staticmethod
    def _not_found(registration_id: str) -> ScanResult:
        logger.info("scan rejected: not found registration=%s", registration_id)
        return ScanResult(granted=False, reason=ScanReason.NOT_FOUND)
