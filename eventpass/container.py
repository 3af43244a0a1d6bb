from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .attendance import AttendanceDesk
from .config import Settings
from .db import Base, build_engine, build_session_factory
from .directory import DirectoryGateway, SqlEventCatalog, SqlNotificationSink, SqlUserDirectory
from .ledger import RegistrationLedger
from .store import RegistrationStore, SqlRegistrationStore


@dataclass(frozen=True)
class Services:
    settings: Settings
    engine: Engine
    session_factory: sessionmaker

    store: RegistrationStore
    users: SqlUserDirectory
    events: SqlEventCatalog
    notifications: SqlNotificationSink
    gateway: DirectoryGateway

    ledger: RegistrationLedger
    desk: AttendanceDesk

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)


def build_services(
    settings: Settings,
    *,
    engine: Optional[Engine] = None,
    store: Optional[RegistrationStore] = None,
) -> Services:
    engine = engine or build_engine(settings.DATABASE_URL)
    session_factory = build_session_factory(engine)

    store = store or SqlRegistrationStore(session_factory)
    users = SqlUserDirectory(session_factory)
    events = SqlEventCatalog(session_factory)
    notifications = SqlNotificationSink(session_factory)
    gateway = DirectoryGateway(users, events)

    ledger = RegistrationLedger(
        store,
        events,
        notifications,
        credential_secret=settings.CREDENTIAL_SIGNING_SECRET,
        storage_retries=settings.STORAGE_RETRIES,
    )
    desk = AttendanceDesk(ledger, gateway, credential_secret=settings.CREDENTIAL_SIGNING_SECRET)

    return Services(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        store=store,
        users=users,
        events=events,
        notifications=notifications,
        gateway=gateway,
        ledger=ledger,
        desk=desk,
    )
