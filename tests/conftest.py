import httpx
import pytest
import pytest_asyncio

from eventpass.attendance import AttendanceDesk
from eventpass.config import Settings
from eventpass.container import build_services
from eventpass.directory import DirectoryGateway
from eventpass.ledger import RegistrationLedger
from eventpass.main import create_app
from eventpass.store import InMemoryRegistrationStore
from tests.helpers import FakeRedis, InMemoryEvents, InMemoryUsers, RecordingSink, login

CREDENTIAL_SECRET = "test_credential_secret"
ADMIN_USERNAME = "admin"
ADMIN_PASSWORD = "admin-pass-123"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'eventpass.db'}",
        REDIS_URL=None,
        CREDENTIAL_SIGNING_SECRET=CREDENTIAL_SECRET,
        SESSION_SECRET="test_session_secret",
        SCAN_RATE_LIMIT_PER_MINUTE=1000,
        STORAGE_RETRIES=2,
    )


@pytest.fixture
def services(settings):
    services = build_services(settings)
    services.create_schema()
    yield services
    services.engine.dispose()


class Env:
    """A ledger and desk wired to one store flavour, with in-process users."""

    def __init__(self, store, events, add_event):
        self.store = store
        self.events = events
        self.users = InMemoryUsers()
        self.sink = RecordingSink()
        self.ledger = RegistrationLedger(store, events, self.sink, credential_secret=CREDENTIAL_SECRET)
        self.desk = AttendanceDesk(
            self.ledger, DirectoryGateway(self.users, events), credential_secret=CREDENTIAL_SECRET
        )
        self.add_event = add_event


@pytest.fixture(params=["memory", "sql"])
def env(request):
    if request.param == "memory":
        events = InMemoryEvents()
        return Env(InMemoryRegistrationStore(), events, lambda event_id, capacity=None: events.add(event_id, capacity))

    services = request.getfixturevalue("services")

    def add_event(event_id, capacity=None):
        return services.events.create_event(title=event_id, capacity=capacity, event_id=event_id).id

    return Env(services.store, services.events, add_event)


# -------------------------
# HTTP
# -------------------------
@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def app(settings, services, fake_redis):
    return create_app(settings, services=services, redis=fake_redis)


@pytest_asyncio.fixture(scope="function")
async def client(app):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test", timeout=10.0) as c:
        yield c


@pytest_asyncio.fixture(scope="function")
async def admin_headers(client, services):
    services.users.ensure_admin(ADMIN_USERNAME, ADMIN_PASSWORD)
    return await login(client, ADMIN_USERNAME, ADMIN_PASSWORD)
