import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import httpx

from eventpass.domain import EventSummary, UserSummary
from eventpass.errors import StorageFault


# -------------------------
# HTTP helpers
# -------------------------
async def signup(client: httpx.AsyncClient, username: str, password: str = "password123") -> dict:
    r = await client.post(
        "/auth/signup",
        json={"username": username, "password": password, "name": username.title(), "email": f"{username}@example.com"},
    )
    assert r.status_code == 201, r.text
    return r.json()["user"]


async def login(client: httpx.AsyncClient, username: str, password: str = "password123") -> dict:
    r = await client.post("/auth/login", json={"username": username, "password": password})
    r.raise_for_status()
    return {"Authorization": f"Bearer {r.json()['access_token']}"}


async def signup_and_login(client: httpx.AsyncClient, username: str) -> dict:
    await signup(client, username)
    return await login(client, username)


async def create_event(client: httpx.AsyncClient, admin_headers: dict, title="Test Event", capacity: Optional[int] = None) -> str:
    r = await client.post("/admin/events", json={"title": title, "capacity": capacity}, headers=admin_headers)
    assert r.status_code == 201, r.text
    return r.json()["id"]


async def register(client: httpx.AsyncClient, headers: dict, event_id: str, metadata: Optional[dict] = None) -> httpx.Response:
    return await client.post("/registrations", json={"event_id": event_id, "metadata": metadata or {}}, headers=headers)


# -------------------------
# In-process collaborators
# -------------------------
class FakeRedis:
    """The handful of redis.asyncio calls the app makes, backed by dicts."""

    def __init__(self):
        self.values: dict[str, object] = {}
        self.hashes: dict[str, dict] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.values.get(key)

    async def setex(self, key, ttl, value):
        self.values[key] = value

    async def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    async def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    async def expire(self, key, seconds):
        self.ttls[key] = seconds
        return True

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    async def aclose(self):
        return None


class FakePipeline:
    def __init__(self, redis: FakeRedis):
        self._redis = redis
        self._queued = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        self._queued.clear()

    def hset(self, key, mapping):
        self._queued.append(lambda: self._redis.hset(key, mapping=mapping))
        return self

    def expire(self, key, seconds):
        self._queued.append(lambda: self._redis.expire(key, seconds))
        return self

    async def execute(self):
        queued, self._queued = self._queued, []
        return [await call() for call in queued]


class InMemoryEvents:
    def __init__(self):
        self.events: dict[str, EventSummary] = {}

    def add(self, event_id: str, capacity: Optional[int] = None, title: str = "Event") -> str:
        self.events[event_id] = EventSummary(id=event_id, title=title, capacity=capacity)
        return event_id

    def get_event(self, event_id: str) -> Optional[EventSummary]:
        return self.events.get(event_id)


class InMemoryUsers:
    def __init__(self, *users: UserSummary):
        self.users = {u.id: u for u in users}

    def add(self, user: UserSummary) -> UserSummary:
        self.users[user.id] = user
        return user

    def find_user(self, user_id: str) -> Optional[UserSummary]:
        return self.users.get(user_id)

    def authenticate(self, username: str, password: str) -> UserSummary:
        raise NotImplementedError


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail

    def notify(self, user_id: str, title: str, message: str) -> None:
        if self.fail:
            raise ConnectionError("notification backend down")
        self.sent.append((user_id, title, message))


class FlakyStore:
    """Wraps a store and fails chosen calls with StorageFault.

    `commit_then_fail` makes the first create land in the inner store before
    reporting a fault, like a commit whose acknowledgement was lost.
    """

    def __init__(self, inner, *, create_faults: int = 0, commit_then_fail: bool = False, attend_faults: int = 0):
        self._inner = inner
        self.create_faults = create_faults
        self.commit_then_fail = commit_then_fail
        self.attend_faults = attend_faults
        self.create_calls = 0

    def create(self, registration, *, capacity):
        self.create_calls += 1
        if self.commit_then_fail:
            self.commit_then_fail = False
            self._inner.create(registration, capacity=capacity)
            raise StorageFault("lost acknowledgement")
        if self.create_faults > 0:
            self.create_faults -= 1
            raise StorageFault("connection reset")
        return self._inner.create(registration, capacity=capacity)

    def mark_attended(self, registration_id, scanned_at):
        if self.attend_faults > 0:
            self.attend_faults -= 1
            raise StorageFault("connection reset")
        return self._inner.mark_attended(registration_id, scanned_at)

    def __getattr__(self, name):
        return getattr(self._inner, name)


def user(user_id: str, role: str = "user") -> UserSummary:
    from eventpass.domain import Role

    return UserSummary(id=user_id, username=user_id, name=user_id.title(), email=f"{user_id}@example.com", role=Role(role))


def run_concurrently(fn, args_list, workers: int = 16) -> list:
    """Call fn(*args) for every args tuple at once; returns results or raised exceptions."""
    barrier = threading.Barrier(len(args_list))

    def call(args):
        barrier.wait()
        try:
            return fn(*args)
        except Exception as e:
            return e

    with ThreadPoolExecutor(max_workers=max(workers, len(args_list))) as pool:
        return list(pool.map(call, args_list))
