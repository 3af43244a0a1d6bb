import pytest

from eventpass.domain import RegistrationStatus, Role
from eventpass.errors import (
    AlreadyAttended,
    AlreadyRegistered,
    CapacityExceeded,
    EventNotFound,
    NotAuthorized,
    RegistrationNotFound,
    StorageFault,
)
from eventpass.ledger import RegistrationLedger
from eventpass.security import Credential, decode_credential
from eventpass.store import InMemoryRegistrationStore
from tests.conftest import CREDENTIAL_SECRET
from tests.helpers import FlakyStore, InMemoryEvents, RecordingSink, run_concurrently, user


def test_register_creates_pending_registration_with_bound_credential(env):
    env.add_event("evt_1")
    reg = env.ledger.register("usr_1", "evt_1", {"tshirt": "M"})

    assert reg.status == RegistrationStatus.PENDING
    assert reg.scanned_at is None
    assert reg.metadata == {"tshirt": "M"}

    decoded = decode_credential(reg.credential, CREDENTIAL_SECRET)
    assert isinstance(decoded, Credential)
    assert (decoded.user_id, decoded.event_id, decoded.registration_id) == ("usr_1", "evt_1", reg.id)

    stored = env.ledger.get(reg.id)
    assert stored is not None and stored.metadata == {"tshirt": "M"}
    assert env.sink.sent[0][:2] == ("usr_1", "Registration confirmed")


def test_register_unknown_event(env):
    with pytest.raises(EventNotFound):
        env.ledger.register("usr_1", "evt_missing")
    assert env.ledger.count_for_event("evt_missing") == 0


def test_register_twice_is_rejected(env):
    env.add_event("evt_1")
    first = env.ledger.register("usr_1", "evt_1")
    with pytest.raises(AlreadyRegistered):
        env.ledger.register("usr_1", "evt_1")

    assert [r.id for r in env.ledger.list_for_user("usr_1")] == [first.id]


def test_register_duplicate_reported_before_capacity(env):
    env.add_event("evt_1", capacity=1)
    env.ledger.register("usr_1", "evt_1")
    with pytest.raises(AlreadyRegistered):
        env.ledger.register("usr_1", "evt_1")
    with pytest.raises(CapacityExceeded):
        env.ledger.register("usr_2", "evt_1")


def test_concurrent_duplicate_registrations_one_wins(env):
    env.add_event("evt_1")
    results = run_concurrently(env.ledger.register, [("usr_1", "evt_1")] * 12)

    created = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(created) == 1
    assert all(isinstance(e, AlreadyRegistered) for e in rejected), rejected
    assert env.ledger.count_for_event("evt_1") == 1


def test_concurrent_registrations_respect_capacity(env):
    env.add_event("evt_1", capacity=4)
    results = run_concurrently(env.ledger.register, [(f"usr_{i}", "evt_1") for i in range(10)])

    created = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(created) == 4
    assert len(rejected) == 6
    assert all(isinstance(e, CapacityExceeded) for e in rejected), rejected
    assert env.ledger.count_for_event("evt_1") == 4


def test_cancel_by_owner_frees_the_seat(env):
    env.add_event("evt_1", capacity=1)
    reg = env.ledger.register("usr_1", "evt_1")
    env.ledger.cancel(reg.id, user("usr_1"))

    assert env.ledger.get(reg.id) is None
    assert env.ledger.register("usr_2", "evt_1").user_id == "usr_2"
    assert ("usr_1", "Registration cancelled") in [s[:2] for s in env.sink.sent]


def test_cancel_by_stranger_is_refused(env):
    env.add_event("evt_1")
    reg = env.ledger.register("usr_1", "evt_1")
    with pytest.raises(NotAuthorized):
        env.ledger.cancel(reg.id, user("usr_2"))
    assert env.ledger.get(reg.id) is not None


def test_cancel_by_admin(env):
    env.add_event("evt_1")
    reg = env.ledger.register("usr_1", "evt_1")
    env.ledger.cancel(reg.id, user("boss", role=Role.ADMIN.value))
    assert env.ledger.get(reg.id) is None


def test_cancel_unknown_registration(env):
    with pytest.raises(RegistrationNotFound):
        env.ledger.cancel("nope", user("usr_1"))


@pytest.mark.parametrize("role", ["user", "admin"])
def test_cancel_after_attendance_is_refused(env, role):
    env.add_event("evt_1")
    reg = env.ledger.register("usr_1", "evt_1")
    assert env.ledger.mark_attended(reg.id) is not None

    requester = user("usr_1") if role == "user" else user("boss", role="admin")
    with pytest.raises(AlreadyAttended):
        env.ledger.cancel(reg.id, requester)
    assert env.ledger.get(reg.id).attended


def test_mark_attended_is_one_way(env):
    env.add_event("evt_1")
    reg = env.ledger.register("usr_1", "evt_1")

    first = env.ledger.mark_attended(reg.id)
    assert first is not None and first.attended and first.scanned_at is not None
    assert env.ledger.mark_attended(reg.id) is None
    assert env.ledger.get(reg.id).scanned_at == first.scanned_at


def test_delete_all_for_event(env):
    env.add_event("evt_1")
    env.add_event("evt_2")
    for i in range(3):
        env.ledger.register(f"usr_{i}", "evt_1")
    keep = env.ledger.register("usr_0", "evt_2")

    assert env.ledger.delete_all_for_event("evt_1") == 3
    assert env.ledger.count_for_event("evt_1") == 0
    assert [r.id for r in env.ledger.list_all()] == [keep.id]


def test_list_all_pages_in_registration_order(env):
    env.add_event("evt_1")
    ids = [env.ledger.register(f"usr_{i}", "evt_1").id for i in range(5)]

    listed = [r.id for r in env.ledger.list_all()]
    assert sorted(listed) == sorted(ids)
    page = [r.id for r in env.ledger.list_all(limit=2, offset=1)]
    assert page == listed[1:3]


# -------------------------
# Faults
# -------------------------
def _ledger(store, sink=None, capacity=None):
    events = InMemoryEvents()
    events.add("evt_1", capacity)
    return RegistrationLedger(store, events, sink, credential_secret=CREDENTIAL_SECRET, storage_retries=2)


def test_failed_notification_does_not_undo_registration(caplog):
    store = InMemoryRegistrationStore()
    ledger = _ledger(store, RecordingSink(fail=True))

    reg = ledger.register("usr_1", "evt_1")
    assert store.get(reg.id) is not None
    assert "notification failed" in caplog.text


def test_storage_fault_is_retried():
    flaky = FlakyStore(InMemoryRegistrationStore(), create_faults=2)
    reg = _ledger(flaky).register("usr_1", "evt_1")

    assert flaky.create_calls == 3
    assert flaky.get(reg.id) is not None


def test_storage_fault_surfaces_after_retries():
    flaky = FlakyStore(InMemoryRegistrationStore(), create_faults=10)
    with pytest.raises(StorageFault):
        _ledger(flaky).register("usr_1", "evt_1")
    assert flaky.create_calls == 3
    assert flaky.list_all() == []


def test_retry_after_lost_acknowledgement_returns_committed_row():
    flaky = FlakyStore(InMemoryRegistrationStore(), commit_then_fail=True)
    reg = _ledger(flaky).register("usr_1", "evt_1")

    assert [r.id for r in flaky.list_all()] == [reg.id]


def test_mark_attended_retries_storage_fault():
    flaky = FlakyStore(InMemoryRegistrationStore(), attend_faults=1)
    ledger = _ledger(flaky)
    reg = ledger.register("usr_1", "evt_1")

    assert ledger.mark_attended(reg.id).attended
