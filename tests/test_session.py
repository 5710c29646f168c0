import pytest

from conftest import add_user
from tracker.auth import Authenticator
from tracker.errors import AuthenticationError
from tracker.session import SessionResolver, make_snapshot, user_from_snapshot
from tracker.models import User


def test_registered_user_defaults_to_employee(store):
    user = Authenticator(store).register("New.Hire@Example.com", "secret1")
    assert user.role == "employee"
    assert user.email == "new.hire@example.com"
    assert user.display_name == "new.hire"
    assert SessionResolver(store).resolve(user.uid).role == "employee"


def test_register_validates_input(store):
    auth = Authenticator(store)
    with pytest.raises(ValueError):
        auth.register("not-an-email", "secret1")
    with pytest.raises(ValueError):
        auth.register("a@example.com", "123")
    auth.register("a@example.com", "secret1")
    with pytest.raises(AuthenticationError):
        auth.register("A@example.com", "secret2")


def test_authenticate(store):
    auth = Authenticator(store)
    user = auth.register("a@example.com", "secret1", display_name="Ann")
    assert auth.authenticate(" A@example.com ", "secret1") == user.uid
    with pytest.raises(AuthenticationError, match="Invalid credentials."):
        auth.authenticate("a@example.com", "wrong")
    with pytest.raises(AuthenticationError):
        auth.authenticate("ghost@example.com", "secret1")


def test_resolve_reads_store_then_caches(flaky):
    add_user(flaky.inner, "m1", role="manager")
    resolver = SessionResolver(flaky)
    assert resolver.resolve("m1").role == "manager"

    flaky.down = True
    assert resolver.resolve("m1").role == "manager"


def test_refresh_bypasses_cache(store):
    add_user(store, "u1")
    resolver = SessionResolver(store)
    resolver.resolve("u1")
    store.update("users", "u1", {"role": "manager"})
    assert resolver.resolve("u1").role == "employee"
    assert resolver.resolve("u1", refresh=True).role == "manager"


def test_missing_user_document_is_created_as_employee(store):
    user = SessionResolver(store).resolve("u9", email="nine@example.com")
    assert user.role == "employee"
    assert store.get("users", "u9").get("role") == "employee"
    assert store.get("users", "u9").get("displayName") == "nine"


def test_snapshot_used_when_store_unreachable(flaky):
    flaky.down = True
    snapshot = make_snapshot(User(uid="m1", email="m@example.com", display_name="Mia", role="manager"))
    user = SessionResolver(flaky).resolve("m1", snapshot=snapshot)
    assert (user.role, user.display_name) == ("manager", "Mia")


def test_default_is_least_privileged(flaky):
    flaky.down = True
    resolver = SessionResolver(flaky)
    user = resolver.resolve("m1", email="boss@example.com")
    assert user.role == "employee"
    assert user.display_name == "boss"
    assert resolver.cached("m1") is None


@pytest.mark.parametrize(
    "snapshot",
    [
        {"uid": "someone-else", "role": "manager"},
        "not a mapping",
        None,
    ],
)
def test_unusable_snapshots_fall_through(snapshot):
    assert user_from_snapshot(snapshot, "m1") is None


def test_snapshot_role_is_never_escalated():
    user = user_from_snapshot({"uid": "u1", "role": "admin"}, "u1")
    assert user.role == "employee"


def test_forget_drops_cached_user(store):
    add_user(store, "u1")
    resolver = SessionResolver(store)
    resolver.resolve("u1")
    resolver.forget("u1")
    assert resolver.cached("u1") is None


def test_create_manager_registers_or_promotes(store):
    from create_manager import create_manager

    uid = create_manager(store, "boss@example.com", "secret1", "Boss")
    assert store.get("users", uid).get("role") == "manager"

    employee = Authenticator(store).register("lead@example.com", "secret1")
    assert create_manager(store, "lead@example.com", "ignored") == employee.uid
    assert SessionResolver(store).resolve(employee.uid).role == "manager"
