from __future__ import annotations

import pytest
from sqlmodel import Session

from plantops.auth.roles import UserRole
from plantops.auth.user_model import User
from plantops.permissions.matrix import PermissionMatrix
from plantops.permissions.models import Permission, PermissionLevel, PermissionModule
from plantops.permissions.service import (
    assign_permissions,
    create_permission,
    delete_user_permissions,
    notify_user_permissions_changed,
    notify_user_permissions_deleted,
    save_user_permissions,
)
from plantops.realtime import PermissionEventBus
from plantops.session.store import SessionError, UserSessionStore


@pytest.fixture(name="bus")
def bus_fixture() -> PermissionEventBus:
    return PermissionEventBus()


@pytest.fixture(name="store")
def store_fixture(session_factory, bus):
    store = UserSessionStore(session_factory=session_factory, bus=bus)
    yield store
    store.cleanup()


def test_init_loads_profile_and_subscribes(session: Session, make_user, store, bus):
    user = make_user("alice", UserRole.MANAGER)
    save_user_permissions(session, user, PermissionMatrix(dashboard=PermissionLevel.WRITE), bus=bus)

    profile = store.init(user.id)

    assert profile.username == "alice"
    assert profile.permissions.dashboard is PermissionLevel.WRITE
    assert store.current_user == profile
    assert store.is_subscribed
    assert bus.subscriber_count() == 1


def test_init_rejects_missing_and_inactive_users(make_user, store, bus):
    inactive = make_user("ghost", is_active=False)
    with pytest.raises(SessionError):
        store.init(9999)
    with pytest.raises(SessionError):
        store.init(inactive.id)
    assert bus.subscriber_count() == 0


def test_permission_change_rebuilds_matrix(session: Session, make_user, store, bus):
    user = make_user("bob")
    store.init(user.id)
    seen = []
    store.subscribe(seen.append)

    save_user_permissions(
        session,
        user,
        PermissionMatrix(plant_operations={"Packing": {"Unit1": PermissionLevel.READ}}),
        bus=bus,
    )

    assert store.current_user.permissions.plant_operations == {"Packing": {"Unit1": PermissionLevel.READ}}
    assert len(seen) == 1
    assert seen[0].permissions == store.current_user.permissions


def test_other_users_changes_are_ignored(session: Session, make_user, store, bus):
    user = make_user("carol")
    other = make_user("dave")
    store.init(user.id)
    seen = []
    store.subscribe(seen.append)

    save_user_permissions(session, other, PermissionMatrix(dashboard=PermissionLevel.ADMIN), bus=bus)

    assert seen == []
    assert store.current_user.permissions.dashboard is PermissionLevel.NONE


def test_catalog_change_rebuilds_every_session(session: Session, make_user, store, bus):
    user = make_user("erin")
    perm = Permission(module_name="inspection", permission_level="READ")
    session.add(perm)
    session.commit()
    assign_permissions(session, user, [perm.id], bus=bus)
    store.init(user.id)
    seen = []
    store.subscribe(seen.append)

    create_permission(session, module=PermissionModule.DASHBOARD, level=PermissionLevel.READ, bus=bus)

    assert len(seen) == 1
    assert seen[0].permissions.inspection is PermissionLevel.READ


def test_unsubscribed_listener_is_not_called(session: Session, make_user, store, bus):
    user = make_user("frank")
    store.init(user.id)
    seen = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()

    save_user_permissions(session, user, PermissionMatrix(dashboard=PermissionLevel.READ), bus=bus)

    assert seen == []
    assert store.current_user.permissions.dashboard is PermissionLevel.READ


def test_failing_listener_does_not_stop_others(session: Session, make_user, store, bus):
    user = make_user("gina")
    store.init(user.id)
    seen = []

    def broken(profile):
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.refresh()

    assert len(seen) == 1


def test_cleanup_releases_subscription(make_user, store, bus):
    user = make_user("hank")
    store.init(user.id)

    store.cleanup()
    store.cleanup()

    assert store.current_user is None
    assert not store.is_subscribed
    assert bus.subscriber_count() == 0
    assert store.refresh() is None


def test_reinit_replaces_previous_subscription(make_user, store, bus):
    first = make_user("ivy")
    second = make_user("jack")
    store.init(first.id)
    store.init(second.id)

    assert store.current_user.username == "jack"
    assert bus.subscriber_count() == 1


def test_deleted_user_closes_session(session: Session, make_user, store, bus):
    user = make_user("kate")
    store.init(user.id)
    closed = []
    store.on_closed(lambda: closed.append(True))

    delete_user_permissions(session, user.id)
    session.delete(session.get(User, user.id))
    session.commit()
    notify_user_permissions_deleted(user.id, bus=bus)

    assert closed == [True]
    assert store.current_user is None
    assert bus.subscriber_count() == 0


def test_deactivated_user_closes_session(session: Session, make_user, store, bus):
    user = make_user("lena")
    store.init(user.id)
    closed = []
    store.on_closed(lambda: closed.append(True))

    stored = session.get(User, user.id)
    stored.is_active = False
    session.add(stored)
    session.commit()
    notify_user_permissions_changed(user.id, bus=bus)

    assert closed == [True]
    assert store.current_user is None
    assert bus.subscriber_count() == 0
