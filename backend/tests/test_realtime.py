from __future__ import annotations

from plantops.realtime import ChangeEvent, PermissionEventBus


def test_publish_reaches_matching_subscribers_only():
    bus = PermissionEventBus()
    seen_all, seen_user_perms = [], []
    bus.subscribe(seen_all.append)
    bus.subscribe(seen_user_perms.append, tables=["user_permissions"])

    delivered = bus.publish(ChangeEvent("permissions", "create", {"id": 1}))
    bus.publish(ChangeEvent("user_permissions", "update", {"user_id": 3}))

    assert delivered == 1
    assert [e.table for e in seen_all] == ["permissions", "user_permissions"]
    assert [e.record for e in seen_user_perms] == [{"user_id": 3}]


def test_unsubscribe_is_idempotent():
    bus = PermissionEventBus()
    seen = []
    subscription = bus.subscribe(seen.append)
    assert subscription.active
    assert bus.subscriber_count() == 1

    subscription.unsubscribe()
    subscription.unsubscribe()

    assert not subscription.active
    assert bus.subscriber_count() == 0
    assert bus.publish(ChangeEvent("permissions", "delete")) == 0
    assert seen == []


def test_failing_listener_does_not_block_others():
    bus = PermissionEventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(seen.append)

    assert bus.publish(ChangeEvent("permissions", "update")) == 1
    assert len(seen) == 1
