"""In-process change notifications for permission tables."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Literal, Optional

logger = logging.getLogger(__name__)

ChangeAction = Literal["create", "update", "delete"]

USER_PERMISSIONS_TABLE = "user_permissions"
PERMISSIONS_TABLE = "permissions"


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    action: ChangeAction
    record: Dict[str, Any] = field(default_factory=dict)


ChangeListener = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by ``PermissionEventBus.subscribe``; release it with ``unsubscribe``."""

    def __init__(self, bus: "PermissionEventBus", callback: ChangeListener, tables: Optional[FrozenSet[str]]) -> None:
        self._bus = bus
        self.callback = callback
        self.tables = tables
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def matches(self, event: ChangeEvent) -> bool:
        return self.tables is None or event.table in self.tables

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        self._bus._remove(self)


class PermissionEventBus:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []

    def subscribe(self, callback: ChangeListener, tables: Optional[Iterable[str]] = None) -> Subscription:
        subscription = Subscription(self, callback, frozenset(tables) if tables is not None else None)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            try:
                self._subscriptions.remove(subscription)
            except ValueError:
                pass

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to matching subscribers on the calling thread; returns deliveries."""
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.matches(event)]

        delivered = 0
        for sub in targets:
            if not sub.active:
                continue
            try:
                sub.callback(event)
                delivered += 1
            except Exception:
                logger.exception("Change listener failed for %s/%s", event.table, event.action)
        return delivered


permission_events = PermissionEventBus()
