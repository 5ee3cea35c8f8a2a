"""
Session-side owner of the current user and its permission matrix.

The store loads the user on ``init``, keeps a subscription on the permission
change bus for as long as the session lives, and rebuilds the matrix from
storage (never patches it) whenever the user's permission rows change.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from sqlmodel import Session

from plantops.auth.schemas import UserProfile, build_user_profile
from plantops.auth.user_model import User
from plantops.db import SessionFactory, session_factory as default_session_factory
from plantops.permissions.service import fetch_user_permissions
from plantops.realtime import (
    PERMISSIONS_TABLE,
    USER_PERMISSIONS_TABLE,
    ChangeEvent,
    PermissionEventBus,
    Subscription,
    permission_events,
)

logger = logging.getLogger(__name__)

ProfileListener = Callable[[UserProfile], None]


class SessionError(RuntimeError):
    """The session cannot be opened for the requested user."""


class UserSessionStore:
    def __init__(
        self,
        session_factory: SessionFactory = default_session_factory,
        bus: PermissionEventBus = permission_events,
    ) -> None:
        self._session_factory = session_factory
        self._bus = bus
        self._lock = threading.Lock()
        self._user_id: Optional[int] = None
        self._profile: Optional[UserProfile] = None
        self._subscription: Optional[Subscription] = None
        self._listeners: List[ProfileListener] = []
        self._close_listeners: List[Callable[[], None]] = []

    @property
    def current_user(self) -> Optional[UserProfile]:
        with self._lock:
            return self._profile

    @property
    def is_subscribed(self) -> bool:
        subscription = self._subscription
        return subscription is not None and subscription.active

    def init(self, user_id: int) -> UserProfile:
        """Load ``user_id``, build its matrix and start listening for permission changes."""
        profile = self._load_profile(user_id)

        with self._lock:
            previous = self._subscription
            self._user_id = user_id
            self._profile = profile
            self._subscription = self._bus.subscribe(
                self._on_change,
                tables=(USER_PERMISSIONS_TABLE, PERMISSIONS_TABLE),
            )
        if previous is not None:
            previous.unsubscribe()

        logger.info("Session opened for user %s", profile.username)
        self._notify(profile)
        return profile

    def cleanup(self) -> None:
        with self._lock:
            subscription = self._subscription
            self._subscription = None
            self._user_id = None
            self._profile = None
        if subscription is not None:
            subscription.unsubscribe()

    def subscribe(self, listener: ProfileListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def on_closed(self, listener: Callable[[], None]) -> Callable[[], None]:
        """Register ``listener`` to run when the session ends because the user went away."""
        with self._lock:
            self._close_listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._close_listeners:
                    self._close_listeners.remove(listener)

        return unsubscribe

    def refresh(self) -> Optional[UserProfile]:
        """Refetch the user's permission rows and publish the rebuilt profile."""
        with self._lock:
            user_id = self._user_id
        if user_id is None:
            return None

        try:
            profile = self._load_profile(user_id)
        except SessionError:
            logger.warning("User %s is no longer available; closing session", user_id)
            self.cleanup()
            self._notify_closed()
            return None

        with self._lock:
            if self._user_id != user_id:
                # cleaned up or re-initialised while we were fetching
                return self._profile
            self._profile = profile
        self._notify(profile)
        return profile

    def _load_profile(self, user_id: int) -> UserProfile:
        session: Session = self._session_factory()
        try:
            user = session.get(User, user_id)
            if user is None:
                raise SessionError(f"user {user_id} not found")
            if not user.is_active:
                raise SessionError(f"user {user_id} is inactive")
            matrix = fetch_user_permissions(session, user_id, use_cache=False)
            return build_user_profile(user, matrix)
        finally:
            session.close()

    def _on_change(self, event: ChangeEvent) -> None:
        with self._lock:
            user_id = self._user_id
        if user_id is None:
            return
        if event.table == USER_PERMISSIONS_TABLE and event.record.get("user_id") != user_id:
            return
        logger.debug("Rebuilding permissions for user %s after %s on %s", user_id, event.action, event.table)
        self.refresh()

    def _notify(self, profile: UserProfile) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(profile)
            except Exception:
                logger.exception("Session listener failed")

    def _notify_closed(self) -> None:
        with self._lock:
            listeners = list(self._close_listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.exception("Session close listener failed")
