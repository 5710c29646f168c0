"""Resolve an authenticated uid to a user record and role without ever blocking on the store.

Lookup order: in-process cache, the ``users`` document, the snapshot
persisted with the client session, and finally a minimal ``employee``
user. Fallback roles are never more privileged than what was stored.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from .auth import default_display_name
from .config import DEFAULT_ROLE, USERS
from .errors import ConflictError, StoreUnavailable, WriteError
from .models import User, normalize_role
from .store import SERVER_TIMESTAMP

LOGGER = logging.getLogger(__name__)


def make_snapshot(user: User) -> Dict[str, Any]:
    return {
        "uid": user.uid,
        "email": user.email,
        "role": user.role,
        "displayName": user.display_name,
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
    }


def user_from_snapshot(snapshot: Any, uid: str, email: str = "", display_name: str = "") -> Optional[User]:
    if not isinstance(snapshot, Mapping) or snapshot.get("uid") != uid:
        return None
    return User(
        uid=uid,
        email=snapshot.get("email") or email,
        display_name=snapshot.get("displayName") or display_name,
        role=normalize_role(snapshot.get("role")),
    )


class SessionResolver:
    def __init__(self, store):
        self.store = store
        self._cache: Dict[str, User] = {}
        self._lock = threading.Lock()

    def cached(self, uid: str) -> Optional[User]:
        return self._cache.get(uid)

    def remember(self, user: User) -> None:
        with self._lock:
            self._cache[user.uid] = user

    def forget(self, uid: str) -> None:
        with self._lock:
            self._cache.pop(uid, None)

    def _ensure_user_doc(self, uid: str, email: str, display_name: str) -> User:
        LOGGER.info("User document for %s missing; creating it with role %s", uid, DEFAULT_ROLE)
        try:
            self.store.create(USERS, uid, {
                "email": email,
                "displayName": default_display_name(email, display_name),
                "role": DEFAULT_ROLE,
                "createdAt": SERVER_TIMESTAMP,
            })
        except ConflictError:
            pass
        snap = self.store.get(USERS, uid)
        if snap is None:
            return User(uid=uid, email=email, display_name=default_display_name(email, display_name))
        return User.from_snapshot(snap)

    def resolve(self, uid: str, email: str = "", display_name: str = "",
                snapshot: Any = None, refresh: bool = False) -> User:
        if not refresh:
            cached = self.cached(uid)
            if cached is not None:
                return cached

        try:
            snap = self.store.get(USERS, uid)
            if snap is not None:
                user = User.from_snapshot(snap)
            else:
                user = self._ensure_user_doc(uid, email, display_name)
            self.remember(user)
            return user
        except (StoreUnavailable, WriteError) as exc:
            LOGGER.warning("Could not load user %s from the store: %s", uid, exc)

        user = user_from_snapshot(snapshot, uid, email, display_name)
        if user is not None:
            LOGGER.info("Using persisted session snapshot for %s", uid)
            return user

        LOGGER.warning("No user data available for %s; using default role", uid)
        return User(uid=uid, email=email, display_name=default_display_name(email, display_name), role=DEFAULT_ROLE)
