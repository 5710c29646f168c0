"""Email/password accounts backing the ``users`` collection."""
from __future__ import annotations

import logging
from typing import Optional

from werkzeug.security import check_password_hash, generate_password_hash

from .config import CREDENTIALS, DEFAULT_ROLE, ROLES, USERS
from .errors import AuthenticationError
from .models import User
from .store import SERVER_TIMESTAMP, new_document_id

LOGGER = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def default_display_name(email: str, display_name: Optional[str] = None) -> str:
    if display_name and display_name.strip():
        return display_name.strip()
    local = email.split("@", 1)[0] if email else ""
    return local or "User"


class Authenticator:
    def __init__(self, store):
        self.store = store

    def _credential_for(self, email: str):
        snaps = self.store.query(CREDENTIALS, [("email", "==", email)], limit=1)
        return snaps[0] if snaps else None

    def register(self, email: str, password: str, display_name: Optional[str] = None,
                 role: str = DEFAULT_ROLE) -> User:
        """Create credentials and the user document. Self-registration is always ``employee``."""
        email = normalize_email(email)
        if not email or "@" not in email:
            raise ValueError("A valid email address is required")
        if not password or len(password) < 6:
            raise ValueError("Password must be at least 6 characters")
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        if self._credential_for(email) is not None:
            raise AuthenticationError("An account with this email already exists")

        uid = new_document_id()
        name = default_display_name(email, display_name)
        with self.store.batch() as batch:
            batch.create(CREDENTIALS, uid, {
                "email": email,
                "passwordHash": generate_password_hash(password),
            })
            batch.create(USERS, uid, {
                "email": email,
                "displayName": name,
                "role": role,
                "createdAt": SERVER_TIMESTAMP,
            })
        LOGGER.info("Registered %s with role %s", email, role)
        return User.from_snapshot(self.store.get(USERS, uid))

    def authenticate(self, email: str, password: str) -> str:
        """Return the uid for valid credentials."""
        snap = self._credential_for(normalize_email(email))
        if snap is None or not check_password_hash(snap.get("passwordHash") or "", password or ""):
            raise AuthenticationError("Invalid credentials.")
        return snap.id

    def set_role(self, uid: str, role: str) -> None:
        if role not in ROLES:
            raise ValueError(f"Unknown role: {role}")
        self.store.update(USERS, uid, {"role": role})
