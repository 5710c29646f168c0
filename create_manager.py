"""Provision a manager account out of band.

Usage: python create_manager.py EMAIL PASSWORD [DISPLAY_NAME]
or set MANAGER_EMAIL / MANAGER_PASSWORD / MANAGER_NAME.
"""
import os
import sys

from tracker.auth import Authenticator, normalize_email
from tracker.config import CREDENTIALS, ROLE_MANAGER
from tracker.errors import AuthenticationError
from tracker.store import default_store


def create_manager(store, email: str, password: str, display_name: str | None = None) -> str:
    """Create the account as a manager, or promote it if the email is taken. Returns the uid."""
    auth = Authenticator(store)
    try:
        user = auth.register(email, password, display_name=display_name, role=ROLE_MANAGER)
        return user.uid
    except AuthenticationError:
        snaps = store.query(CREDENTIALS, [("email", "==", normalize_email(email))], limit=1)
        uid = snaps[0].id
        auth.set_role(uid, ROLE_MANAGER)
        return uid


def main(argv: list[str]) -> int:
    email = argv[1] if len(argv) > 1 else os.getenv("MANAGER_EMAIL", "")
    password = argv[2] if len(argv) > 2 else os.getenv("MANAGER_PASSWORD", "")
    name = argv[3] if len(argv) > 3 else os.getenv("MANAGER_NAME")
    if not email or not password:
        print(__doc__.strip())
        return 2
    uid = create_manager(default_store(), email, password, name)
    print("Manager ready:")
    print(" email:", normalize_email(email))
    print(" uid:", uid)
    return 0


if __name__ == "__main__":
    sys.exit(main(sys.argv))
