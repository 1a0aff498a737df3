from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

import bcrypt

from govflow.models import User, UserRole


DEFAULT_ADMIN_ID = "master-admin-001"
DEFAULT_ADMIN_EMAIL = "admin@gov.br"
DEFAULT_ADMIN_PASSWORD = "admin123"

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72

LOGIN_REFRESH_INTERVAL = timedelta(minutes=15)


def hash_password(password: str) -> str:
    password_bytes = password.encode("utf-8")
    if len(password_bytes) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password longer than {MAX_PASSWORD_BYTES} bytes")
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash; malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def default_admin() -> User:
    return User(
        id=DEFAULT_ADMIN_ID,
        name="Administrador do Sistema",
        email=DEFAULT_ADMIN_EMAIL,
        password_hash=hash_password(DEFAULT_ADMIN_PASSWORD),
        role="ADMIN",
        status="ACTIVE",
    )


def find_by_email(users: Iterable[User], email: str) -> Optional[User]:
    wanted = email.strip().lower()
    for user in users:
        if user.email.strip().lower() == wanted:
            return user
    return None


def authenticate(users: Iterable[User], email: str, password: str) -> Optional[User]:
    """Return the matching active user, or None for unknown/inactive users and bad passwords."""
    user = find_by_email(users, email)
    if user is None or user.status != "ACTIVE":
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user.model_copy(update={"last_login": datetime.now()})


def has_role(user: User, *roles: UserRole) -> bool:
    return user.role in roles


def can_edit(user: User) -> bool:
    return has_role(user, "ADMIN", "MANAGER")


def should_record_login(previous: Optional[datetime], current: Optional[datetime]) -> bool:
    """True when ``last_login`` is stale enough to be worth persisting again."""
    if current is None:
        return False
    if previous is None:
        return True
    return current - previous >= LOGIN_REFRESH_INTERVAL
