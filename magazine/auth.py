from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional

import bcrypt

from magazine.errors import AuthenticationError, AuthorizationError, ValidationError
from magazine.store import Store

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_STAFF = "staff"

MIN_PASSWORD_LENGTH = 8
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class Principal:
    email: str
    role: str = ROLE_STAFF

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


def normalize_email(email: str) -> str:
    e = str(email or "").strip().lower()
    if not _EMAIL_RE.match(e):
        raise ValidationError("Enter a valid email address.")
    return e


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def sign_up(store: Store, email: str, password: str, *, admin_emails: Iterable[str] = ()) -> Principal:
    """
    Registers a user. The first account, and any account listed in
    admin_emails, gets the admin role.
    """
    email = normalize_email(email)
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")

    admins = {str(a).strip().lower() for a in admin_emails if str(a).strip()}
    with store.transaction():
        if store.select("users", where={"email": email}):
            raise ValidationError("An account with this email already exists.")
        first_user = store.count("users") == 0
        role = ROLE_ADMIN if (first_user or email in admins) else ROLE_STAFF
        store.insert("users", {"email": email, "password_hash": hash_password(password), "role": role})

    logger.info("Registered %s as %s", email, role)
    return Principal(email=email, role=role)


def sign_in(store: Store, email: str, password: str) -> Principal:
    try:
        email = normalize_email(email)
    except ValidationError:
        raise AuthenticationError("Invalid email or password.")

    rows = store.select("users", where={"email": email})
    if not rows or not verify_password(password or "", rows[0]["password_hash"]):
        logger.warning("Failed sign-in for %s", email)
        raise AuthenticationError("Invalid email or password.")
    return Principal(email=email, role=rows[0]["role"])


def require_admin(principal: Optional[Principal]) -> Principal:
    if principal is None or not principal.is_admin:
        who = principal.email if principal else "anonymous"
        logger.warning("Admin action refused for %s", who)
        raise AuthorizationError("Only an admin account can perform this action.")
    return principal
