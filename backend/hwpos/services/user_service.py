# Overview: Service-layer operations for users; password hashing, capability grants and actor resolution.

"""
User accounts and the Actor handed to every engine operation.

WHY: Every stock and money movement is attributed to a user. The engines
never look users up themselves; callers resolve an Actor once and pass it in.
The engines trust it as given and only check the admin gates they own
(approving POs, approving access requests, amending closed sessions).

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_LOG_ROUNDS)
- Minimum 8 characters required
"""

from __future__ import annotations

from dataclasses import dataclass, field

import bcrypt
from flask import current_app

from ..errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from ..extensions import db
from ..models import User, UserCapability
from ..permissions import validate_capability_code
from ..time_utils import utcnow
from .concurrency import atomic

MIN_PASSWORD_LENGTH = 8


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet requirements."""


@dataclass(frozen=True)
class Actor:
    user_id: int
    is_admin: bool = False
    capabilities: frozenset[str] = field(default_factory=frozenset)

    def can(self, code: str) -> bool:
        return self.is_admin or code in self.capabilities


def require_admin(actor: Actor, action: str) -> None:
    if not actor.is_admin:
        raise PermissionDeniedError(
            f"Only administrators can {action}",
            details={"user_id": actor.user_id},
        )


def validate_password_strength(password: str) -> None:
    if password is None or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )


def hash_password(password: str) -> str:
    """Validate then hash with bcrypt; stored as str."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_LOG_ROUNDS", 12)
    salt = bcrypt.gensalt(rounds=rounds)
    hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """bcrypt.checkpw is timing-safe. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def _normalize_capabilities(codes) -> list[str]:
    cleaned = sorted(set(codes or []))
    unknown = [c for c in cleaned if not validate_capability_code(c)]
    if unknown:
        raise ValidationError(
            f"Unknown capabilities: {', '.join(unknown)}",
            details={"unknown": unknown},
        )
    return cleaned


def _replace_capabilities(user: User, codes: list[str]) -> None:
    # Keep surviving rows; the unit of work inserts before it deletes
    keep = [c for c in user.capabilities if c.code in codes]
    held = {c.code for c in keep}
    user.capabilities = keep + [UserCapability(code=code) for code in codes if code not in held]


def create_user(
    username: str,
    name: str,
    password: str,
    *,
    email: str | None = None,
    is_admin: bool = False,
    capabilities=None,
) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises:
        ValidationError: blank username/name or unknown capability code
        PasswordValidationError: password too short
        ConflictError: username already taken
    """
    username = (username or "").strip()
    name = (name or "").strip()
    if not username:
        raise ValidationError("username is required")
    if not name:
        raise ValidationError("name is required")

    codes = _normalize_capabilities(capabilities)

    if db.session.query(User).filter_by(username=username).first():
        raise ConflictError(f"Username '{username}' already exists")

    user = User(
        username=username,
        name=name,
        email=(email or "").strip() or None,
        password_hash=hash_password(password),
        is_admin=bool(is_admin),
        is_active=True,
    )
    _replace_capabilities(user, codes)
    with atomic():
        db.session.add(user)
    return user


def update_user(
    user_id: int,
    *,
    name: str | None = None,
    email: str | None = None,
    is_admin: bool | None = None,
    is_active: bool | None = None,
    capabilities=None,
) -> User:
    """Partial update; None leaves a field unchanged. capabilities replaces the full grant list."""
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")

    if name is not None and not name.strip():
        raise ValidationError("name cannot be blank")
    codes = _normalize_capabilities(capabilities) if capabilities is not None else None

    with atomic():
        if name is not None:
            user.name = name.strip()
        if email is not None:
            user.email = email.strip() or None
        if is_admin is not None:
            user.is_admin = bool(is_admin)
        if is_active is not None:
            user.is_active = bool(is_active)
        if codes is not None:
            _replace_capabilities(user, codes)
    return user


def set_password(user_id: int, new_password: str) -> None:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    password_hash = hash_password(new_password)
    with atomic():
        user.password_hash = password_hash


def authenticate(username: str, password: str) -> User | None:
    """Return the active user for valid credentials, else None."""
    user = db.session.query(User).filter_by(username=username).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    with atomic():
        user.last_login_at = utcnow()
    return user


def resolve_actor(user_id: int) -> Actor:
    """Build the Actor for an active user."""
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    if not user.is_active:
        raise PermissionDeniedError(f"User {user.username} is inactive")
    return Actor(
        user_id=user.id,
        is_admin=bool(user.is_admin),
        capabilities=user.capability_codes,
    )
