from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class User(db.Model):
    """
    Back-office user accounts for attribution.

    WHY: Every stock and money movement records who made it. No shared logins.
    Admins bypass capability checks and are the only ones who can approve
    purchase orders or register-history access requests.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=True)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    is_admin = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    capabilities = db.relationship(
        "UserCapability",
        backref="user",
        lazy=True,
        cascade="all, delete-orphan",
    )

    @property
    def capability_codes(self) -> frozenset[str]:
        return frozenset(c.code for c in self.capabilities)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "is_admin": self.is_admin,
            "is_active": self.is_active,
            "capabilities": sorted(self.capability_codes),
            "created_at": to_utc_z(self.created_at),
            "last_login_at": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class UserCapability(db.Model):
    """Grant of one capability code to a user."""
    __tablename__ = "user_capabilities"
    __table_args__ = (
        db.UniqueConstraint("user_id", "code", name="uq_user_capabilities_user_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    code = db.Column(db.String(64), nullable=False)
