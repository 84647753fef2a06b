from __future__ import annotations

from ..extensions import db
from fuelops.time_utils import to_utc_z


class User(db.Model):
    """
    Console operator.

    WHY: Every transition must be attributable. The authenticated identity is
    established upstream; this table only maps it to a role and a location.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        db.UniqueConstraint("email", name="uq_users_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(128), nullable=True)

    # admin, finance, release_officer, security, sales, auditor
    role = db.Column(db.String(32), nullable=False, default="auditor")

    # Home location (nullable for head-office users)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    location = db.relationship("Location")

    def actor_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.full_name or self.username,
            "email": self.email,
            "role": self.role,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "location_id": self.location_id,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
