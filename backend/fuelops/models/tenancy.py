from __future__ import annotations

from ..extensions import db
from fuelops.time_utils import to_utc_z


class Location(db.Model):
    """
    Depot / loading location.

    PFIs, orders and bank accounts are all scoped to a location.
    """
    __tablename__ = "locations"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_locations_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(16), nullable=False)
    state_name = db.Column(db.String(64), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "state_name": self.state_name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """Fuel product sold by the litre (PMS, AGO, ...)."""
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("abbreviation", name="uq_products_abbreviation"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    abbreviation = db.Column(db.String(16), nullable=False)
    description = db.Column(db.String(255), nullable=True)

    # Current list price per litre, in kobo. Orders snapshot it at creation.
    unit_price_kobo = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "abbreviation": self.abbreviation,
            "description": self.description,
            "unit_price_kobo": self.unit_price_kobo,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
