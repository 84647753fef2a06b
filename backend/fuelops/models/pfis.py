from __future__ import annotations

from ..extensions import db
from fuelops.time_utils import to_utc_z


class Pfi(db.Model):
    """
    Proforma invoice allocation: a finite number of litres of one product at
    one location that orders draw down against.

    Sold/remaining/orders_count/total_amount are NOT stored here; they are
    always aggregated from eligible attached orders (see pfi_service).

    At most one active PFI per (location, product). The partial unique index
    backs the service-level check against concurrent creates.
    """
    __tablename__ = "pfis"
    __table_args__ = (
        db.Index(
            "uq_pfis_active_location_product",
            "location_id",
            "product_id",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("ix_pfis_status_created", "status", "created_at"),
        db.CheckConstraint("starting_qty_litres > 0", name="ck_pfis_starting_qty_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    pfi_number = db.Column(db.String(64), nullable=False, index=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    starting_qty_litres = db.Column(db.Integer, nullable=False)

    # active | finished
    status = db.Column(db.String(16), nullable=False, default="active")
    notes = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finished_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    location = db.relationship("Location")
    product = db.relationship("Product")

    def to_dict(self, totals=None) -> dict:
        data = {
            "id": self.id,
            "pfi_number": self.pfi_number,
            "status": self.status,
            "location": self.location_id,
            "location_name": self.location.name if self.location else None,
            "product": self.product_id,
            "product_name": self.product.name if self.product else None,
            "starting_qty_litres": self.starting_qty_litres,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "created_by_user_id": self.created_by_user_id,
            "finished_at": to_utc_z(self.finished_at),
            "finished_by_user_id": self.finished_by_user_id,
        }
        if totals is not None:
            data.update(totals.to_dict())
        return data
