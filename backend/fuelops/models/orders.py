from __future__ import annotations

from ..extensions import db
from fuelops.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer fuel order.

    Lifecycle (owned by order_service, never mutated elsewhere):
        pending -> paid -> released -> truck_exited
        pending -> canceled

    quantity_litres and total_price_kobo are fixed at creation from the lines.
    pfi_id is set at release (or by retroactive assignment) and never changed.
    version_id guards every status write: a concurrent writer that read the
    same row loses with StaleDataError and re-reads the new status.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("reference", name="uq_orders_reference"),
        db.Index("ix_orders_location_status_created", "location_id", "status", "created_at"),
        db.Index("ix_orders_pfi_status", "pfi_id", "status"),
        db.CheckConstraint("quantity_litres > 0", name="ck_orders_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-facing code, assigned once at creation
    reference = db.Column(db.String(32), nullable=False)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=False, index=True)

    # Customer snapshot (customer records live outside the core)
    customer_name = db.Column(db.String(128), nullable=True)
    company_name = db.Column(db.String(128), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    release_type = db.Column(db.String(16), nullable=False, default="pickup")

    quantity_litres = db.Column(db.Integer, nullable=False)
    total_price_kobo = db.Column(db.Integer, nullable=False)

    pfi_id = db.Column(db.Integer, db.ForeignKey("pfis.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Payment confirmation
    payment_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    payment_confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    payment_narration = db.Column(db.String(500), nullable=True)
    paid_into_bank_account_id = db.Column(db.Integer, db.ForeignKey("bank_accounts.id"), nullable=True)
    paid_into_acct_no = db.Column(db.String(32), nullable=True)
    paid_into_bank_name = db.Column(db.String(128), nullable=True)
    paid_into_account_name = db.Column(db.String(128), nullable=True)

    # Release
    release_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    released_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Truck exit
    truck_exited = db.Column(db.Boolean, nullable=False, default=False)
    truck_exit_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    truck_exit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Cancellation
    canceled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    location = db.relationship("Location")
    pfi = db.relationship("Pfi")
    payment_user = db.relationship("User", foreign_keys=[payment_user_id])
    release_user = db.relationship("User", foreign_keys=[release_user_id])
    truck_exit_user = db.relationship("User", foreign_keys=[truck_exit_user_id])
    lines = db.relationship(
        "OrderLine",
        backref="order",
        lazy="selectin",
        order_by="OrderLine.id",
        cascade="all, delete-orphan",
    )
    release_ticket = db.relationship("ReleaseTicket", backref="order", uselist=False, lazy="selectin")

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def product_label(self) -> str:
        names = []
        for line in self.lines:
            if line.product and line.product.abbreviation not in names:
                names.append(line.product.abbreviation)
        return ", ".join(names)

    def summary_dict(self) -> dict:
        """Compact projection used by audit and PFI drill-down listings."""
        return {
            "id": self.id,
            "reference": self.reference,
            "status": self.status,
            "customer_name": self.customer_name,
            "company_name": self.company_name,
            "location_id": self.location_id,
            "location_name": self.location.name if self.location else None,
            "product": self.product_label,
            "quantity_litres": self.quantity_litres,
            "total_price_kobo": self.total_price_kobo,
            "pfi_id": self.pfi_id,
            "created_at": to_utc_z(self.created_at),
        }

    def to_dict(self) -> dict:
        return {
            **self.summary_dict(),
            "customer_phone": self.customer_phone,
            "release_type": self.release_type,
            "pfi_number": self.pfi.pfi_number if self.pfi else None,
            "products": [line.to_dict() for line in self.lines],
            "created_by_user_id": self.created_by_user_id,
            "payment_user_id": self.payment_user_id,
            "payment_user_email": self.payment_user.email if self.payment_user else None,
            "payment_confirmed_at": to_utc_z(self.payment_confirmed_at),
            "payment_narration": self.payment_narration,
            "paid_into": {
                "bank_account_id": self.paid_into_bank_account_id,
                "acct_no": self.paid_into_acct_no,
                "bank_name": self.paid_into_bank_name,
                "account_name": self.paid_into_account_name,
            } if self.paid_into_acct_no else None,
            "release_user_id": self.release_user_id,
            "release_user_email": self.release_user.email if self.release_user else None,
            "released_at": to_utc_z(self.released_at),
            "release_details": self.release_ticket.to_dict() if self.release_ticket else None,
            "truck_exited": self.truck_exited,
            "truck_exit_user_id": self.truck_exit_user_id,
            "truck_exit_user_email": self.truck_exit_user.email if self.truck_exit_user else None,
            "truck_exit_at": to_utc_z(self.truck_exit_at),
            "canceled_by_user_id": self.canceled_by_user_id,
            "canceled_at": to_utc_z(self.canceled_at),
            "cancel_reason": self.cancel_reason,
            "version_id": self.version_id,
        }


class OrderLine(db.Model):
    """Product line on an order, priced at order creation."""
    __tablename__ = "order_lines"
    __table_args__ = (
        db.CheckConstraint("quantity_litres > 0", name="ck_order_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_litres = db.Column(db.Integer, nullable=False)
    unit_price_kobo = db.Column(db.Integer, nullable=False)
    line_total_kobo = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product", lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity_litres,
            "unit_price_kobo": self.unit_price_kobo,
            "line_total_kobo": self.line_total_kobo,
        }


class ReleaseTicket(db.Model):
    """
    Loading details captured when an order is released.

    Written once, in the same transaction as the paid -> released transition.
    """
    __tablename__ = "release_tickets"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_release_tickets_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)

    truck_number = db.Column(db.String(32), nullable=False)
    driver_name = db.Column(db.String(128), nullable=False)
    driver_phone = db.Column(db.String(32), nullable=False)
    loading_datetime = db.Column(db.DateTime(timezone=True), nullable=False)

    # [{"compartment": 1, "qty": 11000, "ullage": 120}, ...]
    compartments = db.Column(db.JSON, nullable=False, default=list)

    delivery_address = db.Column(db.String(255), nullable=True)

    # PFI the litres were drawn from at release time (if any)
    pfi_id = db.Column(db.Integer, db.ForeignKey("pfis.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "truck_number": self.truck_number,
            "driver_name": self.driver_name,
            "driver_phone": self.driver_phone,
            "loading_datetime": to_utc_z(self.loading_datetime),
            "compartments": list(self.compartments or []),
            "delivery_address": self.delivery_address,
            "pfi_id": self.pfi_id,
        }
