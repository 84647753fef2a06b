from __future__ import annotations

from ..extensions import db
from fuelops.time_utils import to_utc_z


class OrderAuditEvent(db.Model):
    """
    Append-only record of one successful order transition.

    Written in the same DB transaction as the transition it records; never
    updated or deleted. Failed or conflicting attempts write nothing.
    """
    __tablename__ = "order_audit_events"
    __table_args__ = (
        db.Index("ix_order_audit_order_occurred", "order_id", "occurred_at"),
        db.Index("ix_order_audit_action_occurred", "action", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # payment_confirmation | release | truck_exit | cancel | pfi_assignment
    action = db.Column(db.String(32), nullable=False)

    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    narration = db.Column(db.String(500), nullable=True)

    # Small structured context (pfi id, truck number, bank snapshot, ...)
    payload = db.Column(db.JSON, nullable=True)

    order = db.relationship("Order")
    actor = db.relationship("User")

    def to_dict(self, *, include_order: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "action": self.action,
            "timestamp": to_utc_z(self.occurred_at),
            "actor": self.actor.actor_dict() if self.actor else {"id": self.actor_user_id},
            "narration": self.narration,
            "metadata": dict(self.payload or {}),
        }
        if include_order and self.order is not None:
            data["order"] = self.order.summary_dict()
        return data
