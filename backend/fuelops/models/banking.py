from __future__ import annotations

from ..extensions import db
from fuelops.time_utils import to_utc_z


class BankAccount(db.Model):
    """
    Settlement account customers pay into.

    location_id NULL means a general account usable from every location.
    Orders snapshot the account details at payment confirmation, so editing
    or deactivating an account never rewrites payment history.
    """
    __tablename__ = "bank_accounts"
    __table_args__ = (
        db.UniqueConstraint("bank_name", "acct_no", name="uq_bank_accounts_bank_acct"),
        db.Index("ix_bank_accounts_location_active", "location_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    acct_no = db.Column(db.String(32), nullable=False)
    bank_name = db.Column(db.String(128), nullable=False)
    account_name = db.Column(db.String(128), nullable=False)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "acct_no": self.acct_no,
            "bank_name": self.bank_name,
            "account_name": self.account_name,
            "location_id": self.location_id,
            "location_name": self.location.name if self.location else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
