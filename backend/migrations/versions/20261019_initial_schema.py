"""Initial schema: locations, products, users, bank accounts, PFIs, orders, audit

Revision ID: 20261019_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name, nullable=False):
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=nullable)


def upgrade():
    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("code", sa.String(length=16), nullable=False),
        sa.Column("state_name", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("code", name="uq_locations_code"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("abbreviation", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=True),
        sa.Column("unit_price_kobo", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("abbreviation", name="uq_products_abbreviation"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=128), nullable=True),
        sa.Column("role", sa.String(length=32), nullable=False, server_default="auditor"),
        sa.Column("location_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username", name="uq_users_username"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_username", "users", ["username"], unique=False)

    op.create_table(
        "document_sequences",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("document_type", sa.String(length=32), nullable=False),
        sa.Column("next_number", sa.Integer(), nullable=False, server_default="1"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("document_type", name="uq_doc_sequences_type"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "bank_accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("acct_no", sa.String(length=32), nullable=False),
        sa.Column("bank_name", sa.String(length=128), nullable=False),
        sa.Column("account_name", sa.String(length=128), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        _timestamp("created_at"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("bank_name", "acct_no", name="uq_bank_accounts_bank_acct"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_bank_accounts_location_active", "bank_accounts", ["location_id", "is_active"], unique=False)

    op.create_table(
        "pfis",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("pfi_number", sa.String(length=64), nullable=False),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("starting_qty_litres", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column("notes", sa.String(length=500), nullable=True),
        _timestamp("created_at"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_by_user_id", sa.Integer(), nullable=True),
        sa.CheckConstraint("starting_qty_litres > 0", name="ck_pfis_starting_qty_positive"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["finished_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_pfis_pfi_number", "pfis", ["pfi_number"], unique=False)
    op.create_index("ix_pfis_location_id", "pfis", ["location_id"], unique=False)
    op.create_index("ix_pfis_product_id", "pfis", ["product_id"], unique=False)
    op.create_index("ix_pfis_status_created", "pfis", ["status", "created_at"], unique=False)
    # One active PFI per (location, product); finished rows are unconstrained.
    op.create_index(
        "uq_pfis_active_location_product",
        "pfis",
        ["location_id", "product_id"],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("reference", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("location_id", sa.Integer(), nullable=False),
        sa.Column("customer_name", sa.String(length=128), nullable=True),
        sa.Column("company_name", sa.String(length=128), nullable=True),
        sa.Column("customer_phone", sa.String(length=32), nullable=True),
        sa.Column("release_type", sa.String(length=16), nullable=False, server_default="pickup"),
        sa.Column("quantity_litres", sa.Integer(), nullable=False),
        sa.Column("total_price_kobo", sa.Integer(), nullable=False),
        sa.Column("pfi_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.Column("created_by_user_id", sa.Integer(), nullable=True),
        sa.Column("payment_user_id", sa.Integer(), nullable=True),
        sa.Column("payment_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_narration", sa.String(length=500), nullable=True),
        sa.Column("paid_into_bank_account_id", sa.Integer(), nullable=True),
        sa.Column("paid_into_acct_no", sa.String(length=32), nullable=True),
        sa.Column("paid_into_bank_name", sa.String(length=128), nullable=True),
        sa.Column("paid_into_account_name", sa.String(length=128), nullable=True),
        sa.Column("release_user_id", sa.Integer(), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("truck_exited", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("truck_exit_user_id", sa.Integer(), nullable=True),
        sa.Column("truck_exit_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_by_user_id", sa.Integer(), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(length=255), nullable=True),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
        sa.CheckConstraint("quantity_litres > 0", name="ck_orders_quantity_positive"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["pfi_id"], ["pfis.id"]),
        sa.ForeignKeyConstraint(["created_by_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["payment_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["paid_into_bank_account_id"], ["bank_accounts.id"]),
        sa.ForeignKeyConstraint(["release_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["truck_exit_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["canceled_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("reference", name="uq_orders_reference"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_orders_status", "orders", ["status"], unique=False)
    op.create_index("ix_orders_location_id", "orders", ["location_id"], unique=False)
    op.create_index("ix_orders_pfi_id", "orders", ["pfi_id"], unique=False)
    op.create_index("ix_orders_location_status_created", "orders", ["location_id", "status", "created_at"], unique=False)
    op.create_index("ix_orders_pfi_status", "orders", ["pfi_id", "status"], unique=False)

    op.create_table(
        "order_lines",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("product_id", sa.Integer(), nullable=False),
        sa.Column("quantity_litres", sa.Integer(), nullable=False),
        sa.Column("unit_price_kobo", sa.Integer(), nullable=False),
        sa.Column("line_total_kobo", sa.Integer(), nullable=False),
        sa.CheckConstraint("quantity_litres > 0", name="ck_order_lines_quantity_positive"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_order_lines_order_id", "order_lines", ["order_id"], unique=False)
    op.create_index("ix_order_lines_product_id", "order_lines", ["product_id"], unique=False)

    op.create_table(
        "release_tickets",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("truck_number", sa.String(length=32), nullable=False),
        sa.Column("driver_name", sa.String(length=128), nullable=False),
        sa.Column("driver_phone", sa.String(length=32), nullable=False),
        sa.Column("loading_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("compartments", sa.JSON(), nullable=False),
        sa.Column("delivery_address", sa.String(length=255), nullable=True),
        sa.Column("pfi_id", sa.Integer(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["pfi_id"], ["pfis.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("order_id", name="uq_release_tickets_order"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "order_audit_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("order_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("actor_user_id", sa.Integer(), nullable=False),
        _timestamp("occurred_at"),
        sa.Column("narration", sa.String(length=500), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"]),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_order_audit_events_order_id", "order_audit_events", ["order_id"], unique=False)
    op.create_index("ix_order_audit_events_actor_user_id", "order_audit_events", ["actor_user_id"], unique=False)
    op.create_index("ix_order_audit_events_occurred_at", "order_audit_events", ["occurred_at"], unique=False)
    op.create_index("ix_order_audit_order_occurred", "order_audit_events", ["order_id", "occurred_at"], unique=False)
    op.create_index("ix_order_audit_action_occurred", "order_audit_events", ["action", "occurred_at"], unique=False)


def downgrade():
    op.drop_table("order_audit_events")
    op.drop_table("release_tickets")
    op.drop_table("order_lines")
    op.drop_table("orders")
    op.drop_table("pfis")
    op.drop_table("bank_accounts")
    op.drop_table("document_sequences")
    op.drop_table("users")
    op.drop_table("products")
    op.drop_table("locations")
