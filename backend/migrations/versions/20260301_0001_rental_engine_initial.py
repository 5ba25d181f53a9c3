"""rental engine initial schema

Revision ID: 20260301_0001
Revises:
Create Date: 2026-03-01

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20260301_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = inspect(bind)
    tables = set(insp.get_table_names())

    if "users" not in tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("display_name", sa.String(length=150), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False, unique=True),
            sa.Column("phone", sa.String(length=20), nullable=True),
            sa.Column("is_verified", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("verified_at", sa.DateTime(), nullable=True),
            sa.Column("account_status", sa.String(length=20), server_default="active", nullable=False),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
        )

    if "items" not in tables:
        op.create_table(
            "items",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("owner_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("category", sa.String(length=50), server_default="other", nullable=False),
            sa.Column("daily_rate", sa.Numeric(10, 2), nullable=False),
            sa.Column("weekly_rate", sa.Numeric(10, 2), nullable=True),
            sa.Column("monthly_rate", sa.Numeric(10, 2), nullable=True),
            sa.Column("security_deposit", sa.Numeric(10, 2), server_default="0", nullable=False),
            sa.Column("delivery_fee", sa.Numeric(10, 2), server_default="0", nullable=False),
            sa.Column("currency", sa.String(length=3), server_default="EGP", nullable=False),
            sa.Column("is_available", sa.Boolean(), server_default=sa.text("1"), nullable=False),
            sa.Column("images", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="RESTRICT"),
        )
        op.create_index("ix_items_owner_id", "items", ["owner_id"], unique=False)

    if "rentals" not in tables:
        op.create_table(
            "rentals",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("item_id", sa.Integer(), nullable=False),
            sa.Column("owner_id", sa.Integer(), nullable=False),
            sa.Column("renter_id", sa.Integer(), nullable=False),
            sa.Column("status", sa.String(length=30), server_default="pending", nullable=False),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("requested_start", sa.DateTime(), nullable=False),
            sa.Column("requested_end", sa.DateTime(), nullable=False),
            sa.Column("confirmed_start", sa.DateTime(), nullable=True),
            sa.Column("confirmed_end", sa.DateTime(), nullable=True),
            sa.Column("actual_start", sa.DateTime(), nullable=True),
            sa.Column("actual_end", sa.DateTime(), nullable=True),
            sa.Column("daily_rate", sa.Numeric(10, 2), nullable=False),
            sa.Column("total_days", sa.Integer(), nullable=False),
            sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
            sa.Column("platform_fee", sa.Numeric(10, 2), nullable=False),
            sa.Column("security_deposit", sa.Numeric(10, 2), server_default="0", nullable=False),
            sa.Column("delivery_fee", sa.Numeric(10, 2), server_default="0", nullable=False),
            sa.Column("total", sa.Numeric(10, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("delivery_method", sa.String(length=30), nullable=True),
            sa.Column("request_message", sa.Text(), nullable=True),
            sa.Column("payment_intent_id", sa.String(length=120), nullable=True),
            sa.Column("payment_status", sa.String(length=20), nullable=True),
            sa.Column("deposit_status", sa.String(length=20), nullable=True),
            sa.Column("payout_status", sa.String(length=20), nullable=True),
            sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
            sa.Column("owner_confirmed", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("owner_confirmed_at", sa.DateTime(), nullable=True),
            sa.Column("renter_confirmed", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("renter_confirmed_at", sa.DateTime(), nullable=True),
            sa.Column("manual_override", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("override_by", sa.Integer(), nullable=True),
            sa.Column("override_reason", sa.String(length=300), nullable=True),
            sa.Column("override_at", sa.DateTime(), nullable=True),
            sa.Column("owner_completed", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("owner_completed_at", sa.DateTime(), nullable=True),
            sa.Column("renter_completed", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("renter_completed_at", sa.DateTime(), nullable=True),
            sa.Column("cancelled_by", sa.String(length=20), nullable=True),
            sa.Column("cancellation_reason", sa.String(length=300), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["item_id"], ["items.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["owner_id"], ["users.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["renter_id"], ["users.id"], ondelete="RESTRICT"),
        )
        op.create_index("ix_rentals_item_id", "rentals", ["item_id"], unique=False)
        op.create_index("ix_rentals_owner_id", "rentals", ["owner_id"], unique=False)
        op.create_index("ix_rentals_renter_id", "rentals", ["renter_id"], unique=False)
        op.create_index("ix_rentals_status", "rentals", ["status"], unique=False)
        op.create_index("ix_rentals_payment_intent_id", "rentals", ["payment_intent_id"], unique=False)

    if "rental_events" not in tables:
        op.create_table(
            "rental_events",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("rental_id", sa.Integer(), nullable=False),
            sa.Column("position", sa.Integer(), nullable=False),
            sa.Column("event", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=60), nullable=False),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["rental_id"], ["rentals.id"], ondelete="CASCADE"),
            sa.UniqueConstraint("rental_id", "position", name="uq_rental_events_position"),
        )

    if "wallet_transactions" not in tables:
        op.create_table(
            "wallet_transactions",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("type", sa.String(length=30), nullable=False),
            sa.Column("availability_status", sa.String(length=10), nullable=True),
            sa.Column("status_changed_at", sa.DateTime(), nullable=True),
            sa.Column("related_rental_id", sa.Integer(), nullable=True),
            sa.Column("related_deposit_id", sa.Integer(), nullable=True),
            sa.Column("description", sa.String(length=300), nullable=True),
            sa.Column("idempotency_key", sa.String(length=120), nullable=True, unique=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["related_rental_id"], ["rentals.id"], ondelete="RESTRICT"),
        )
        op.create_index("ix_wallet_transactions_user_id", "wallet_transactions", ["user_id"], unique=False)
        op.create_index(
            "ix_wallet_transactions_availability_status",
            "wallet_transactions",
            ["availability_status"],
            unique=False,
        )
        op.create_index(
            "ix_wallet_transactions_related_rental_id",
            "wallet_transactions",
            ["related_rental_id"],
            unique=False,
        )

    if "deposits" not in tables:
        op.create_table(
            "deposits",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("rental_id", sa.Integer(), nullable=True, unique=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("amount", sa.Numeric(10, 2), nullable=False),
            sa.Column("currency", sa.String(length=3), nullable=False),
            sa.Column("status", sa.String(length=20), server_default="held", nullable=False),
            sa.Column("partial_amount", sa.Numeric(10, 2), nullable=True),
            sa.Column("hold_reason", sa.String(length=300), nullable=True),
            sa.Column("release_reason", sa.String(length=300), nullable=True),
            sa.Column("settled_by", sa.String(length=60), nullable=True),
            sa.Column("settled_at", sa.DateTime(), nullable=True),
            sa.Column("ledger_entry_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["rental_id"], ["rentals.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["ledger_entry_id"], ["wallet_transactions.id"], ondelete="RESTRICT"),
        )
        op.create_index("ix_deposits_user_id", "deposits", ["user_id"], unique=False)

    if "disputes" not in tables:
        op.create_table(
            "disputes",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("rental_id", sa.Integer(), nullable=False, unique=True),
            sa.Column("status", sa.String(length=20), server_default="open", nullable=False),
            sa.Column("initiated_by", sa.String(length=10), nullable=False),
            sa.Column("initiator_id", sa.Integer(), nullable=False),
            sa.Column("reason", sa.Text(), nullable=False),
            sa.Column("evidence", sa.JSON(), nullable=False),
            sa.Column("raised_from", sa.String(length=30), nullable=False),
            sa.Column("initiated_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.Column("decision", sa.Text(), nullable=True),
            sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
            sa.Column("owner_compensation", sa.Numeric(10, 2), nullable=True),
            sa.Column("resolved_by", sa.Integer(), nullable=True),
            sa.Column("resolved_at", sa.DateTime(), nullable=True),
            sa.ForeignKeyConstraint(["rental_id"], ["rentals.id"], ondelete="RESTRICT"),
        )
        op.create_index("ix_disputes_status", "disputes", ["status"], unique=False)

    if "commission_records" not in tables:
        op.create_table(
            "commission_records",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("rental_id", sa.Integer(), nullable=False, unique=True),
            sa.Column("owner_id", sa.Integer(), nullable=False),
            sa.Column("tier", sa.String(length=20), nullable=False),
            sa.Column("commission_rate", sa.Numeric(5, 4), nullable=False),
            sa.Column("subtotal", sa.Numeric(10, 2), nullable=False),
            sa.Column("platform_fee", sa.Numeric(10, 2), nullable=False),
            sa.Column("net_earnings", sa.Numeric(10, 2), nullable=False),
            sa.Column("minimum_fee_applied", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("maximum_fee_applied", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("settled_by_dispute", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("ledger_entry_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.ForeignKeyConstraint(["rental_id"], ["rentals.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["ledger_entry_id"], ["wallet_transactions.id"], ondelete="RESTRICT"),
        )
        op.create_index("ix_commission_records_owner_id", "commission_records", ["owner_id"], unique=False)

    if "notifications" not in tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("event_type", sa.String(length=60), nullable=False),
            sa.Column("message", sa.String(length=300), nullable=False),
            sa.Column("is_read", sa.Boolean(), server_default=sa.text("0"), nullable=False),
            sa.Column("created_at", sa.DateTime(), server_default=sa.text("CURRENT_TIMESTAMP"), nullable=False),
            sa.Column("event_key", sa.String(length=160), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="RESTRICT"),
        )
        op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
        op.create_index("ix_notifications_is_read", "notifications", ["is_read"], unique=False)
        op.create_index("ix_notifications_created_at", "notifications", ["created_at"], unique=False)
        op.create_index("ix_notifications_event_key", "notifications", ["event_key"], unique=False)


def downgrade():
    bind = op.get_bind()
    insp = inspect(bind)
    tables = set(insp.get_table_names())

    for name in (
        "notifications",
        "commission_records",
        "disputes",
        "deposits",
        "wallet_transactions",
        "rental_events",
        "rentals",
        "items",
        "users",
    ):
        if name in tables:
            op.drop_table(name)
