"""initial

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17

"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def _money(name: str, nullable: bool = False):
    if nullable:
        return sa.Column(name, sa.Numeric(12, 2), nullable=True)
    return sa.Column(name, sa.Numeric(12, 2), nullable=False, server_default="0")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("role", sa.String(length=30), nullable=False, server_default="customer"),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "treks",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("partial_payment_enabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _money("partial_payment_amount"),
        sa.Column("partial_payment_amount_type", sa.String(length=12), nullable=False, server_default="fixed"),
        sa.Column("final_payment_due_days", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("auto_cancel_on_due_date", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("gst_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("gst_type", sa.String(length=10), nullable=False, server_default="excluded"),
        sa.Column("gateway_percent", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("gateway_type", sa.String(length=10), nullable=False, server_default="customer"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "trek_add_ons",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("trek_id", sa.String(length=36), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        _money("price"),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_trek_add_ons_trek_id", "trek_add_ons", ["trek_id"], unique=False)

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("discount_type", sa.String(length=12), nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
        _money("min_order_value"),
        sa.Column("trek_id", sa.String(length=36), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_promo_codes_code", "promo_codes", ["code"], unique=True)

    op.create_table(
        "batches",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("trek_id", sa.String(length=36), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("current_participants", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=12), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "current_participants >= 0 AND current_participants <= max_participants",
            name="ck_batches_capacity",
        ),
    )
    op.create_index("ix_batches_trek_id", "batches", ["trek_id"], unique=False)

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_ref", sa.String(length=20), nullable=False),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("trek_id", sa.String(length=36), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=False),
        sa.Column("number_of_participants", sa.Integer(), nullable=False),
        sa.Column("contact_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("contact_email", sa.String(length=320), nullable=False, server_default=""),
        sa.Column("contact_phone", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("add_ons_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("promo_code", sa.String(length=40), nullable=True),
        _money("base_amount"),
        _money("add_on_amount"),
        _money("discount_amount"),
        _money("tax_amount"),
        _money("gateway_fee"),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending_payment"),
        sa.Column("payment_mode", sa.String(length=10), nullable=False, server_default="full"),
        sa.Column("payment_order_id", sa.String(length=120), nullable=True),
        sa.Column("payment_id", sa.String(length=120), nullable=True),
        sa.Column("payment_signature", sa.String(length=255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        _money("amount_paid"),
        _money("initial_amount", nullable=True),
        _money("remaining_amount"),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_payment_id", sa.String(length=120), nullable=True),
        sa.Column("final_payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_id", sa.String(length=80), nullable=False),
        sa.Column("session_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_payment_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("seats_held", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("refund_status", sa.String(length=20), nullable=False, server_default="not_applicable"),
        _money("refund_amount"),
        sa.Column("refund_ref", sa.String(length=120), nullable=True),
        sa.Column("refund_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bookings_booking_ref", "bookings", ["booking_ref"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"], unique=False)
    op.create_index("ix_bookings_trek_id", "bookings", ["trek_id"], unique=False)
    op.create_index("ix_bookings_batch_id", "bookings", ["batch_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_payment_id", "bookings", ["payment_id"], unique=False)
    op.create_index("ix_bookings_session_id", "bookings", ["session_id"], unique=False)
    op.create_index("ix_bookings_session_expires_at", "bookings", ["session_expires_at"], unique=False)

    op.create_table(
        "booking_participants",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("booking_id", sa.String(length=36), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("gender", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("contact_number", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("medical_conditions", sa.Text(), nullable=False, server_default=""),
        sa.Column("special_requests", sa.Text(), nullable=False, server_default=""),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("refund_status", sa.String(length=20), nullable=False, server_default="not_applicable"),
        _money("refund_amount"),
        sa.Column("refund_ref", sa.String(length=120), nullable=True),
        sa.Column("refund_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_booking_participants_booking_id", "booking_participants", ["booking_id"], unique=False)

    op.create_table(
        "failed_bookings",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("original_booking_id", sa.String(length=36), nullable=False),
        sa.Column("original_booking_ref", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("user_id", sa.String(length=36), nullable=False),
        sa.Column("trek_id", sa.String(length=36), nullable=False),
        sa.Column("batch_id", sa.String(length=36), nullable=False),
        sa.Column("number_of_participants", sa.Integer(), nullable=False),
        sa.Column("contact_name", sa.String(length=200), nullable=False, server_default=""),
        sa.Column("contact_email", sa.String(length=320), nullable=False, server_default=""),
        sa.Column("contact_phone", sa.String(length=40), nullable=False, server_default=""),
        sa.Column("participants_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("add_ons_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("promo_code", sa.String(length=40), nullable=True),
        sa.Column("payment_mode", sa.String(length=10), nullable=False, server_default="full"),
        _money("base_amount"),
        _money("add_on_amount"),
        _money("discount_amount"),
        _money("tax_amount"),
        _money("gateway_fee"),
        sa.Column("total_price", sa.Numeric(12, 2), nullable=False),
        _money("initial_amount", nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("session_id", sa.String(length=80), nullable=False, server_default=""),
        sa.Column("session_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_payment_attempt", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_order_id", sa.String(length=120), nullable=True),
        sa.Column("failure_reason", sa.String(length=30), nullable=False, server_default="session_expired"),
        sa.Column("failure_details", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("original_created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("original_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_by", sa.String(length=12), nullable=False, server_default="system"),
    )
    op.create_index("ix_failed_bookings_original_booking_id", "failed_bookings", ["original_booking_id"], unique=False)
    op.create_index("ix_failed_bookings_user_id", "failed_bookings", ["user_id"], unique=False)
    op.create_index("ix_failed_bookings_trek_id", "failed_bookings", ["trek_id"], unique=False)
    op.create_index("ix_failed_bookings_batch_id", "failed_bookings", ["batch_id"], unique=False)
    op.create_index("ix_failed_bookings_failure_reason", "failed_bookings", ["failure_reason"], unique=False)
    op.create_index("ix_failed_bookings_archived_at", "failed_bookings", ["archived_at"], unique=False)

    op.create_table(
        "email_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("to_email", sa.String(length=320), nullable=False),
        sa.Column("subject", sa.String(length=200), nullable=False),
        sa.Column("body", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.String(length=500), nullable=False, server_default=""),
        sa.Column("related_booking_ref", sa.String(length=20), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_email_logs_to_email", "email_logs", ["to_email"], unique=False)
    op.create_index("ix_email_logs_status", "email_logs", ["status"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("actor", sa.String(length=64), nullable=False),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("entity_id", sa.String(length=36), nullable=False),
        sa.Column("details_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_actor", "audit_logs", ["actor"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"], unique=False)
    op.create_index("ix_audit_logs_entity_id", "audit_logs", ["entity_id"], unique=False)


def downgrade() -> None:
    for table in (
        "audit_logs",
        "email_logs",
        "failed_bookings",
        "booking_participants",
        "bookings",
        "batches",
        "promo_codes",
        "trek_add_ons",
        "treks",
        "users",
    ):
        op.drop_table(table)
