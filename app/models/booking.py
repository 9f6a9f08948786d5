from decimal import Decimal
from sqlalchemy import String, Integer, DateTime, Numeric, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

PENDING_PAYMENT = "pending_payment"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
COMPLETED = "completed"
TERMINAL_STATUSES = (CANCELLED, COMPLETED)

REFUND_NOT_APPLICABLE = "not_applicable"
REFUND_PROCESSING = "processing"
REFUND_SUCCESS = "success"
REFUND_FAILED = "failed"

class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_ref: Mapped[str] = mapped_column(String(20), unique=True, index=True)

    user_id: Mapped[str] = mapped_column(String(36), index=True)
    trek_id: Mapped[str] = mapped_column(String(36), index=True)
    batch_id: Mapped[str] = mapped_column(String(36), index=True)

    number_of_participants: Mapped[int] = mapped_column(Integer)

    contact_name: Mapped[str] = mapped_column(String(200), default="")
    contact_email: Mapped[str] = mapped_column(String(320), default="")
    contact_phone: Mapped[str] = mapped_column(String(40), default="")

    add_ons_json: Mapped[str] = mapped_column(Text, default="[]")  # [{"id","name","price"}]
    promo_code: Mapped[str | None] = mapped_column(String(40), nullable=True)

    # Price breakdown, fixed at creation
    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    add_on_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    gateway_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    status: Mapped[str] = mapped_column(String(30), default=PENDING_PAYMENT, index=True)  # pending_payment, confirmed, cancelled, completed
    payment_mode: Mapped[str] = mapped_column(String(10), default="full")  # full|partial

    # Payment details
    payment_order_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    payment_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    payment_signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    initial_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    final_payment_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    final_payment_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Pending-payment window
    session_id: Mapped[str] = mapped_column(String(80), index=True)
    session_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    payment_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_payment_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # True while the batch ledger counts this booking's active participants
    seats_held: Mapped[bool] = mapped_column(Boolean, default=True)

    # Whole-booking refund (participant-level refunds live on booking_participants)
    refund_status: Mapped[str] = mapped_column(String(20), default=REFUND_NOT_APPLICABLE)
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    refund_ref: Mapped[str | None] = mapped_column(String(120), nullable=True)
    refund_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str] = mapped_column(String(500), default="")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
