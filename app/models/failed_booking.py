from decimal import Decimal
from sqlalchemy import String, Integer, DateTime, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

SESSION_EXPIRED = "session_expired"
PAYMENT_FAILED = "payment_failed"
USER_CANCELLED = "user_cancelled"
SYSTEM_ERROR = "system_error"
FAILURE_REASONS = (SESSION_EXPIRED, PAYMENT_FAILED, USER_CANCELLED, SYSTEM_ERROR)

class FailedBooking(Base):
    __tablename__ = "failed_bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    original_booking_id: Mapped[str] = mapped_column(String(36), index=True)
    original_booking_ref: Mapped[str] = mapped_column(String(20), default="")

    user_id: Mapped[str] = mapped_column(String(36), index=True)
    trek_id: Mapped[str] = mapped_column(String(36), index=True)
    batch_id: Mapped[str] = mapped_column(String(36), index=True)
    number_of_participants: Mapped[int] = mapped_column(Integer)

    contact_name: Mapped[str] = mapped_column(String(200), default="")
    contact_email: Mapped[str] = mapped_column(String(320), default="")
    contact_phone: Mapped[str] = mapped_column(String(40), default="")

    participants_json: Mapped[str] = mapped_column(Text, default="[]")
    add_ons_json: Mapped[str] = mapped_column(Text, default="[]")
    promo_code: Mapped[str | None] = mapped_column(String(40), nullable=True)
    payment_mode: Mapped[str] = mapped_column(String(10), default="full")

    base_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    add_on_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    gateway_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    initial_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    session_id: Mapped[str] = mapped_column(String(80), default="")
    session_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_payment_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_order_id: Mapped[str | None] = mapped_column(String(120), nullable=True)

    failure_reason: Mapped[str] = mapped_column(String(30), default=SESSION_EXPIRED, index=True)
    failure_details: Mapped[str] = mapped_column(String(500), default="")

    original_created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    original_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), index=True)
    archived_by: Mapped[str] = mapped_column(String(12), default="system")  # system|admin|user
