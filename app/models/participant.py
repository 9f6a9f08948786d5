from decimal import Decimal
from sqlalchemy import String, Integer, DateTime, Numeric, Boolean, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class BookingParticipant(Base):
    __tablename__ = "booking_participants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_id: Mapped[str] = mapped_column(String(36), index=True)
    position: Mapped[int] = mapped_column(Integer, default=0)  # order within the booking

    name: Mapped[str] = mapped_column(String(200))
    age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    gender: Mapped[str] = mapped_column(String(20), default="")  # Male|Female|Other
    contact_number: Mapped[str] = mapped_column(String(40), default="")
    medical_conditions: Mapped[str] = mapped_column(Text, default="")
    special_requests: Mapped[str] = mapped_column(Text, default="")

    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[str] = mapped_column(String(500), default="")

    refund_status: Mapped[str] = mapped_column(String(20), default="not_applicable")  # not_applicable, processing, success, failed
    refund_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    refund_ref: Mapped[str | None] = mapped_column(String(120), nullable=True)
    refund_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
