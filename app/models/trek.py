from decimal import Decimal
from sqlalchemy import String, Integer, Boolean, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class Trek(Base):
    __tablename__ = "treks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(200))
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Partial payment policy
    partial_payment_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    partial_payment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    partial_payment_amount_type: Mapped[str] = mapped_column(String(12), default="fixed")  # fixed|percentage
    final_payment_due_days: Mapped[int] = mapped_column(Integer, default=3)
    auto_cancel_on_due_date: Mapped[bool] = mapped_column(Boolean, default=True)

    # Tax and gateway surcharge policy
    gst_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    gst_type: Mapped[str] = mapped_column(String(10), default="excluded")  # included|excluded
    gateway_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    gateway_type: Mapped[str] = mapped_column(String(10), default="customer")  # customer|self

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
