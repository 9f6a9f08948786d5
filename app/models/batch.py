from decimal import Decimal
from sqlalchemy import String, Integer, DateTime, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class Batch(Base):
    __tablename__ = "batches"
    __table_args__ = (
        CheckConstraint(
            "current_participants >= 0 AND current_participants <= max_participants",
            name="ck_batches_capacity",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    trek_id: Mapped[str] = mapped_column(String(36), index=True)

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    # Capacity ledger; only mutated through app.services.capacity_service
    max_participants: Mapped[int] = mapped_column(Integer)
    current_participants: Mapped[int] = mapped_column(Integer, default=0)

    status: Mapped[str] = mapped_column(String(12), default="active")  # active|closed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    @property
    def remaining(self) -> int:
        return max(int(self.max_participants) - int(self.current_participants or 0), 0)
