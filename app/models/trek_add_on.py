from decimal import Decimal
from sqlalchemy import String, Boolean, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base

class TrekAddOn(Base):
    __tablename__ = "trek_add_ons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    trek_id: Mapped[str] = mapped_column(String(36), index=True)
    name: Mapped[str] = mapped_column(String(120))
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))  # per participant
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
