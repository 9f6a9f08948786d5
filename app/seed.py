import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.db.session import SessionLocal
from app.core.security import hash_password
from app.models.user import User
from app.models.trek import Trek
from app.models.trek_add_on import TrekAddOn
from app.models.batch import Batch
from app.models.promo_code import PromoCode

logger = logging.getLogger(__name__)

DEMO_TREK = "Kedarkantha Winter Trek"


def ensure_user(db: Session, email: str, password: str, role: str, name: str):
    u = db.query(User).filter(User.email == email).first()
    if u:
        return
    db.add(
        User(
            id=str(uuid.uuid4()),
            email=email,
            full_name=name,
            role=role,
            password_hash=hash_password(password),
            is_active=True,
        )
    )
    db.commit()


def ensure_demo_trek(db: Session) -> None:
    if db.query(Trek).filter(Trek.name == DEMO_TREK).first():
        return
    trek = Trek(
        id=str(uuid.uuid4()),
        name=DEMO_TREK,
        partial_payment_enabled=True,
        partial_payment_amount=Decimal("30"),
        partial_payment_amount_type="percentage",
        final_payment_due_days=3,
        gst_percent=Decimal("5"),
        gst_type="excluded",
        gateway_percent=Decimal("2"),
        gateway_type="customer",
    )
    db.add(trek)
    db.add(TrekAddOn(id=str(uuid.uuid4()), trek_id=trek.id, name="Rental backpack", price=Decimal("350")))
    db.add(TrekAddOn(id=str(uuid.uuid4()), trek_id=trek.id, name="Cloak room", price=Decimal("150")))

    # Four weekly departures starting three weeks out
    first = (datetime.now(timezone.utc) + timedelta(days=21)).replace(hour=6, minute=0, second=0, microsecond=0)
    for week in range(4):
        start = first + timedelta(weeks=week)
        db.add(Batch(
            id=str(uuid.uuid4()),
            trek_id=trek.id,
            start_date=start,
            end_date=start + timedelta(days=5),
            price=Decimal("8999"),
            max_participants=20,
            current_participants=0,
        ))

    now = datetime.now(timezone.utc)
    db.add(PromoCode(
        id=str(uuid.uuid4()),
        code="WELCOME10",
        discount_type="percentage",
        discount_value=Decimal("10"),
        max_uses=100,
        valid_from=now,
        valid_until=now + timedelta(days=180),
        min_order_value=Decimal("5000"),
    ))
    db.commit()


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        ensure_user(db, "admin@treks.local", "admin12345", "admin", "Admin")
        ensure_user(db, "customer@treks.local", "customer12345", "customer", "Demo Customer")
        ensure_demo_trek(db)
        logger.info("Seed data ready")
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
