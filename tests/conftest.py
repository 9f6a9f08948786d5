import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Settings are read at import time; point the app at a throwaway SQLite file first.
_tmpdir = tempfile.mkdtemp(prefix="trekbookings-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_tmpdir}/test.db"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ["PAYMENT_SANDBOX"] = "false"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test"

import pytest

import app.db.base  # noqa: F401
from app.db.session import Base, SessionLocal, engine
from app.core.security import create_access_token, hash_password
from app.models.batch import Batch
from app.models.trek import Trek
from app.models.user import User
from app.schemas.booking import ConfirmPaymentCommand, ContactInfo, CreateBookingCommand, ParticipantIn
from app.services import booking_service, email_service
from app.services.payment_gateway import RefundResult


class FakeGateway:
    """Records calls; outcomes are set per test."""

    def __init__(self):
        self.verify_result = True
        self.verify_error: Exception | None = None
        self.refund_result = RefundResult(success=True, refund_ref="rfnd_test")
        self.refund_error: Exception | None = None
        self.orders = []
        self.verify_calls = []
        self.refunds = []

    def create_order(self, amount, currency, receipt):
        self.orders.append((amount, currency, receipt))
        return f"order_{len(self.orders)}"

    def verify_payment(self, order_ref, payment_ref, signature, expected_amount):
        self.verify_calls.append((order_ref, payment_ref, signature, expected_amount))
        if self.verify_error is not None:
            raise self.verify_error
        return self.verify_result

    def refund(self, payment_ref, amount):
        self.refunds.append((payment_ref, amount))
        if self.refund_error is not None:
            raise self.refund_error
        return self.refund_result


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture(autouse=True)
def sent_emails(monkeypatch):
    sent = []

    def _fake_send(to_email, subject, body, attachments):
        sent.append({"to": to_email, "subject": subject, "body": body})

    monkeypatch.setattr(email_service, "send_email", _fake_send)
    return sent


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway():
    return FakeGateway()


def make_user(db, role: str = "customer", email: str | None = None) -> User:
    u = User(
        id=str(uuid.uuid4()),
        email=email or f"{uuid.uuid4().hex[:8]}@treks.local",
        full_name="Test User",
        role=role,
        password_hash=hash_password("password123"),
        is_active=True,
    )
    db.add(u)
    db.commit()
    return u


def make_trek(db, **overrides) -> Trek:
    values = dict(id=str(uuid.uuid4()), name="Hampta Pass", is_enabled=True)
    values.update(overrides)
    trek = Trek(**values)
    db.add(trek)
    db.commit()
    return trek


def make_batch(db, trek: Trek, max_participants: int = 10, current: int = 0, price="1000",
               start_in_days: float = 20, status: str = "active") -> Batch:
    start = datetime.now(timezone.utc) + timedelta(days=start_in_days)
    batch = Batch(
        id=str(uuid.uuid4()),
        trek_id=trek.id,
        start_date=start,
        end_date=start + timedelta(days=4),
        price=Decimal(price),
        max_participants=max_participants,
        current_participants=current,
        status=status,
    )
    db.add(batch)
    db.commit()
    return batch


def booking_command(trek: Trek, batch: Batch, participants: int = 1, **overrides) -> CreateBookingCommand:
    values = dict(
        trekId=trek.id,
        batchId=batch.id,
        participants=participants,
        contactInfo=ContactInfo(name="Asha Rao", email="asha@treks.local", phone="9999999999"),
        participantDetails=[ParticipantIn(name=f"Trekker {i + 1}", age=30) for i in range(participants)],
    )
    values.update(overrides)
    return CreateBookingCommand(**values)


def confirm_command(booking, payment_id: str = "pay_1", order_id: str = "order_1") -> ConfirmPaymentCommand:
    return ConfirmPaymentCommand(bookingId=booking.id, orderId=order_id, paymentId=payment_id, signature="sig")


def book_and_pay(db, gateway, user, trek, batch, participants: int = 1, payment_id: str = "pay_1", **overrides):
    booking = booking_service.create_booking(db, booking_command(trek, batch, participants, **overrides), user)
    return booking_service.confirm_payment(db, confirm_command(booking, payment_id), gateway)


def batch_count(db, batch_id: str) -> int:
    return db.get(Batch, batch_id, populate_existing=True).current_participants


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
