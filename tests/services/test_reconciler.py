"""
Tests for the expiry sweep and overdue partial-payment cancellation.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import update

from app.models.booking import Booking
from app.models.failed_booking import FailedBooking
from app.services import booking_service, reconciler
from app.services.refund_policy import as_utc

from conftest import batch_count, book_and_pay, booking_command, make_batch, make_trek, make_user


def _later(minutes=60):
    return datetime.now(timezone.utc) + timedelta(minutes=minutes)


class TestSweepExpiredBookings:
    def test_archives_expired_pending_booking(self, db):
        trek = make_trek(db)
        batch = make_batch(db, trek)
        booking = booking_service.create_booking(db, booking_command(trek, batch, 2), make_user(db))
        booking_id, ref = booking.id, booking.booking_ref

        counts = reconciler.sweep_expired_bookings(db, now=_later())

        assert counts["checked"] == 1
        assert counts["archived"] == 1
        assert counts["session_expired"] == 1
        assert db.get(Booking, booking_id) is None
        fb = db.query(FailedBooking).one()
        assert fb.original_booking_ref == ref
        assert fb.failure_reason == "session_expired"
        assert fb.number_of_participants == 2
        assert batch_count(db, batch.id) == 0

    def test_second_sweep_does_nothing(self, db):
        trek = make_trek(db)
        batch = make_batch(db, trek)
        booking_service.create_booking(db, booking_command(trek, batch, 1), make_user(db))

        reconciler.sweep_expired_bookings(db, now=_later())
        counts = reconciler.sweep_expired_bookings(db, now=_later())

        assert counts["checked"] == 0
        assert db.query(FailedBooking).count() == 1
        assert batch_count(db, batch.id) == 0

    def test_live_session_is_kept(self, db):
        trek = make_trek(db)
        batch = make_batch(db, trek)
        booking_service.create_booking(db, booking_command(trek, batch, 1), make_user(db))

        counts = reconciler.sweep_expired_bookings(db, now=_later(5))
        assert counts["checked"] == 0
        assert db.query(Booking).count() == 1

    def test_confirmed_booking_is_never_archived(self, db, gateway):
        trek = make_trek(db)
        batch = make_batch(db, trek)
        book_and_pay(db, gateway, make_user(db), trek, batch, 1)

        counts = reconciler.sweep_expired_bookings(db, now=_later())
        assert counts["checked"] == 0
        assert db.query(Booking).one().status == "confirmed"
        assert batch_count(db, batch.id) == 1

    def test_exhausted_attempts_archived_as_payment_failed(self, db):
        trek = make_trek(db)
        batch = make_batch(db, trek)
        booking = booking_service.create_booking(db, booking_command(trek, batch, 1), make_user(db))
        db.execute(update(Booking).where(Booking.id == booking.id).values(payment_attempts=3))
        db.commit()

        counts = reconciler.sweep_expired_bookings(db, now=_later())
        assert counts["payment_failed"] == 1
        assert db.query(FailedBooking).one().failure_reason == "payment_failed"

    def test_one_bad_booking_does_not_stop_the_sweep(self, db, monkeypatch):
        trek = make_trek(db)
        batch = make_batch(db, trek)
        for _ in range(2):
            booking_service.create_booking(db, booking_command(trek, batch, 1), make_user(db))

        real_archive = reconciler.archive_booking
        calls = []

        def _flaky(session, booking, *args, **kwargs):
            calls.append(booking.id)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return real_archive(session, booking, *args, **kwargs)

        monkeypatch.setattr(reconciler, "archive_booking", _flaky)
        counts = reconciler.sweep_expired_bookings(db, now=_later())

        assert counts["errors"] == 1
        assert counts["archived"] == 1
        assert db.query(Booking).count() == 1


class TestArchiveBooking:
    def test_non_pending_booking_is_left_alone(self, db, gateway):
        trek = make_trek(db)
        batch = make_batch(db, trek)
        booking = book_and_pay(db, gateway, make_user(db), trek, batch, 1)

        assert reconciler.archive_booking(db, booking, "session_expired") is None
        assert db.query(FailedBooking).count() == 0
        assert batch_count(db, batch.id) == 1


class TestOverduePartialPayments:
    def _partial_trek(self, db, auto_cancel=True):
        return make_trek(
            db,
            partial_payment_enabled=True,
            partial_payment_amount=Decimal("500"),
            partial_payment_amount_type="fixed",
            final_payment_due_days=3,
            auto_cancel_on_due_date=auto_cancel,
        )

    def test_overdue_balance_cancelled_without_refund(self, db, gateway):
        trek = self._partial_trek(db)
        batch = make_batch(db, trek)
        booking = book_and_pay(db, gateway, make_user(db), trek, batch, 2, paymentMode="partial")
        after_due = as_utc(booking.due_date) + timedelta(hours=1)

        result = reconciler.auto_cancel_overdue_partial_payments(db, gateway, now=after_due)

        assert result == {"checked": 1, "cancelled": 1, "errors": 0}
        booking = booking_service.get_booking(db, booking.id)
        assert booking.status == "cancelled"
        assert booking.refund_status == "not_applicable"
        assert gateway.refunds == []
        assert batch_count(db, batch.id) == 0

    def test_not_yet_due_is_kept(self, db, gateway):
        trek = self._partial_trek(db)
        batch = make_batch(db, trek)
        booking = book_and_pay(db, gateway, make_user(db), trek, batch, 1, paymentMode="partial")

        result = reconciler.auto_cancel_overdue_partial_payments(db, gateway, now=as_utc(booking.due_date) - timedelta(hours=1))
        assert result["checked"] == 0

    def test_trek_without_auto_cancel_is_skipped(self, db, gateway):
        trek = self._partial_trek(db, auto_cancel=False)
        batch = make_batch(db, trek)
        booking = book_and_pay(db, gateway, make_user(db), trek, batch, 1, paymentMode="partial")

        result = reconciler.auto_cancel_overdue_partial_payments(db, gateway, now=as_utc(booking.due_date) + timedelta(days=1))
        assert result["checked"] == 0
        assert booking_service.get_booking(db, booking.id).status == "confirmed"
