"""Sweeps unpaid bookings whose session has run out into the failed-booking archive.

Archiving deletes the live booking with a conditional DELETE on
``status = 'pending_payment'``, so running the sweep twice, or racing it with
a payment confirmation, cannot archive a booking twice or archive a paid one.
"""
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.booking import Booking, CONFIRMED, PENDING_PAYMENT
from app.models.failed_booking import FailedBooking, PAYMENT_FAILED, SESSION_EXPIRED
from app.models.participant import BookingParticipant
from app.models.trek import Trek
from app.schemas.booking import CancelBookingCommand
from app.services.audit_service import log_audit
from app.services.booking_service import cancel_booking
from app.services.capacity_service import release_seats

logger = logging.getLogger(__name__)


def _participant_snapshot(p: BookingParticipant) -> dict:
    return {
        "name": p.name,
        "age": p.age,
        "gender": p.gender,
        "contactNumber": p.contact_number,
        "medicalConditions": p.medical_conditions,
        "specialRequests": p.special_requests,
        "isCancelled": bool(p.is_cancelled),
    }


def archive_booking(db: Session, booking: Booking, reason: str, details: str = "", archived_by: str = "system", actor: str | None = None) -> FailedBooking | None:
    """Snapshot a pending booking into failed_bookings, give back its seats and delete it.

    Returns None if the booking was no longer pending (someone else got there first).
    """
    participants = (
        db.query(BookingParticipant)
        .filter(BookingParticipant.booking_id == booking.id)
        .order_by(BookingParticipant.position.asc())
        .all()
    )
    active = [p for p in participants if not p.is_cancelled]
    booking_id, booking_ref, batch_id, seats_held = booking.id, booking.booking_ref, booking.batch_id, booking.seats_held

    fb = FailedBooking(
        id=str(uuid.uuid4()),
        original_booking_id=booking_id,
        original_booking_ref=booking_ref,
        user_id=booking.user_id,
        trek_id=booking.trek_id,
        batch_id=batch_id,
        number_of_participants=len(active) or booking.number_of_participants,
        contact_name=booking.contact_name,
        contact_email=booking.contact_email,
        contact_phone=booking.contact_phone,
        participants_json=json.dumps([_participant_snapshot(p) for p in active]),
        add_ons_json=booking.add_ons_json,
        promo_code=booking.promo_code,
        payment_mode=booking.payment_mode,
        base_amount=booking.base_amount,
        add_on_amount=booking.add_on_amount,
        discount_amount=booking.discount_amount,
        tax_amount=booking.tax_amount,
        gateway_fee=booking.gateway_fee,
        total_price=booking.total_price,
        initial_amount=booking.initial_amount,
        due_date=booking.due_date,
        session_id=booking.session_id,
        session_expires_at=booking.session_expires_at,
        payment_attempts=booking.payment_attempts or 0,
        last_payment_attempt=booking.last_payment_attempt,
        payment_order_id=booking.payment_order_id,
        failure_reason=reason,
        failure_details=(details or "")[:500],
        original_created_at=booking.created_at,
        original_expires_at=booking.session_expires_at,
        archived_by=archived_by,
    )

    res = db.execute(
        delete(Booking)
        .where(Booking.id == booking_id, Booking.status == PENDING_PAYMENT)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        db.rollback()
        logger.info("Booking %s is no longer pending, not archived", booking_ref)
        return None
    db.execute(delete(BookingParticipant).where(BookingParticipant.booking_id == booking_id).execution_options(synchronize_session=False))
    if seats_held and active:
        release_seats(db, batch_id, len(active), actor or archived_by)
    db.add(fb)
    log_audit(db, actor or archived_by, "booking.archive", "booking", booking_id, {"reason": reason, "failed_booking_id": fb.id})
    db.commit()
    for obj in [booking, *participants]:
        if obj in db:
            db.expunge(obj)
    logger.info("Booking %s archived as %s", booking_ref, reason)
    return fb


def _expired_filter(now: datetime):
    stale_before = now - timedelta(minutes=settings.BOOKING_SESSION_MINUTES)
    return and_(
        Booking.status == PENDING_PAYMENT,
        or_(
            and_(Booking.session_expires_at.isnot(None), Booking.session_expires_at < now),
            and_(Booking.session_expires_at.is_(None), Booking.created_at < stale_before),
        ),
    )


def sweep_expired_bookings(db: Session, now: datetime | None = None) -> dict:
    """Archive every pending booking whose payment window has closed. Safe to re-run."""
    now = now or datetime.now(timezone.utc)
    ids = db.scalars(select(Booking.id).where(_expired_filter(now))).all()
    counts = {"checked": len(ids), "archived": 0, SESSION_EXPIRED: 0, PAYMENT_FAILED: 0, "errors": 0}
    for booking_id in ids:
        try:
            booking = db.get(Booking, booking_id, populate_existing=True)
            if booking is None or booking.status != PENDING_PAYMENT:
                continue
            exhausted = (booking.payment_attempts or 0) >= settings.MAX_PAYMENT_ATTEMPTS
            reason = PAYMENT_FAILED if exhausted else SESSION_EXPIRED
            details = (
                f"Payment failed after {booking.payment_attempts} attempts"
                if exhausted
                else "Booking session expired without payment"
            )
            if archive_booking(db, booking, reason, details=details, archived_by="system") is not None:
                counts["archived"] += 1
                counts[reason] += 1
        except Exception:
            db.rollback()
            counts["errors"] += 1
            logger.exception("Failed to archive expired booking %s", booking_id)
    if ids:
        logger.info("Expiry sweep: %s", counts)
    return counts


def auto_cancel_overdue_partial_payments(db: Session, gateway=None, now: datetime | None = None) -> dict:
    """Cancel confirmed partial-payment bookings whose balance is past due (no refund)."""
    now = now or datetime.now(timezone.utc)
    rows = db.execute(
        select(Booking.id, Booking.booking_ref)
        .join(Trek, Trek.id == Booking.trek_id)
        .where(
            Booking.status == CONFIRMED,
            Booking.payment_mode == "partial",
            Booking.remaining_amount > Decimal("0"),
            Booking.due_date.isnot(None),
            Booking.due_date < now,
            Trek.auto_cancel_on_due_date.is_(True),
        )
    ).all()
    cmd = CancelBookingCommand(refund=False, reason="Remaining payment not received by the due date")
    cancelled, errors = 0, 0
    for booking_id, booking_ref in rows:
        try:
            cancel_booking(db, booking_id, cmd, gateway, actor="system", now=now)
            cancelled += 1
        except Exception:
            db.rollback()
            errors += 1
            logger.exception("Failed to auto-cancel overdue booking %s", booking_ref)
    if rows:
        logger.info("Overdue partial payments: %s cancelled, %s errors", cancelled, errors)
    return {"checked": len(rows), "cancelled": cancelled, "errors": errors}
