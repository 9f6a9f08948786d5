import csv
import io
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import delete, func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import BatchFull, NotFound, ValidationError
from app.models.batch import Batch
from app.models.booking import Booking, PENDING_PAYMENT, REFUND_NOT_APPLICABLE
from app.models.failed_booking import FailedBooking, FAILURE_REASONS
from app.models.participant import BookingParticipant
from app.services.audit_service import log_audit
from app.services.booking_service import make_booking_ref, make_session_id
from app.services.refund_policy import quantize_money

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "original_booking_ref",
    "failure_reason",
    "failure_details",
    "contact_name",
    "contact_email",
    "contact_phone",
    "trek_id",
    "batch_id",
    "number_of_participants",
    "total_price",
    "payment_mode",
    "payment_attempts",
    "original_created_at",
    "archived_at",
    "archived_by",
]


def _filtered(db: Session, failure_reason: str | None = None, start_date: datetime | None = None, end_date: datetime | None = None):
    q = db.query(FailedBooking)
    if failure_reason:
        if failure_reason not in FAILURE_REASONS:
            raise ValidationError(f"unknown failure reason: {failure_reason}")
        q = q.filter(FailedBooking.failure_reason == failure_reason)
    if start_date:
        q = q.filter(FailedBooking.archived_at >= start_date)
    if end_date:
        q = q.filter(FailedBooking.archived_at <= end_date)
    return q


def failed_booking_stats(db: Session, **filters) -> dict:
    q = _filtered(db, **filters)
    total, total_value = q.with_entities(func.count(FailedBooking.id), func.coalesce(func.sum(FailedBooking.total_price), 0)).one()
    by_reason = dict(
        q.with_entities(FailedBooking.failure_reason, func.count(FailedBooking.id))
        .group_by(FailedBooking.failure_reason)
        .all()
    )
    total_value = quantize_money(total_value or 0)
    return {
        "totalFailed": int(total or 0),
        "totalValue": total_value,
        "averageValue": quantize_money(total_value / total) if total else Decimal("0.00"),
        "byReason": {reason: int(by_reason.get(reason, 0)) for reason in FAILURE_REASONS},
    }


def list_failed_bookings(db: Session, failure_reason: str | None = None, start_date: datetime | None = None, end_date: datetime | None = None, limit: int = 50, offset: int = 0) -> tuple[list[FailedBooking], dict]:
    filters = {"failure_reason": failure_reason, "start_date": start_date, "end_date": end_date}
    rows = _filtered(db, **filters).order_by(FailedBooking.archived_at.desc()).offset(offset).limit(limit).all()
    return rows, failed_booking_stats(db, **filters)


def get_failed_booking(db: Session, failed_booking_id: str) -> FailedBooking:
    fb = db.get(FailedBooking, failed_booking_id)
    if not fb:
        raise NotFound("Failed booking not found")
    return fb


def restore_failed_booking(db: Session, failed_booking_id: str, actor: str = "admin", now: datetime | None = None) -> Booking:
    """Turn an archived booking back into a live pending_payment booking.

    Capacity is checked against the batch as it is now, but nothing is taken
    from the ledger: seats are acquired again when the payment is confirmed.
    """
    now = now or datetime.now(timezone.utc)
    fb = get_failed_booking(db, failed_booking_id)
    batch = db.get(Batch, fb.batch_id, populate_existing=True)
    if not batch:
        raise NotFound("Batch not found")
    n = fb.number_of_participants
    if batch.current_participants + n > batch.max_participants:
        raise BatchFull("Cannot restore booking: batch is now full", remaining=batch.remaining)

    ref = fb.original_booking_ref
    if not ref or db.query(Booking.id).filter(Booking.booking_ref == ref).first():
        ref = make_booking_ref()

    booking_id = str(uuid.uuid4())
    db.add(Booking(
        id=booking_id,
        booking_ref=ref,
        user_id=fb.user_id,
        trek_id=fb.trek_id,
        batch_id=fb.batch_id,
        number_of_participants=n,
        contact_name=fb.contact_name,
        contact_email=fb.contact_email,
        contact_phone=fb.contact_phone,
        add_ons_json=fb.add_ons_json,
        promo_code=fb.promo_code,
        base_amount=fb.base_amount,
        add_on_amount=fb.add_on_amount,
        discount_amount=fb.discount_amount,
        tax_amount=fb.tax_amount,
        gateway_fee=fb.gateway_fee,
        total_price=fb.total_price,
        status=PENDING_PAYMENT,
        payment_mode=fb.payment_mode,
        amount_paid=Decimal("0"),
        initial_amount=fb.initial_amount,
        remaining_amount=(fb.total_price - fb.initial_amount) if fb.initial_amount is not None else Decimal("0"),
        due_date=fb.due_date,
        session_id=make_session_id("restored_"),
        session_expires_at=now + timedelta(minutes=settings.BOOKING_SESSION_MINUTES),
        payment_attempts=0,
        seats_held=False,
        refund_status=REFUND_NOT_APPLICABLE,
    ))
    for i, p in enumerate(json.loads(fb.participants_json or "[]")):
        db.add(BookingParticipant(
            id=str(uuid.uuid4()),
            booking_id=booking_id,
            position=i,
            name=p.get("name", ""),
            age=p.get("age"),
            gender=p.get("gender") or "",
            contact_number=p.get("contactNumber") or "",
            medical_conditions=p.get("medicalConditions") or "",
            special_requests=p.get("specialRequests") or "",
            refund_status=REFUND_NOT_APPLICABLE,
        ))

    res = db.execute(delete(FailedBooking).where(FailedBooking.id == fb.id).execution_options(synchronize_session=False))
    if res.rowcount == 0:
        db.rollback()
        raise NotFound("Failed booking not found")
    log_audit(db, actor, "failed_booking.restore", "failed_booking", fb.id, {"booking_id": booking_id, "booking_ref": ref})
    db.commit()
    db.expunge(fb)
    logger.info("Failed booking %s restored as booking %s", failed_booking_id, ref)
    return db.get(Booking, booking_id)


def delete_failed_booking(db: Session, failed_booking_id: str, actor: str = "admin") -> None:
    fb = get_failed_booking(db, failed_booking_id)
    ref = fb.original_booking_ref
    db.delete(fb)
    log_audit(db, actor, "failed_booking.delete", "failed_booking", failed_booking_id, {"booking_ref": ref})
    db.commit()
    logger.info("Failed booking %s (%s) deleted by %s", failed_booking_id, ref, actor)


def export_failed_bookings_csv(db: Session, failure_reason: str | None = None, start_date: datetime | None = None, end_date: datetime | None = None) -> str:
    rows = _filtered(db, failure_reason, start_date, end_date).order_by(FailedBooking.archived_at.desc()).all()
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for fb in rows:
        out = []
        for col in EXPORT_COLUMNS:
            value = getattr(fb, col)
            out.append(value.isoformat() if isinstance(value, datetime) else value)
        writer.writerow(out)
    return buf.getvalue()
