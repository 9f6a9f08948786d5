"""Booking lifecycle: pending_payment -> confirmed -> cancelled | completed.

Every status change is a compare-and-set (``UPDATE ... WHERE status = :expected``).
Seats are taken from the batch ledger when the booking is created and given
back on cancellation, archival or delete; ``bookings.seats_held`` records
whether the ledger currently counts the booking's active participants.
No row lock is held while the payment gateway is being called.
"""
import json
import logging
import random
import string
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import update, delete
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    BookingError,
    ConflictingState,
    Forbidden,
    GatewayUnavailable,
    InvalidParticipantCount,
    NotFound,
    PartialPaymentNotEnabled,
    PaymentVerificationFailed,
    ValidationError,
)
from app.models.batch import Batch
from app.models.booking import (
    Booking,
    PENDING_PAYMENT,
    CONFIRMED,
    CANCELLED,
    COMPLETED,
    REFUND_NOT_APPLICABLE,
    REFUND_PROCESSING,
    REFUND_SUCCESS,
    REFUND_FAILED,
)
from app.models.failed_booking import PAYMENT_FAILED, USER_CANCELLED
from app.models.participant import BookingParticipant
from app.models.promo_code import PromoCode
from app.models.trek import Trek
from app.models.trek_add_on import TrekAddOn
from app.models.user import User
from app.schemas.booking import CancelBookingCommand, ConfirmPaymentCommand, CreateBookingCommand
from app.services import email_service
from app.services.audit_service import log_audit
from app.services.capacity_service import release_seats, reserve_seats, retry_on_contention
from app.services.payment_gateway import PaymentGateway, RefundResult
from app.services.pricing_service import partial_payment_split, quote_booking, validate_promo_code
from app.services.refund_policy import as_utc, quantize_money, refund_amount

logger = logging.getLogger(__name__)

REFUND_CUSTOM = "custom"
ALLOCATED_REFUND_STATES = (REFUND_PROCESSING, REFUND_SUCCESS, REFUND_FAILED)


def make_booking_ref() -> str:
    return "TRK-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=8))


def make_session_id(prefix: str = "sess_") -> str:
    return prefix + uuid.uuid4().hex


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_booking(db: Session, booking_id: str) -> Booking:
    booking = db.get(Booking, booking_id, populate_existing=True)
    if not booking:
        raise NotFound("Booking not found")
    return booking


def get_booking_for_user(db: Session, booking_id: str, user: User) -> Booking:
    booking = get_booking(db, booking_id)
    if booking.user_id != user.id and not user.is_admin:
        raise Forbidden("You cannot access this booking")
    return booking


def list_participants(db: Session, booking_id: str) -> list[BookingParticipant]:
    return (
        db.query(BookingParticipant)
        .filter(BookingParticipant.booking_id == booking_id)
        .order_by(BookingParticipant.position.asc())
        .populate_existing()
        .all()
    )


def get_participant(db: Session, booking: Booking, participant_id: str) -> BookingParticipant:
    p = db.get(BookingParticipant, participant_id, populate_existing=True)
    if not p or p.booking_id != booking.id:
        raise NotFound("Participant not found")
    return p


def list_bookings(db: Session, status: str | None = None, trek_id: str | None = None, batch_id: str | None = None, limit: int = 50, offset: int = 0) -> list[Booking]:
    q = db.query(Booking)
    if status:
        q = q.filter(Booking.status == status)
    if trek_id:
        q = q.filter(Booking.trek_id == trek_id)
    if batch_id:
        q = q.filter(Booking.batch_id == batch_id)
    return q.order_by(Booking.created_at.desc()).offset(offset).limit(limit).all()


def list_user_bookings(db: Session, user_id: str) -> list[Booking]:
    return db.query(Booking).filter(Booking.user_id == user_id).order_by(Booking.created_at.desc()).all()


def _active(participants) -> list[BookingParticipant]:
    return [p for p in participants if not p.is_cancelled]


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

def _load_add_ons(db: Session, trek_id: str, add_on_ids: list[str]) -> list[TrekAddOn]:
    if not add_on_ids:
        return []
    wanted = list(dict.fromkeys(add_on_ids))
    rows = (
        db.query(TrekAddOn)
        .filter(TrekAddOn.id.in_(wanted), TrekAddOn.trek_id == trek_id, TrekAddOn.is_enabled.is_(True))
        .all()
    )
    if len(rows) != len(wanted):
        raise ValidationError("One or more add-ons are not available for this trek")
    return rows


def create_booking(db: Session, cmd: CreateBookingCommand, user: User, now: datetime | None = None) -> Booking:
    now = _now(now)
    n = cmd.participants
    if n < 1:
        raise InvalidParticipantCount("At least one participant is required")
    if len(cmd.participantDetails) != n:
        raise InvalidParticipantCount(
            f"Expected details for {n} participant(s), got {len(cmd.participantDetails)}",
            expected=n,
            received=len(cmd.participantDetails),
        )

    trek = db.get(Trek, cmd.trekId)
    if not trek or not trek.is_enabled:
        raise NotFound("Trek not found")
    batch = db.get(Batch, cmd.batchId)
    if not batch or batch.trek_id != trek.id:
        raise NotFound("Batch not found")
    if batch.status != "active":
        raise ValidationError("This batch is closed for booking")
    if as_utc(batch.start_date) <= now:
        raise ValidationError("This batch has already started")
    if cmd.paymentMode == "partial" and not trek.partial_payment_enabled:
        raise PartialPaymentNotEnabled("Partial payment is not enabled for this trek")

    add_ons = _load_add_ons(db, trek.id, cmd.addOnIds)
    promo = None
    if cmd.promoCode:
        code = cmd.promoCode.strip().upper()
        subtotal = Decimal(batch.price) * n + sum((Decimal(a.price) for a in add_ons), Decimal("0")) * n
        promo = validate_promo_code(db.query(PromoCode).filter(PromoCode.code == code).first(), trek.id, subtotal, now)
    quote = quote_booking(trek, batch.price, n, add_ons, promo)

    initial, remaining, due_date = None, Decimal("0"), None
    if cmd.paymentMode == "partial":
        initial, remaining, due_date = partial_payment_split(quote.total_price, trek, batch.start_date)

    # booking_ref must be unique
    for _ in range(10):
        ref = make_booking_ref()
        if not db.query(Booking.id).filter(Booking.booking_ref == ref).first():
            break
    else:
        raise ValidationError("could not allocate booking reference")

    trek_id, batch_id, user_id = trek.id, batch.id, user.id
    contact = cmd.contactInfo
    details = list(cmd.participantDetails)

    def _reserve_and_insert() -> str:
        # Ledger update first so the seat check and the increment are one statement.
        reserve_seats(db, batch_id, n)
        booking_id = str(uuid.uuid4())
        db.add(Booking(
            id=booking_id,
            booking_ref=ref,
            user_id=user_id,
            trek_id=trek_id,
            batch_id=batch_id,
            number_of_participants=n,
            contact_name=contact.name,
            contact_email=contact.email,
            contact_phone=contact.phone or "",
            add_ons_json=json.dumps(quote.add_ons),
            promo_code=promo.code if promo else None,
            base_amount=quote.base_amount,
            add_on_amount=quote.add_on_amount,
            discount_amount=quote.discount_amount,
            tax_amount=quote.tax_amount,
            gateway_fee=quote.gateway_fee,
            total_price=quote.total_price,
            status=PENDING_PAYMENT,
            payment_mode=cmd.paymentMode,
            amount_paid=Decimal("0"),
            initial_amount=initial,
            remaining_amount=remaining,
            due_date=due_date,
            session_id=make_session_id(),
            session_expires_at=now + timedelta(minutes=settings.BOOKING_SESSION_MINUTES),
            payment_attempts=0,
            seats_held=True,
            refund_status=REFUND_NOT_APPLICABLE,
        ))
        for i, p in enumerate(details):
            db.add(BookingParticipant(
                id=str(uuid.uuid4()),
                booking_id=booking_id,
                position=i,
                name=p.name,
                age=p.age,
                gender=p.gender or "",
                contact_number=p.contactNumber or "",
                medical_conditions=p.medicalConditions or "",
                special_requests=p.specialRequests or "",
                refund_status=REFUND_NOT_APPLICABLE,
            ))
        log_audit(db, user_id, "booking.create", "booking", booking_id, {"batch_id": batch_id, "participants": n, "total_price": quote.total_price})
        db.commit()
        return booking_id

    try:
        booking_id = retry_on_contention(db, _reserve_and_insert)
    except BookingError:
        db.rollback()
        raise
    logger.info("Booking %s created for batch %s (%s participants, total %s)", ref, batch_id, n, quote.total_price)
    return get_booking(db, booking_id)


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

def amount_due(booking: Booking) -> Decimal:
    """What the customer owes right now."""
    if booking.status == PENDING_PAYMENT:
        if booking.payment_mode == "partial" and booking.initial_amount is not None:
            return Decimal(booking.initial_amount)
        return Decimal(booking.total_price)
    if booking.status == CONFIRMED and Decimal(booking.remaining_amount or 0) > 0:
        return Decimal(booking.remaining_amount)
    raise ConflictingState("Nothing is due on this booking", status=booking.status)


def create_payment_order(db: Session, booking: Booking, gateway: PaymentGateway, now: datetime | None = None) -> dict:
    now = _now(now)
    amount = amount_due(booking)
    if booking.status == PENDING_PAYMENT and booking.session_expires_at and as_utc(booking.session_expires_at) < now:
        raise ConflictingState("Booking session has expired, please book again")
    order_id = gateway.create_order(amount, settings.PAYMENT_CURRENCY, booking.booking_ref)

    values = {"last_payment_attempt": now}
    if booking.status == PENDING_PAYMENT:
        values["payment_order_id"] = order_id
    db.execute(update(Booking).where(Booking.id == booking.id).values(**values).execution_options(synchronize_session=False))
    db.commit()
    logger.info("Payment order %s created for booking %s (%s)", order_id, booking.booking_ref, amount)
    return {"bookingRef": booking.booking_ref, "orderId": order_id, "amount": amount, "currency": settings.PAYMENT_CURRENCY}


def _hold_seats_for(db: Session, booking: Booking, actor: str) -> bool:
    """Take seats for a booking whose ledger entry was given up (restored archives).

    Returns True if this call took them.
    """
    active = len(_active(list_participants(db, booking.id)))

    def _unit() -> bool:
        res = db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.seats_held.is_(False), Booking.status == PENDING_PAYMENT)
            .values(seats_held=True)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            db.rollback()
            return False
        reserve_seats(db, booking.batch_id, active)
        log_audit(db, actor, "booking.seats_held", "booking", booking.id, {"count": active})
        db.commit()
        return True

    try:
        return retry_on_contention(db, _unit)
    except BookingError:
        db.rollback()
        raise


def _give_back_seats(db: Session, booking_id: str, batch_id: str, actor: str) -> None:
    res = db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.seats_held.is_(True))
        .values(seats_held=False)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 1:
        active = (
            db.query(BookingParticipant)
            .filter(BookingParticipant.booking_id == booking_id, BookingParticipant.is_cancelled.is_(False))
            .count()
        )
        release_seats(db, batch_id, active, actor)
    db.commit()


def _record_failed_attempt(db: Session, booking: Booking, now: datetime, actor: str) -> None:
    db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == PENDING_PAYMENT)
        .values(payment_attempts=Booking.payment_attempts + 1, last_payment_attempt=now)
        .execution_options(synchronize_session=False)
    )
    log_audit(db, actor, "booking.payment_declined", "booking", booking.id)
    db.commit()
    booking = db.get(Booking, booking.id, populate_existing=True)
    if booking is None or booking.status != PENDING_PAYMENT:
        return
    logger.warning("Payment verification failed for booking %s (attempt %s)", booking.booking_ref, booking.payment_attempts)
    if booking.payment_attempts >= settings.MAX_PAYMENT_ATTEMPTS:
        from app.services.reconciler import archive_booking

        archive_booking(
            db,
            booking,
            PAYMENT_FAILED,
            details=f"Payment verification failed {booking.payment_attempts} times",
            archived_by="system",
        )


def confirm_payment(db: Session, cmd: ConfirmPaymentCommand, gateway: PaymentGateway, actor: str = "user", now: datetime | None = None) -> Booking:
    now = _now(now)
    booking = get_booking(db, cmd.bookingId)

    if booking.status == CONFIRMED and booking.payment_id == cmd.paymentId:
        return booking
    if booking.status != PENDING_PAYMENT:
        raise ConflictingState(f"Booking is {booking.status}, payment cannot be confirmed", status=booking.status)

    expected = amount_due(booking)
    order_matches = not booking.payment_order_id or booking.payment_order_id == cmd.orderId
    took_seats = False
    if not booking.seats_held:
        took_seats = _hold_seats_for(db, booking, actor)

    try:
        verified = order_matches and gateway.verify_payment(cmd.orderId, cmd.paymentId, cmd.signature, expected)
    except GatewayUnavailable:
        if took_seats:
            _give_back_seats(db, booking.id, booking.batch_id, actor)
        raise

    if not verified:
        if took_seats:
            _give_back_seats(db, booking.id, booking.batch_id, actor)
        _record_failed_attempt(db, booking, now, actor)
        raise PaymentVerificationFailed("Payment could not be verified, please retry the payment")

    res = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == PENDING_PAYMENT)
        .values(
            status=CONFIRMED,
            payment_order_id=cmd.orderId,
            payment_id=cmd.paymentId,
            payment_signature=cmd.signature,
            paid_at=now,
            amount_paid=expected,
            last_payment_attempt=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        db.rollback()
        current = get_booking(db, booking.id)
        if current.status == CONFIRMED and current.payment_id == cmd.paymentId:
            return current
        raise ConflictingState(f"Booking is {current.status}, payment cannot be confirmed", status=current.status)

    if booking.promo_code:
        db.execute(
            update(PromoCode)
            .where(PromoCode.code == booking.promo_code)
            .values(used_count=PromoCode.used_count + 1)
            .execution_options(synchronize_session=False)
        )
    log_audit(db, actor, "booking.confirm", "booking", booking.id, {"payment_id": cmd.paymentId, "amount": expected})
    db.commit()
    booking = get_booking(db, booking.id)
    logger.info("Booking %s confirmed (payment %s, %s)", booking.booking_ref, cmd.paymentId, expected)
    email_service.send_booking_confirmation(db, booking)
    return booking


def confirm_remaining_payment(db: Session, cmd: ConfirmPaymentCommand, gateway: PaymentGateway, actor: str = "user", now: datetime | None = None) -> Booking:
    now = _now(now)
    booking = get_booking(db, cmd.bookingId)
    if booking.payment_mode != "partial":
        raise ValidationError("This booking was paid in full")
    if booking.final_payment_id == cmd.paymentId:
        return booking
    remaining = Decimal(booking.remaining_amount or 0)
    if booking.status != CONFIRMED or remaining <= 0:
        raise ConflictingState("No remaining balance can be paid on this booking", status=booking.status)

    if not gateway.verify_payment(cmd.orderId, cmd.paymentId, cmd.signature, remaining):
        logger.warning("Remaining payment verification failed for booking %s", booking.booking_ref)
        raise PaymentVerificationFailed("Payment could not be verified, please retry the payment")

    res = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == CONFIRMED, Booking.final_payment_id.is_(None))
        .values(
            remaining_amount=Decimal("0"),
            amount_paid=Booking.amount_paid + remaining,
            final_payment_id=cmd.paymentId,
            final_payment_date=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        db.rollback()
        current = get_booking(db, booking.id)
        if current.final_payment_id == cmd.paymentId:
            return current
        raise ConflictingState("No remaining balance can be paid on this booking", status=current.status)
    log_audit(db, actor, "booking.final_payment", "booking", booking.id, {"payment_id": cmd.paymentId, "amount": remaining})
    db.commit()
    logger.info("Booking %s balance of %s paid", booking.booking_ref, remaining)
    return get_booking(db, booking.id)


# ---------------------------------------------------------------------------
# Cancellation and refunds
# ---------------------------------------------------------------------------

def participant_share(total, participants: list[BookingParticipant], target: BookingParticipant) -> Decimal:
    """Per-participant price. Shares are rounded half-up; the last participant takes the remainder."""
    n = len(participants)
    total = Decimal(total)
    share = quantize_money(total / n)
    last = max(participants, key=lambda p: p.position)
    if target.id == last.id:
        return quantize_money(total - share * (n - 1))
    return share


def _allocated_refunds(booking: Booking, participants: list[BookingParticipant]) -> Decimal:
    allocated = Decimal("0")
    if booking.refund_status in ALLOCATED_REFUND_STATES:
        allocated += Decimal(booking.refund_amount or 0)
    for p in participants:
        if p.refund_status in ALLOCATED_REFUND_STATES:
            allocated += Decimal(p.refund_amount or 0)
    return allocated


def refundable_balance(booking: Booking, participants: list[BookingParticipant]) -> Decimal:
    ceiling = min(Decimal(booking.total_price), Decimal(booking.amount_paid or 0))
    return max(ceiling - _allocated_refunds(booking, participants), Decimal("0"))


def _requested_refund(cmd: CancelBookingCommand, base: Decimal, start_date: datetime, now: datetime) -> Decimal:
    if not cmd.refund:
        return Decimal("0")
    if cmd.refundType == REFUND_CUSTOM:
        return quantize_money(cmd.customRefundAmount)
    return refund_amount(base, start_date, now, cmd.refundType)


def _issue_refund(db: Session, gateway: PaymentGateway, booking: Booking, amount: Decimal, participant_id: str | None, actor: str, now: datetime) -> str:
    """Call the gateway for a refund already committed as ``processing`` and record the outcome."""
    try:
        result = gateway.refund(booking.payment_id, amount)
    except Exception as e:
        logger.exception("Refund of %s for booking %s raised", amount, booking.booking_ref)
        result = RefundResult(success=False, error=str(e))

    status = REFUND_SUCCESS if result.success else REFUND_FAILED
    values = {"refund_status": status, "refund_ref": result.refund_ref}
    if result.success:
        values["refund_date"] = now
    if participant_id:
        stmt = update(BookingParticipant).where(
            BookingParticipant.id == participant_id, BookingParticipant.refund_status == REFUND_PROCESSING
        )
    else:
        stmt = update(Booking).where(Booking.id == booking.id, Booking.refund_status == REFUND_PROCESSING)
    db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    log_audit(
        db,
        actor,
        "booking.refund_" + status,
        "participant" if participant_id else "booking",
        participant_id or booking.id,
        {"booking_id": booking.id, "amount": amount, "refund_ref": result.refund_ref, "error": result.error},
    )
    db.commit()
    if result.success:
        logger.info("Refund of %s issued for booking %s", amount, booking.booking_ref)
    else:
        logger.error("Refund of %s for booking %s failed: %s", amount, booking.booking_ref, result.error)
    return status


def cancel_booking(db: Session, booking_id: str, cmd: CancelBookingCommand, gateway: PaymentGateway, actor: str = "system", now: datetime | None = None) -> tuple[Booking, Decimal]:
    """Cancel the whole booking, or one participant when ``cmd.participantId`` is set.

    Seats go back to the ledger before any refund is attempted. A refund that
    the gateway declines leaves ``refund_status = failed``; the cancellation
    itself stands.
    """
    now = _now(now)
    if cmd.refund and cmd.refundType == REFUND_CUSTOM and cmd.customRefundAmount is None:
        raise ValidationError("customRefundAmount is required for a custom refund")
    booking = get_booking(db, booking_id)
    if cmd.participantId:
        return _cancel_participant(db, booking, cmd, gateway, actor, now)

    if booking.status == CANCELLED:
        raise ConflictingState("Booking is already cancelled", status=booking.status)
    if booking.status == COMPLETED:
        raise ConflictingState("Completed bookings cannot be cancelled", status=booking.status)

    participants = list_participants(db, booking.id)
    active = _active(participants)
    batch = db.get(Batch, booking.batch_id)
    previous_status = booking.status
    seats_held = booking.seats_held

    res = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == previous_status)
        .values(status=CANCELLED, cancelled_at=now, cancellation_reason=cmd.reason or "", seats_held=False, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        db.rollback()
        raise ConflictingState("Booking changed while cancelling, please retry")
    db.execute(
        update(BookingParticipant)
        .where(BookingParticipant.booking_id == booking.id, BookingParticipant.is_cancelled.is_(False))
        .values(is_cancelled=True, cancelled_at=now, cancellation_reason=cmd.reason or "")
        .execution_options(synchronize_session=False)
    )
    if seats_held and active:
        release_seats(db, booking.batch_id, len(active), actor)

    base = sum((participant_share(booking.total_price, participants, p) for p in active), Decimal("0"))
    requested = _requested_refund(cmd, base, batch.start_date, now) if batch else Decimal("0")
    amount = min(requested, refundable_balance(booking, participants))
    refunding = amount > 0 and bool(booking.payment_id)
    if refunding:
        db.execute(
            update(Booking)
            .where(Booking.id == booking.id)
            .values(refund_status=REFUND_PROCESSING, refund_amount=amount)
            .execution_options(synchronize_session=False)
        )
    else:
        amount = Decimal("0")
    log_audit(db, actor, "booking.cancel", "booking", booking.id, {
        "previous_status": previous_status,
        "refund_type": cmd.refundType if cmd.refund else None,
        "refund_amount": amount,
        "reason": cmd.reason,
    })
    db.commit()
    logger.info("Booking %s cancelled by %s (refund %s)", booking.booking_ref, actor, amount)

    if refunding:
        _issue_refund(db, gateway, booking, amount, None, actor, now)
    booking = get_booking(db, booking.id)
    email_service.send_cancellation_notice(db, booking, refund_amount=amount, reason=cmd.reason)
    return booking, amount


def _cancel_participant(db: Session, booking: Booking, cmd: CancelBookingCommand, gateway: PaymentGateway, actor: str, now: datetime) -> tuple[Booking, Decimal]:
    participant = get_participant(db, booking, cmd.participantId)
    if participant.is_cancelled:
        raise ConflictingState("Participant is already cancelled")
    if booking.status not in (PENDING_PAYMENT, CONFIRMED):
        raise ConflictingState(f"Booking is {booking.status}, participants cannot be cancelled", status=booking.status)

    participants = list_participants(db, booking.id)
    others_active = [p for p in _active(participants) if p.id != participant.id]
    share = participant_share(booking.total_price, participants, participant)
    batch = db.get(Batch, booking.batch_id)
    seats_held = booking.seats_held

    res = db.execute(
        update(BookingParticipant)
        .where(BookingParticipant.id == participant.id, BookingParticipant.is_cancelled.is_(False))
        .values(is_cancelled=True, cancelled_at=now, cancellation_reason=cmd.reason or "")
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        db.rollback()
        raise ConflictingState("Participant is already cancelled")
    if seats_held:
        release_seats(db, booking.batch_id, 1, actor)

    if not others_active:
        res = db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == booking.status)
            .values(status=CANCELLED, cancelled_at=now, cancellation_reason=cmd.reason or "", seats_held=False, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            db.rollback()
            raise ConflictingState("Booking changed while cancelling, please retry")

    # a participant restored after a refund keeps that refund; never refund them twice
    already_refunded = participant.refund_status in ALLOCATED_REFUND_STATES
    requested = _requested_refund(cmd, share, batch.start_date, now) if batch and not already_refunded else Decimal("0")
    amount = min(requested, refundable_balance(booking, participants))
    refunding = amount > 0 and bool(booking.payment_id)
    if refunding:
        db.execute(
            update(BookingParticipant)
            .where(BookingParticipant.id == participant.id)
            .values(refund_status=REFUND_PROCESSING, refund_amount=amount)
            .execution_options(synchronize_session=False)
        )
    else:
        amount = Decimal("0")
    log_audit(db, actor, "participant.cancel", "participant", participant.id, {
        "booking_id": booking.id,
        "share": share,
        "refund_type": cmd.refundType if cmd.refund else None,
        "refund_amount": amount,
        "booking_cancelled": not others_active,
    })
    db.commit()
    logger.info("Participant %s of booking %s cancelled by %s (refund %s)", participant.id, booking.booking_ref, actor, amount)

    if refunding:
        _issue_refund(db, gateway, booking, amount, participant.id, actor, now)
    booking = get_booking(db, booking.id)
    email_service.send_cancellation_notice(db, booking, refund_amount=amount, participant_names=[participant.name], reason=cmd.reason)
    return booking, amount


def retry_refund(db: Session, booking_id: str, gateway: PaymentGateway, participant_id: str | None = None, actor: str = "admin", now: datetime | None = None) -> Booking:
    """Reissue a refund the gateway previously declined, for the amount already recorded."""
    now = _now(now)
    booking = get_booking(db, booking_id)
    if participant_id:
        target = get_participant(db, booking, participant_id)
        stmt = update(BookingParticipant).where(BookingParticipant.id == target.id, BookingParticipant.refund_status == REFUND_FAILED)
    else:
        target = booking
        stmt = update(Booking).where(Booking.id == booking.id, Booking.refund_status == REFUND_FAILED)
    if target.refund_status != REFUND_FAILED:
        raise ConflictingState(f"Refund is {target.refund_status}, only failed refunds can be retried", refund_status=target.refund_status)
    if not booking.payment_id:
        raise ConflictingState("Booking has no payment to refund")

    amount = Decimal(target.refund_amount)
    res = db.execute(stmt.values(refund_status=REFUND_PROCESSING).execution_options(synchronize_session=False))
    if res.rowcount == 0:
        db.rollback()
        raise ConflictingState("Refund changed while retrying, please reload")
    log_audit(db, actor, "booking.refund_retry", "participant" if participant_id else "booking", target.id, {"amount": amount})
    db.commit()
    _issue_refund(db, gateway, booking, amount, participant_id, actor, now)
    return get_booking(db, booking.id)


def restore_participant(db: Session, booking_id: str, participant_id: str, actor: str = "admin") -> Booking:
    """Un-cancel a participant. Refund fields are left as they are."""
    booking = get_booking(db, booking_id)
    participant = get_participant(db, booking, participant_id)
    if not participant.is_cancelled:
        raise ConflictingState("Participant is not cancelled")
    if booking.status not in (PENDING_PAYMENT, CONFIRMED):
        raise ConflictingState(f"Booking is {booking.status}, participants cannot be restored", status=booking.status)
    booking_ref, batch_id, seats_held = booking.booking_ref, booking.batch_id, booking.seats_held

    def _unit():
        if seats_held:
            reserve_seats(db, batch_id, 1)
        res = db.execute(
            update(BookingParticipant)
            .where(BookingParticipant.id == participant_id, BookingParticipant.is_cancelled.is_(True))
            .values(is_cancelled=False, cancelled_at=None, cancellation_reason="")
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise ConflictingState("Participant is not cancelled")
        log_audit(db, actor, "participant.restore", "participant", participant_id, {"booking_id": booking_id})
        db.commit()

    try:
        retry_on_contention(db, _unit)
    except BookingError:
        db.rollback()
        raise
    logger.info("Participant %s of booking %s restored by %s", participant_id, booking_ref, actor)
    return get_booking(db, booking_id)


def mark_completed(db: Session, booking_id: str, actor: str = "admin", now: datetime | None = None) -> Booking:
    now = _now(now)
    booking = get_booking(db, booking_id)
    if booking.status != CONFIRMED:
        raise ConflictingState(f"Only confirmed bookings can be completed (booking is {booking.status})", status=booking.status)
    batch = db.get(Batch, booking.batch_id)
    finish = (batch.end_date or batch.start_date) if batch else None
    if finish is None or as_utc(finish) > now:
        raise ValidationError("The trek has not finished yet")
    res = db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == CONFIRMED)
        .values(status=COMPLETED, completed_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        db.rollback()
        raise ConflictingState("Booking changed while completing, please retry")
    log_audit(db, actor, "booking.complete", "booking", booking.id)
    db.commit()
    logger.info("Booking %s completed", booking.booking_ref)
    return get_booking(db, booking.id)


def abandon_booking(db: Session, booking: Booking, actor: str):
    """Customer walks away from an unpaid booking; it goes to the failed-booking archive."""
    from app.services.reconciler import archive_booking

    if booking.status != PENDING_PAYMENT:
        raise ConflictingState(f"Booking is {booking.status}, only unpaid bookings can be abandoned", status=booking.status)
    archived = archive_booking(db, booking, USER_CANCELLED, details="Cancelled by customer before payment", archived_by="user", actor=actor)
    if archived is None:
        raise ConflictingState("Booking changed while abandoning, please reload")
    return archived


def delete_booking(db: Session, booking_id: str, actor: str = "admin") -> None:
    booking = get_booking(db, booking_id)
    booking_ref = booking.booking_ref
    active = len(_active(list_participants(db, booking.id)))
    if booking.seats_held and booking.status in (PENDING_PAYMENT, CONFIRMED):
        release_seats(db, booking.batch_id, active, actor)
    db.execute(delete(BookingParticipant).where(BookingParticipant.booking_id == booking.id))
    db.execute(delete(Booking).where(Booking.id == booking.id).execution_options(synchronize_session=False))
    log_audit(db, actor, "booking.delete", "booking", booking.id, {"booking_ref": booking_ref, "status": booking.status})
    db.commit()
    logger.info("Booking %s deleted by %s", booking_ref, actor)
