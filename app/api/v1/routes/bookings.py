from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.api.deps import get_current_user, get_gateway, http_error
from app.core.config import settings
from app.core.errors import BookingError
from app.models.user import User
from app.schemas.booking import (
    BookingOut,
    CancelBookingCommand,
    CancelBookingOut,
    ConfirmPaymentCommand,
    CreateBookingCommand,
    CustomerCancelRequest,
    PaymentOrderOut,
    booking_out,
)
from app.services import booking_service
from app.services.payment_gateway import PaymentGateway, to_minor_units

router = APIRouter(tags=["bookings"])


def _out(db: Session, booking) -> BookingOut:
    return booking_out(booking, booking_service.list_participants(db, booking.id))


@router.post("/bookings", response_model=BookingOut, status_code=201)
def create_booking(body: CreateBookingCommand, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    try:
        booking = booking_service.create_booking(db, body, me)
    except BookingError as e:
        raise http_error(e)
    return _out(db, booking)


@router.get("/bookings")
def my_bookings(db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    items = booking_service.list_user_bookings(db, me.id)
    return {"total": len(items), "items": [_out(db, b) for b in items]}


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    try:
        booking = booking_service.get_booking_for_user(db, booking_id, me)
    except BookingError as e:
        raise http_error(e)
    return _out(db, booking)


@router.post("/bookings/{booking_id}/payment-order", response_model=PaymentOrderOut)
def create_payment_order(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user),
                         gateway: PaymentGateway = Depends(get_gateway)):
    try:
        booking = booking_service.get_booking_for_user(db, booking_id, me)
        order = booking_service.create_payment_order(db, booking, gateway)
    except BookingError as e:
        raise http_error(e)
    return PaymentOrderOut(
        bookingRef=order["bookingRef"],
        orderId=order["orderId"],
        amount=order["amount"],
        amountMinor=to_minor_units(order["amount"]),
        currency=order["currency"],
        keyId=settings.RAZORPAY_KEY_ID,
    )


@router.post("/bookings/{booking_id}/confirm-payment", response_model=BookingOut)
def confirm_payment(booking_id: str, body: ConfirmPaymentCommand, db: Session = Depends(get_db),
                    me: User = Depends(get_current_user), gateway: PaymentGateway = Depends(get_gateway)):
    try:
        booking_service.get_booking_for_user(db, booking_id, me)
        booking = booking_service.confirm_payment(db, body.model_copy(update={"bookingId": booking_id}), gateway, actor=me.id)
    except BookingError as e:
        raise http_error(e)
    return _out(db, booking)


@router.post("/bookings/{booking_id}/confirm-remaining-payment", response_model=BookingOut)
def confirm_remaining_payment(booking_id: str, body: ConfirmPaymentCommand, db: Session = Depends(get_db),
                              me: User = Depends(get_current_user), gateway: PaymentGateway = Depends(get_gateway)):
    try:
        booking_service.get_booking_for_user(db, booking_id, me)
        booking = booking_service.confirm_remaining_payment(db, body.model_copy(update={"bookingId": booking_id}), gateway, actor=me.id)
    except BookingError as e:
        raise http_error(e)
    return _out(db, booking)


@router.post("/bookings/{booking_id}/cancel", response_model=CancelBookingOut)
def cancel_booking(booking_id: str, body: CustomerCancelRequest | None = None, db: Session = Depends(get_db),
                   me: User = Depends(get_current_user), gateway: PaymentGateway = Depends(get_gateway)):
    cmd = CancelBookingCommand(refund=True, refundType="auto", reason=body.reason if body else "")
    try:
        booking_service.get_booking_for_user(db, booking_id, me)
        booking, amount = booking_service.cancel_booking(db, booking_id, cmd, gateway, actor=me.id)
    except BookingError as e:
        raise http_error(e)
    return CancelBookingOut(booking=_out(db, booking), refundAmount=amount, refundStatus=booking.refund_status)


@router.post("/bookings/{booking_id}/participants/{participant_id}/cancel", response_model=CancelBookingOut)
def cancel_participant(booking_id: str, participant_id: str, body: CustomerCancelRequest | None = None,
                       db: Session = Depends(get_db), me: User = Depends(get_current_user),
                       gateway: PaymentGateway = Depends(get_gateway)):
    cmd = CancelBookingCommand(refund=True, refundType="auto", participantId=participant_id, reason=body.reason if body else "")
    try:
        booking_service.get_booking_for_user(db, booking_id, me)
        booking, amount = booking_service.cancel_booking(db, booking_id, cmd, gateway, actor=me.id)
        participant = booking_service.get_participant(db, booking, participant_id)
    except BookingError as e:
        raise http_error(e)
    return CancelBookingOut(booking=_out(db, booking), refundAmount=amount, refundStatus=participant.refund_status)


@router.post("/bookings/{booking_id}/abandon")
def abandon_booking(booking_id: str, db: Session = Depends(get_db), me: User = Depends(get_current_user)):
    try:
        booking = booking_service.get_booking_for_user(db, booking_id, me)
        archived = booking_service.abandon_booking(db, booking, actor=me.id)
    except BookingError as e:
        raise http_error(e)
    return {"ok": True, "failedBookingId": archived.id, "failureReason": archived.failure_reason}
