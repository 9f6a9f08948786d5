from datetime import datetime
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_gateway, http_error, require_admin
from app.core.errors import BookingError
from app.models.booking import Booking
from app.models.user import User
from app.schemas.booking import BookingOut, CancelBookingCommand, CancelBookingOut, booking_out
from app.schemas.failed_booking import FailedBookingListOut, FailedBookingOut, failed_booking_out
from app.services import archive_service, booking_service, reconciler
from app.services.payment_gateway import PaymentGateway

router = APIRouter(tags=["admin"])


def _out(db: Session, booking) -> BookingOut:
    return booking_out(booking, booking_service.list_participants(db, booking.id))


@router.get("/admin/bookings")
def list_bookings(status: str | None = None, trekId: str | None = None, batchId: str | None = None,
                  limit: int = 50, offset: int = 0,
                  db: Session = Depends(get_db), me: User = Depends(require_admin)):
    items = booking_service.list_bookings(db, status=status, trek_id=trekId, batch_id=batchId,
                                          limit=min(limit, 200), offset=max(offset, 0))
    return {"items": [_out(db, b) for b in items]}


@router.get("/admin/bookings/summary")
def bookings_summary(db: Session = Depends(get_db), me: User = Depends(require_admin)):
    rows = db.query(Booking.status, func.count(Booking.id)).group_by(Booking.status).all()
    return {"byStatus": {status: count for status, count in rows}}


@router.post("/admin/bookings/{booking_id}/cancel", response_model=CancelBookingOut)
def admin_cancel(booking_id: str, body: CancelBookingCommand, db: Session = Depends(get_db),
                 me: User = Depends(require_admin), gateway: PaymentGateway = Depends(get_gateway)):
    try:
        booking, amount = booking_service.cancel_booking(db, booking_id, body, gateway, actor=me.email)
        if body.participantId:
            refund_status = booking_service.get_participant(db, booking, body.participantId).refund_status
        else:
            refund_status = booking.refund_status
    except BookingError as e:
        raise http_error(e)
    return CancelBookingOut(booking=_out(db, booking), refundAmount=amount, refundStatus=refund_status)


@router.post("/admin/bookings/{booking_id}/participants/{participant_id}/restore", response_model=BookingOut)
def restore_participant(booking_id: str, participant_id: str, db: Session = Depends(get_db),
                        me: User = Depends(require_admin)):
    try:
        booking = booking_service.restore_participant(db, booking_id, participant_id, actor=me.email)
    except BookingError as e:
        raise http_error(e)
    return _out(db, booking)


@router.post("/admin/bookings/{booking_id}/refund/retry", response_model=BookingOut)
def retry_refund(booking_id: str, participantId: str | None = None, db: Session = Depends(get_db),
                 me: User = Depends(require_admin), gateway: PaymentGateway = Depends(get_gateway)):
    try:
        booking = booking_service.retry_refund(db, booking_id, gateway, participant_id=participantId, actor=me.email)
    except BookingError as e:
        raise http_error(e)
    return _out(db, booking)


@router.post("/admin/bookings/{booking_id}/complete", response_model=BookingOut)
def complete_booking(booking_id: str, db: Session = Depends(get_db), me: User = Depends(require_admin)):
    try:
        booking = booking_service.mark_completed(db, booking_id, actor=me.email)
    except BookingError as e:
        raise http_error(e)
    return _out(db, booking)


@router.delete("/admin/bookings/{booking_id}")
def delete_booking(booking_id: str, db: Session = Depends(get_db), me: User = Depends(require_admin)):
    try:
        booking_service.delete_booking(db, booking_id, actor=me.email)
    except BookingError as e:
        raise http_error(e)
    return {"ok": True}


@router.get("/admin/failed-bookings", response_model=FailedBookingListOut)
def list_failed_bookings(failureReason: str | None = None, startDate: datetime | None = None,
                         endDate: datetime | None = None, limit: int = 50, offset: int = 0,
                         db: Session = Depends(get_db), me: User = Depends(require_admin)):
    try:
        rows, stats = archive_service.list_failed_bookings(
            db, failure_reason=failureReason, start_date=startDate, end_date=endDate,
            limit=min(limit, 200), offset=max(offset, 0),
        )
    except BookingError as e:
        raise http_error(e)
    return FailedBookingListOut(items=[failed_booking_out(fb) for fb in rows], stats=stats)


@router.get("/admin/failed-bookings/export")
def export_failed_bookings(failureReason: str | None = None, startDate: datetime | None = None,
                           endDate: datetime | None = None,
                           db: Session = Depends(get_db), me: User = Depends(require_admin)):
    try:
        text = archive_service.export_failed_bookings_csv(db, failureReason, startDate, endDate)
    except BookingError as e:
        raise http_error(e)
    return Response(
        content=text,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="failed-bookings.csv"'},
    )


@router.get("/admin/failed-bookings/{failed_booking_id}", response_model=FailedBookingOut)
def get_failed_booking(failed_booking_id: str, db: Session = Depends(get_db), me: User = Depends(require_admin)):
    try:
        fb = archive_service.get_failed_booking(db, failed_booking_id)
    except BookingError as e:
        raise http_error(e)
    return failed_booking_out(fb)


@router.post("/admin/failed-bookings/{failed_booking_id}/restore", response_model=BookingOut)
def restore_failed_booking(failed_booking_id: str, db: Session = Depends(get_db), me: User = Depends(require_admin)):
    try:
        booking = archive_service.restore_failed_booking(db, failed_booking_id, actor=me.email)
    except BookingError as e:
        raise http_error(e)
    return _out(db, booking)


@router.delete("/admin/failed-bookings/{failed_booking_id}")
def delete_failed_booking(failed_booking_id: str, db: Session = Depends(get_db), me: User = Depends(require_admin)):
    try:
        archive_service.delete_failed_booking(db, failed_booking_id, actor=me.email)
    except BookingError as e:
        raise http_error(e)
    return {"ok": True}


@router.post("/admin/maintenance/sweep-expired")
def sweep_expired(db: Session = Depends(get_db), me: User = Depends(require_admin)):
    return reconciler.sweep_expired_bookings(db)
