import json
import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.core.errors import BookingError
from app.models.booking import Booking
from app.schemas.booking import ConfirmPaymentCommand
from app.services import booking_service
from app.services.audit_service import log_audit
from app.services.payment_gateway import CapturedPayment, verify_webhook_signature

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])

CAPTURE_EVENTS = ("payment.captured",)


@router.post("/webhooks/payments")
async def payment_webhook(req: Request, db: Session = Depends(get_db)):
    body = await req.body()
    if not verify_webhook_signature(body, req.headers.get("X-Razorpay-Signature", "")):
        raise HTTPException(status_code=401, detail="Invalid webhook signature")
    try:
        payload = json.loads(body.decode("utf-8") or "{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Malformed webhook body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Malformed webhook body")

    event = payload.get("event") or ""
    entity = ((payload.get("payload") or {}).get("payment") or {}).get("entity") or {}
    order_id = entity.get("order_id") or ""
    payment_id = entity.get("id") or ""
    if event not in CAPTURE_EVENTS or not order_id:
        return {"ok": True, "ignored": True}

    booking = db.query(Booking).filter(Booking.payment_order_id == order_id).first()
    if not booking:
        logger.warning("Webhook %s for unknown order %s", event, order_id)
        return {"ok": True, "ignored": True}

    log_audit(db, "gateway", "webhook_received", "booking", booking.id, {"event": event, "payment_id": payment_id})
    db.commit()
    cmd = ConfirmPaymentCommand(bookingId=booking.id, orderId=order_id, paymentId=payment_id, signature="")
    try:
        booking = booking_service.confirm_payment(db, cmd, CapturedPayment(order_id, entity.get("amount") or 0), actor="gateway")
    except BookingError as e:
        # Acknowledge so the gateway stops redelivering.
        logger.warning("Webhook for order %s not applied: %s", order_id, e)
        return {"ok": True, "applied": False, "reason": e.code}
    return {"ok": True, "applied": True, "bookingRef": booking.booking_ref, "status": booking.status}
