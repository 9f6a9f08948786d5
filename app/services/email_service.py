import base64
import logging
import smtplib
import uuid
from datetime import datetime, timezone
from email.message import EmailMessage

import requests
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.email_log import EmailLog

logger = logging.getLogger(__name__)


def queue_email(db: Session, to_email: str, subject: str, body: str, related_booking_ref: str = "", attachments: list[tuple[str, bytes, str]] | None = None) -> str:
    """Queue and attempt immediate send. Body is stored so the worker can retry on failure.

    attachments: list of (filename, content_bytes, mime_type)
    """
    eid = str(uuid.uuid4())
    db.add(
        EmailLog(
            id=eid,
            to_email=to_email,
            subject=subject,
            body=body,
            status="queued",
            related_booking_ref=related_booking_ref,
        )
    )
    db.commit()

    log = db.get(EmailLog, eid)
    log.attempts = 1
    try:
        send_email(to_email, subject, body, attachments=attachments or [])
        log.status = "sent"
        log.sent_at = datetime.now(timezone.utc)
    except Exception as e:
        # Worker will retry via process_pending_emails
        logger.warning("Email %s to %s failed, left for retry: %s", eid, to_email, e)
        log.status = "failed"
        log.last_error = str(e)[:500]
    db.commit()
    return eid


def send_email(to_email: str, subject: str, body: str, attachments: list[tuple[str, bytes, str]]):
    """Send email via SendGrid if configured, otherwise SMTP (MailHog recommended for local)."""

    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body, attachments)
        return

    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)

    for filename, content, mime in attachments:
        maintype, subtype = (mime.split("/", 1) + ["octet-stream"])[:2]
        msg.add_attachment(content, maintype=maintype, subtype=subtype, filename=filename)

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str, attachments: list[tuple[str, bytes, str]]):
    from_email = settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": from_email},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    if attachments:
        payload["attachments"] = [
            {
                "content": base64.b64encode(content).decode("utf-8"),
                "type": mime,
                "filename": filename,
                "disposition": "attachment",
            }
            for filename, content, mime in attachments
        ]

    r = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        json=payload,
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"SendGrid error {r.status_code}: {r.text}")


def process_pending_emails(db: Session, limit: int = 50, max_attempts: int = 5) -> dict:
    """Process up to `limit` queued or failed emails; retry send and update status. Returns counts."""
    pending = (
        db.query(EmailLog)
        .filter(
            EmailLog.status.in_(["queued", "failed"]),
            EmailLog.attempts < max_attempts,
            EmailLog.body.isnot(None),
            EmailLog.body != "",
        )
        .order_by(EmailLog.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed = 0, 0
    for log in pending:
        log.attempts = (log.attempts or 0) + 1
        try:
            send_email(log.to_email, log.subject, log.body, [])
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            sent += 1
        except Exception as e:
            logger.warning("Retry %s of email %s failed: %s", log.attempts, log.id, e)
            log.status = "failed"
            log.last_error = str(e)[:500]
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed}


def _booking_link(booking_ref: str) -> str:
    base = (settings.CLIENT_BASE_URL or "").rstrip("/")
    return f"{base}/bookings/{booking_ref}" if base else ""


def send_booking_confirmation(db: Session, booking) -> None:
    """Best effort: a failure here never affects the booking."""
    if not booking.contact_email:
        return
    try:
        lines = [
            f"Hi {booking.contact_name or 'there'},",
            "",
            f"Your booking {booking.booking_ref} is confirmed.",
            f"Participants: {booking.number_of_participants}",
            f"Amount paid: {booking.amount_paid}",
        ]
        if booking.payment_mode == "partial" and booking.remaining_amount:
            due = booking.due_date.date().isoformat() if booking.due_date else "before departure"
            lines.append(f"Balance due: {booking.remaining_amount} by {due}")
        link = _booking_link(booking.booking_ref)
        if link:
            lines += ["", f"View your booking: {link}"]
        queue_email(db, booking.contact_email, f"Booking confirmed: {booking.booking_ref}", "\n".join(lines), booking.booking_ref)
    except Exception:
        logger.exception("Could not send confirmation for booking %s", booking.booking_ref)
        db.rollback()


def send_cancellation_notice(db: Session, booking, refund_amount=None, participant_names: list[str] | None = None, reason: str = "") -> None:
    """Best effort: a failure here never affects the cancellation or refund state."""
    if not booking.contact_email:
        return
    try:
        if participant_names:
            what = f"The following participants were cancelled from booking {booking.booking_ref}: {', '.join(participant_names)}."
        else:
            what = f"Your booking {booking.booking_ref} has been cancelled."
        lines = [f"Hi {booking.contact_name or 'there'},", "", what]
        if reason:
            lines.append(f"Reason: {reason}")
        if refund_amount:
            lines.append(f"Refund of {refund_amount} has been initiated and should reach you in 5-7 business days.")
        queue_email(db, booking.contact_email, f"Booking cancelled: {booking.booking_ref}", "\n".join(lines), booking.booking_ref)
    except Exception:
        logger.exception("Could not send cancellation notice for booking %s", booking.booking_ref)
        db.rollback()
