import logging
from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from app.db.session import SessionLocal
from app.services import reconciler
from app.services.email_service import process_pending_emails
from app.services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)


def sweep_expired_bookings():
    db: Session = SessionLocal()
    try:
        try:
            return reconciler.sweep_expired_bookings(db)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()


def auto_cancel_overdue_partial_payments():
    db: Session = SessionLocal()
    try:
        try:
            return reconciler.auto_cancel_overdue_partial_payments(db, get_payment_gateway())
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()


def process_email_queue(limit: int = 50):
    """Retry sending queued/failed emails (e.g. after SMTP was down)."""
    db: Session = SessionLocal()
    try:
        try:
            result = process_pending_emails(db, limit=limit)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        if result["failed"]:
            logger.warning("Email queue: %s", result)
        return result
    finally:
        db.close()
