"""Capacity ledger for batches.

``batches.current_participants`` is only ever changed by a single
conditional UPDATE whose WHERE clause keeps the counter inside
``[0, max_participants]``. A refused update means the batch did not have
room (or had nothing to release); it is never a read-then-write.
"""
import logging
import time

from sqlalchemy import update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import CapacityExceeded, NotFound, ValidationError
from app.models.batch import Batch
from app.services.audit_service import log_audit

logger = logging.getLogger(__name__)


def remaining_capacity(batch: Batch) -> int:
    return batch.remaining


def _spots_message(remaining: int, requested: int) -> str:
    if remaining <= 0:
        return "This batch is full"
    noun = "spot" if remaining == 1 else "spots"
    return f"Only {remaining} {noun} left in this batch (requested {requested})"


def reserve_seats(db: Session, batch_id: str, count: int) -> None:
    """Atomically add ``count`` participants to the batch or raise CapacityExceeded."""
    if count < 1:
        raise ValidationError("seat count must be >= 1")
    result = db.execute(
        update(Batch)
        .where(
            Batch.id == batch_id,
            Batch.status == "active",
            Batch.current_participants + count <= Batch.max_participants,
        )
        .values(current_participants=Batch.current_participants + count)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info("Reserved %s seat(s) on batch %s", count, batch_id)
        return

    batch = db.get(Batch, batch_id, populate_existing=True)
    if batch is None:
        raise NotFound("Batch not found")
    if batch.status != "active":
        raise ValidationError("This batch is closed for booking")
    remaining = batch.remaining
    logger.info("Refused %s seat(s) on batch %s, %s remaining", count, batch_id, remaining)
    raise CapacityExceeded(_spots_message(remaining, count), remaining=remaining)


def release_seats(db: Session, batch_id: str, count: int, actor: str = "system") -> bool:
    """Atomically give back ``count`` seats. Returns False if the ledger refused.

    A refused release means the counter would go negative. It is logged and
    audited instead of raised so the surrounding cancellation still happens.
    """
    if count <= 0:
        return True
    result = db.execute(
        update(Batch)
        .where(Batch.id == batch_id, Batch.current_participants - count >= 0)
        .values(current_participants=Batch.current_participants - count)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        logger.info("Released %s seat(s) on batch %s", count, batch_id)
        return True
    logger.error("Ledger refused to release %s seat(s) on batch %s", count, batch_id)
    log_audit(db, actor, "batch.release_refused", "batch", batch_id, {"count": count})
    return False


def refresh_batch(db: Session, batch_id: str) -> Batch | None:
    return db.get(Batch, batch_id, populate_existing=True)


def retry_on_contention(db: Session, unit_of_work, attempts: int | None = None):
    """Run ``unit_of_work()`` and retry it on transient database contention.

    Lock timeouts, deadlocks and serialization failures surface as
    OperationalError. The session is rolled back before each retry, so the
    unit of work must be safe to run again from scratch.
    """
    attempts = attempts or settings.LEDGER_RETRY_ATTEMPTS
    for attempt in range(attempts):
        try:
            return unit_of_work()
        except OperationalError as e:
            db.rollback()
            if attempt >= attempts - 1:
                logger.error("Ledger update failed after %s attempts: %s", attempts, e)
                raise
            wait = settings.LEDGER_RETRY_BACKOFF_SECONDS * (2 ** attempt)
            logger.warning("Ledger contention (attempt %s/%s), retrying in %.2fs: %s", attempt + 1, attempts, wait, e)
            time.sleep(wait)
