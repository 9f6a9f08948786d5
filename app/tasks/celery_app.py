import logging
from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from celery.schedules import crontab
from celery.signals import after_setup_logger
from app.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" not in qs:
        qs["ssl_cert_reqs"] = ["CERT_NONE"]
        new_query = urlencode(qs, doseq=True)
        return urlunparse(parsed._replace(query=new_query))
    return url


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "trekbookings",
    broker=_redis_url,
    backend=_redis_url,
    include=["app.tasks.jobs"],
)

celery.conf.timezone = settings.CELERY_TIMEZONE


@after_setup_logger.connect
def on_setup_logger(logger, **kwargs):
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))


celery.conf.beat_schedule = {
    "sweep-expired-bookings": {
        "task": "app.tasks.jobs.sweep_expired_bookings",
        "schedule": settings.EXPIRY_SWEEP_SECONDS,
    },
    "auto-cancel-overdue-partial-payments-daily": {
        "task": "app.tasks.jobs.auto_cancel_overdue_partial_payments",
        "schedule": crontab(hour=2, minute=0),
    },
    "process-email-queue-every-2-minutes": {
        "task": "app.tasks.jobs.process_email_queue",
        "schedule": 120.0,
        "kwargs": {"limit": 50},
    },
}
