from app.tasks.celery_app import celery
from app.tasks import worker_jobs

@celery.task(name="app.tasks.jobs.sweep_expired_bookings")
def sweep_expired_bookings():
    return worker_jobs.sweep_expired_bookings()

@celery.task(name="app.tasks.jobs.auto_cancel_overdue_partial_payments")
def auto_cancel_overdue_partial_payments():
    return worker_jobs.auto_cancel_overdue_partial_payments()


@celery.task(name="app.tasks.jobs.process_email_queue")
def process_email_queue(limit: int = 50):
    return worker_jobs.process_email_queue(limit=limit)
