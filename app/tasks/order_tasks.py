# app/tasks/order_tasks.py

from celery import shared_task
import structlog

from app.core.celery_app import celery_app  # noqa: F401  registers the app before tasks bind
from app.core.exceptions import ProviderTransientError
from app.db.session import SessionLocal
from app.services.order_service import OrderService
from app.services.payment_gateway import get_payment_gateway

logger = structlog.get_logger()


@shared_task(
    bind=True,
    autoretry_for=(ProviderTransientError,),
    retry_backoff=30,
    retry_backoff_max=3600,
    retry_jitter=True,
    max_retries=8,
)
def cleanup_provider_discount(self, discount_id: str):
    """
    Delete a provider discount object whose inline cleanup failed.
    Transient provider errors are retried with exponential backoff.
    """
    gateway = get_payment_gateway()
    if not gateway.is_configured:
        logger.warning("stripe_coupon_cleanup_skipped", discount_id=discount_id, reason="not_configured")
        return False

    gateway.delete_discount(discount_id)
    logger.info("stripe_coupon_cleaned_up", discount_id=discount_id, attempt=self.request.retries + 1)
    return True


@shared_task(bind=True, max_retries=3)
def sweep_abandoned_checkouts(self):
    """
    Remove online orders whose checkout was abandoned.
    Runs periodically via Celery Beat.
    """
    db = SessionLocal()
    try:
        removed = OrderService.sweep_abandoned_checkouts(db, get_payment_gateway())
        if removed:
            logger.info("abandoned_checkouts_swept", removed=removed)
        return removed
    except Exception as exc:
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()
