"""
Celery beat task: re-check stale PENDING payments at the gateway.
Paid orders are settled through the shared settlement path (trigger="sweep");
orders the gateway reports dead after the expiry window are cancelled.
"""
import logging

from eacon.core.celery_app import celery_app
from eacon.db.session import SessionLocal
from eacon.services.gateway import get_gateway
from eacon.services.payments.service import PaymentService

logger = logging.getLogger(__name__)


@celery_app.task(
    name="eacon.workers.tasks.settle_pending.settle_pending_payments",
    time_limit=300,
    soft_time_limit=290,
)
def settle_pending_payments() -> dict:
    db = SessionLocal()
    try:
        report = PaymentService(db, get_gateway()).sweep_pending()
        return {"ok": True, **report.as_dict()}
    except Exception as e:
        db.rollback()
        logger.exception("settle_pending_failed", extra={"error": str(e)})
        raise
    finally:
        db.close()
