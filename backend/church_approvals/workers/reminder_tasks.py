"""Celery task for overdue approval reminders."""
import logging

from church_approvals.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(name="church_approvals.workers.reminder_tasks.send_overdue_reminders")
def send_overdue_reminders():
    """Remind approvers whose step has waited past its timeout.

    Runs hourly. A step is overdue once activated_at + timeout_hours has
    passed; it is reminded again at most every
    APPROVAL_REMINDER_INTERVAL_HOURS. Statuses are never touched: the
    flow only moves through an explicit approve/reject decision.
    """
    logger.info("send_overdue_reminders: starting")
    try:
        from church_approvals.services.approval import build_approval_service

        service = build_approval_service()
        sent = service.send_overdue_reminders()

        logger.info("send_overdue_reminders: complete — sent=%d", sent)
        return {"sent": sent}

    except Exception as exc:
        logger.exception("send_overdue_reminders failed: %s", exc)
        return {"status": "error", "error": str(exc)}
