"""Approval notifications — console mock while MAIL_ENABLED=False.

Delivery is fire-and-forget: dispatch() logs and swallows every notifier
failure so a broken mail relay can never undo or fail a committed
approval decision.
"""
import logging
import uuid
from typing import Iterable

from church_approvals.core.config import settings
from church_approvals.services.approval_workflow import (
    ApprovalCompleted,
    ApprovalReminder,
    ApprovalRequested,
)

logger = logging.getLogger(__name__)


class Notifier:
    """Sends (or mock-logs) approval emails."""

    def notify_approval_request(
        self,
        approver_id: uuid.UUID,
        transaction_id: uuid.UUID,
        organization_id: uuid.UUID,
    ) -> None:
        self._deliver(
            to=approver_id,
            subject=f"Action required: expense {transaction_id} awaits your approval",
            body=f"Organization: {organization_id}",
        )

    def notify_approval_completion(
        self,
        transaction_id: uuid.UUID,
        approved: bool,
        reason: str | None = None,
        requester_id: uuid.UUID | None = None,
    ) -> None:
        outcome = "approved" if approved else "rejected"
        body = f"Reason: {reason}" if reason else ""
        self._deliver(
            to=requester_id,
            subject=f"Your expense {transaction_id} was {outcome}",
            body=body,
        )

    def notify_approval_reminder(
        self,
        approver_id: uuid.UUID,
        transaction_id: uuid.UUID,
        hours_overdue: int,
    ) -> None:
        self._deliver(
            to=approver_id,
            subject=f"Reminder: expense {transaction_id} has waited {hours_overdue}h past its deadline",
            body="",
        )

    def _deliver(self, to, subject: str, body: str) -> None:
        if not settings.MAIL_ENABLED:
            logger.info(
                "\n"
                "=== APPROVAL NOTIFICATION ===\n"
                "From: %s <%s>\n"
                "To user: %s\n"
                "Subject: %s\n"
                "%s\n"
                "=============================",
                settings.MAIL_FROM_NAME,
                settings.MAIL_FROM,
                to,
                subject,
                body,
            )
            return

        # Real SMTP path (not wired yet)
        logger.warning(
            "MAIL_ENABLED=True but SMTP transport is not configured. "
            "Notification to user %s logged only: %s",
            to, subject,
        )


def dispatch(notifier: Notifier, events: Iterable) -> int:
    """Deliver events best-effort. Returns how many were delivered."""
    delivered = 0
    for event in events:
        try:
            if isinstance(event, ApprovalRequested):
                notifier.notify_approval_request(
                    event.approver_id, event.transaction_id, event.organization_id
                )
            elif isinstance(event, ApprovalCompleted):
                notifier.notify_approval_completion(
                    event.transaction_id,
                    event.approved,
                    event.reason,
                    requester_id=event.requester_id,
                )
            elif isinstance(event, ApprovalReminder):
                notifier.notify_approval_reminder(
                    event.approver_id, event.transaction_id, event.hours_overdue
                )
            else:
                logger.warning("dispatch: unknown event type %s", type(event).__name__)
                continue
            delivered += 1
        except Exception as exc:
            logger.error("Notification %s failed: %s", event, exc, exc_info=True)
    return delivered
