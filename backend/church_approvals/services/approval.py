"""Approval service — submission, decisions and queries for expense approvals.

All methods are synchronous and go through an ApprovalStore bound to a
sync sessionmaker, so the same service instance is safe to call from API
handlers and from Celery tasks.

Notifications are dispatched only after the unit of work committed; a
failing notifier is logged and never undoes a decision.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from church_approvals.core.config import settings
from church_approvals.core.exceptions import FlowNotFound, InvalidQuery, NotAuthorized, StepNotFound
from church_approvals.db.base import utcnow
from church_approvals.models.approval import ApprovalFlow, ApprovalStep
from church_approvals.services.approval_planner import ApprovalPlan, ApprovalPlanner
from church_approvals.services.approval_store import ApprovalStore, as_utc
from church_approvals.services.approval_workflow import (
    ApprovalReminder,
    ApprovalRequested,
    DecisionResult,
    FlowContext,
    apply_decision,
    normalize_action,
)
from church_approvals.services.audit import AuditEntry
from church_approvals.services.notifications import Notifier, dispatch

logger = logging.getLogger(__name__)

STATS_DEFAULT_WINDOW_DAYS = 30


@dataclass(frozen=True)
class OverdueStep:
    step: ApprovalStep
    hours_overdue: int


class ApprovalService:

    def __init__(
        self,
        store: ApprovalStore,
        planner: ApprovalPlanner,
        notifier: Notifier,
        clock: Callable[[], datetime] = utcnow,
        reminder_interval_hours: int = 24,
        max_page_size: int = 100,
    ):
        self.store = store
        self.planner = planner
        self.notifier = notifier
        self.clock = clock
        self.reminder_interval_hours = reminder_interval_hours
        self.max_page_size = max_page_size

    # ─── Submission ───

    def preview_approval_flow(
        self,
        requester_id: uuid.UUID,
        organization_id: uuid.UUID,
        amount: Decimal,
        category: str,
        priority: str | None = None,
    ) -> ApprovalPlan:
        """Plan the approver chain without persisting anything."""
        return self.planner.plan(requester_id, organization_id, amount, category, priority)

    def submit_expense_request(
        self,
        transaction_id: uuid.UUID,
        requester_id: uuid.UUID,
        organization_id: uuid.UUID,
        amount: Decimal,
        category: str,
        priority: str | None = None,
    ) -> uuid.UUID:
        """Create the approval flow for a transaction and notify its first approvers.

        Planning runs first, so a request nobody can approve leaves no rows
        behind. The flow, its steps, the transaction stamp and the audit
        entry commit together.

        Raises:
            PlanningFailed / NoApproversFound: no usable approver chain.
            TransactionNotFound: the transaction does not exist.
            DuplicateSubmission: the transaction already has a flow.
            SubmissionMismatch: amount, category or organization differ from the
                stored transaction.
        """
        plan = self.planner.plan(requester_id, organization_id, amount, category, priority)
        now = self.clock()

        flow = ApprovalFlow(
            id=uuid.uuid4(),
            transaction_id=transaction_id,
            requester_id=requester_id,
            organization_id=organization_id,
            amount=Decimal(str(amount)),
            category=category.strip().upper(),
            priority=plan.priority,
            total_steps=plan.total_steps,
            current_step=1,
            status="PENDING",
        )
        flow.steps = [
            ApprovalStep(
                id=uuid.uuid4(),
                step_order=planned.step_order,
                approver_id=planned.approver_id,
                approver_role=planned.approver_role,
                organization_id=planned.organization_id,
                is_required=planned.is_required,
                is_parallel=planned.is_parallel,
                timeout_hours=planned.timeout_hours,
                status="PENDING",
                attachments=[],
                activated_at=now if planned.step_order == 1 else None,
            )
            for planned in plan.steps
        ]

        audit = AuditEntry(
            action="approval_flow_submitted",
            entity_type="approval_flow",
            entity_id=flow.id,
            actor_id=requester_id,
            after={
                "transaction_id": str(transaction_id),
                "rule": plan.rule_name,
                "priority": plan.priority,
                "total_steps": plan.total_steps,
                "approvers": [str(step.approver_id) for step in plan.steps],
            },
            notes="; ".join(plan.warnings) or None,
        )
        requests = [
            ApprovalRequested(
                approver_id=step.approver_id,
                transaction_id=transaction_id,
                organization_id=step.organization_id,
                step_id=step.id,
            )
            for step in flow.steps
            if step.step_order == 1
        ]
        flow_id = self.store.create_flow(flow, submitted_at=now, audit_entries=[audit])

        logger.info(
            "Approval flow %s submitted for transaction %s (%d steps, rule=%s)",
            flow_id, transaction_id, plan.total_steps, plan.rule_name,
        )

        dispatch(self.notifier, requests)
        return flow_id

    # ─── Decisions ───

    def process_approval(
        self,
        step_id: uuid.UUID,
        approver_id: uuid.UUID,
        action: str,
        comment: str | None = None,
        attachments: list[str] | None = None,
    ) -> DecisionResult:
        """Apply an APPROVE or REJECT decision to a step.

        Validation happens inside the locked unit of work, so a concurrent
        decision on the same flow is seen before anything is written.
        """
        action = normalize_action(action)
        step = self.store.get_step(step_id)
        if step is None:
            raise StepNotFound(f"Approval step {step_id} not found.")

        now = self.clock()

        def decide(ctx: FlowContext):
            return apply_decision(
                ctx,
                step_id=step_id,
                approver_id=approver_id,
                action=action,
                now=now,
                comment=comment,
                attachments=attachments,
            )

        transition = self.store.with_flow_transaction(step.flow_id, decide)
        result = transition.result

        logger.info(
            "Step %s %s by %s (flow=%s current_step=%d completed=%s)",
            step_id, action, approver_id, result.flow_id, result.current_step, result.completed,
        )
        dispatch(self.notifier, transition.events)
        return result

    # ─── Queries ───

    def get_pending_approvals(
        self, approver_id: uuid.UUID, page: int = 1, limit: int = 20
    ) -> list[ApprovalStep]:
        offset, limit = self._paging(page, limit)
        return self.store.list_pending_steps(approver_id, offset, limit)

    def get_my_requests(
        self, requester_id: uuid.UUID, page: int = 1, limit: int = 20
    ) -> list[ApprovalFlow]:
        offset, limit = self._paging(page, limit)
        return self.store.list_flows_for_requester(requester_id, offset, limit)

    def get_flow(self, flow_id: uuid.UUID, viewer_id: uuid.UUID) -> ApprovalFlow:
        flow = self.store.get_flow(flow_id)
        if flow is None:
            raise FlowNotFound(f"Approval flow {flow_id} not found.")
        _check_visible(flow, viewer_id)
        return flow

    def get_flow_by_transaction(
        self, transaction_id: uuid.UUID, viewer_id: uuid.UUID
    ) -> ApprovalFlow | None:
        flow = self.store.get_flow_by_transaction(transaction_id)
        if flow is not None:
            _check_visible(flow, viewer_id)
        return flow

    def get_approval_stats(
        self,
        organization_id: uuid.UUID | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> dict:
        date_to = as_utc(date_to) or self.clock()
        date_from = as_utc(date_from) or date_to - timedelta(days=STATS_DEFAULT_WINDOW_DAYS)
        if date_from > date_to:
            raise InvalidQuery("date_from must not be after date_to.")

        stats = self.store.flow_stats(date_from, date_to, organization_id)
        stats.update(date_from=date_from, date_to=date_to, organization_id=organization_id)
        return stats

    # ─── Reminders ───

    def list_overdue_steps(self, now: datetime | None = None) -> list[OverdueStep]:
        """Current-group pending steps past their deadline and not reminded recently."""
        now = now or self.clock()
        interval = timedelta(hours=self.reminder_interval_hours)

        overdue = []
        for step in self.store.list_reminder_candidates():
            deadline = as_utc(step.activated_at) + timedelta(hours=step.timeout_hours)
            if deadline > now:
                continue
            last = as_utc(step.last_reminded_at)
            if last is not None and now - last < interval:
                continue
            hours = int((now - deadline).total_seconds() // 3600)
            overdue.append(OverdueStep(step=step, hours_overdue=hours))
        return overdue

    def send_overdue_reminders(self, now: datetime | None = None) -> int:
        """Remind approvers of overdue steps. Never changes a step or flow status."""
        now = now or self.clock()
        overdue = self.list_overdue_steps(now)
        if not overdue:
            return 0

        self.store.mark_reminded([item.step.id for item in overdue], now)
        events = [
            ApprovalReminder(
                approver_id=item.step.approver_id,
                transaction_id=item.step.flow.transaction_id,
                step_id=item.step.id,
                hours_overdue=item.hours_overdue,
            )
            for item in overdue
        ]
        sent = dispatch(self.notifier, events)
        logger.info("Overdue reminders: %d due, %d delivered", len(events), sent)
        return sent

    # ─── Helpers ───

    def _paging(self, page: int, limit: int) -> tuple[int, int]:
        if page < 1:
            raise InvalidQuery("page must be >= 1.")
        if not 1 <= limit <= self.max_page_size:
            raise InvalidQuery(f"limit must be between 1 and {self.max_page_size}.")
        return (page - 1) * limit, limit


def _check_visible(flow: ApprovalFlow, viewer_id: uuid.UUID) -> None:
    viewer = str(viewer_id)
    if str(flow.requester_id) == viewer:
        return
    if any(str(step.approver_id) == viewer for step in flow.steps):
        return
    raise NotAuthorized("You are neither the requester nor an approver of this flow.")


def build_approval_service(session_factory=None, notifier: Notifier | None = None) -> ApprovalService:
    """Wire the service against the sync database session factory."""
    from church_approvals.db.session import SyncSessionLocal
    from church_approvals.services.org_directory import SqlOrganizationDirectory

    session_factory = session_factory or SyncSessionLocal
    planner = ApprovalPlanner(
        SqlOrganizationDirectory(session_factory),
        default_timeout_hours=settings.APPROVAL_DEFAULT_TIMEOUT_HOURS,
        long_plan_warning_days=settings.APPROVAL_LONG_PLAN_WARNING_DAYS,
    )
    return ApprovalService(
        store=ApprovalStore(session_factory),
        planner=planner,
        notifier=notifier or Notifier(),
        reminder_interval_hours=settings.APPROVAL_REMINDER_INTERVAL_HOURS,
        max_page_size=settings.APPROVAL_MAX_PAGE_SIZE,
    )
