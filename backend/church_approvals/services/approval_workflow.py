"""Approval flow state machine.

Flow:  PENDING → IN_PROGRESS → APPROVED | REJECTED   (terminal, absorbing)
Step:  PENDING → APPROVED | REJECTED                 (set exactly once)

apply_decision() is the single transition for both outcomes. It mutates
the flow, its steps and the transaction held by a FlowContext, buffers
audit entries, and returns the notifications to send. It never performs
I/O: the store commits the context and the service dispatches the events
only after the commit succeeded.

Steps sharing a step_order form a group. A group is satisfied when all of
its required steps are approved (or, for a group with no required steps,
when any step is). Any rejection terminates the whole flow.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from church_approvals.core.exceptions import (
    AlreadyProcessed,
    FlowNotActionable,
    InvalidDecision,
    NotAuthorized,
    StepNotActive,
    StepNotFound,
)
from church_approvals.models.approval import FLOW_ACTIVE_STATUSES
from church_approvals.services.audit import AuditEntry

APPROVE = "APPROVE"
REJECT = "REJECT"


# ─── Notification events ───

@dataclass(frozen=True)
class ApprovalRequested:
    approver_id: uuid.UUID
    transaction_id: uuid.UUID
    organization_id: uuid.UUID
    step_id: uuid.UUID


@dataclass(frozen=True)
class ApprovalCompleted:
    transaction_id: uuid.UUID
    requester_id: uuid.UUID
    approved: bool
    reason: str | None = None


@dataclass(frozen=True)
class ApprovalReminder:
    approver_id: uuid.UUID
    transaction_id: uuid.UUID
    step_id: uuid.UUID
    hours_overdue: int


# ─── Transition context and result ───

@dataclass
class FlowContext:
    """Everything one decision may touch, loaded inside one unit of work."""

    flow: Any
    steps: list
    transaction: Any = None
    audit_entries: list[AuditEntry] = field(default_factory=list)

    def find_step(self, step_id: uuid.UUID):
        for step in self.steps:
            if str(step.id) == str(step_id):
                return step
        return None

    def audit(self, **kwargs) -> None:
        self.audit_entries.append(AuditEntry(**kwargs))


@dataclass
class DecisionResult:
    flow_id: uuid.UUID
    step_id: uuid.UUID
    completed: bool
    current_step: int
    outcome: str | None = None
    next_step_ids: list[uuid.UUID] = field(default_factory=list)

    @property
    def next_step_id(self) -> uuid.UUID | None:
        return self.next_step_ids[0] if self.next_step_ids else None


@dataclass
class Transition:
    result: DecisionResult
    events: list = field(default_factory=list)


# ─── Entry point ───

def normalize_action(action: str) -> str:
    normalized = (action or "").strip().upper()
    if normalized not in (APPROVE, REJECT):
        raise InvalidDecision(f"Invalid action '{action}'. Must be 'APPROVE' or 'REJECT'.")
    return normalized


def check_authority(flow, step, approver_id: uuid.UUID) -> None:
    """Raise unless `approver_id` may decide `step` right now. Never mutates."""
    if str(step.approver_id) != str(approver_id):
        raise NotAuthorized("You are not the designated approver for this step.")
    if step.status != "PENDING":
        raise AlreadyProcessed(f"Step {step.id} was already processed (status={step.status}).")
    if flow.status not in FLOW_ACTIVE_STATUSES:
        raise FlowNotActionable(f"Approval flow {flow.id} is closed (status={flow.status}).")
    if step.step_order != flow.current_step:
        raise StepNotActive(
            f"Step {step.id} is at order {step.step_order}; "
            f"the flow is waiting on order {flow.current_step}."
        )


def apply_decision(
    ctx: FlowContext,
    step_id: uuid.UUID,
    approver_id: uuid.UUID,
    action: str,
    now: datetime,
    comment: str | None = None,
    attachments: list[str] | None = None,
) -> Transition:
    action = normalize_action(action)
    flow = ctx.flow

    step = ctx.find_step(step_id)
    if step is None:
        raise StepNotFound(f"Approval step {step_id} not found.")

    check_authority(flow, step, approver_id)

    before = _snapshot(flow, step)

    step.status = "APPROVED" if action == APPROVE else "REJECTED"
    step.processed_at = now
    step.comments = comment
    step.attachments = list(attachments or [])

    ctx.audit(
        action=f"approval_step_{step.status.lower()}",
        entity_type="approval_step",
        entity_id=step.id,
        actor_id=approver_id,
        before={"step_status": before["step_status"]},
        after={"step_status": step.status, "step_order": step.step_order},
        notes=comment,
    )

    if action == REJECT:
        transition = _terminate(ctx, step, approved=False, reason=comment, now=now)
    elif not _group_satisfied(ctx.steps, step.step_order):
        transition = _hold(ctx, step)
    else:
        next_group = _next_pending_group(ctx.steps, step.step_order)
        if next_group:
            transition = _advance(ctx, step, next_group, now)
        else:
            transition = _terminate(ctx, step, approved=True, reason=None, now=now)

    ctx.audit(
        action=_flow_audit_action(flow, before),
        entity_type="approval_flow",
        entity_id=flow.id,
        actor_id=approver_id,
        before={k: before[k] for k in ("flow_status", "current_step")},
        after={"flow_status": flow.status, "current_step": flow.current_step},
    )
    return transition


# ─── Effects ───

def _hold(ctx: FlowContext, step) -> Transition:
    """Peers at this order still have to sign; the flow stays on this group."""
    ctx.flow.status = "IN_PROGRESS"
    return Transition(result=_result(ctx.flow, step, completed=False))


def _advance(ctx: FlowContext, step, next_group: list, now: datetime) -> Transition:
    flow = ctx.flow
    next_order = next_group[0].step_order

    flow.current_step = next_order
    flow.status = "IN_PROGRESS"

    events = []
    for peer in next_group:
        peer.activated_at = now
        events.append(
            ApprovalRequested(
                approver_id=peer.approver_id,
                transaction_id=flow.transaction_id,
                organization_id=peer.organization_id,
                step_id=peer.id,
            )
        )

    result = _result(flow, step, completed=False)
    result.next_step_ids = [peer.id for peer in next_group]
    return Transition(result=result, events=events)


def _terminate(ctx: FlowContext, step, approved: bool, reason: str | None, now: datetime) -> Transition:
    """Close the flow and the transaction it gates. Remaining steps stay PENDING."""
    flow = ctx.flow
    outcome = "APPROVED" if approved else "REJECTED"

    flow.status = outcome
    flow.completed_at = now

    transaction = ctx.transaction
    if transaction is not None:
        transaction.status = outcome
        if approved:
            transaction.approved_at = now
        else:
            transaction.rejected_at = now
            transaction.rejection_reason = reason

    result = _result(flow, step, completed=True)
    result.outcome = outcome
    event = ApprovalCompleted(
        transaction_id=flow.transaction_id,
        requester_id=flow.requester_id,
        approved=approved,
        reason=reason,
    )
    return Transition(result=result, events=[event])


# ─── Group helpers ───

def _group_satisfied(steps: list, order: int) -> bool:
    peers = [s for s in steps if s.step_order == order]
    required = [s for s in peers if s.is_required]
    if required:
        return all(s.status == "APPROVED" for s in required)
    return any(s.status == "APPROVED" for s in peers)


def _next_pending_group(steps: list, order: int) -> list:
    later = [s for s in steps if s.step_order > order and s.status == "PENDING"]
    if not later:
        return []
    next_order = min(s.step_order for s in later)
    return [s for s in later if s.step_order == next_order]


def _result(flow, step, completed: bool) -> DecisionResult:
    return DecisionResult(
        flow_id=flow.id,
        step_id=step.id,
        completed=completed,
        current_step=flow.current_step,
    )


def _snapshot(flow, step) -> dict:
    return {
        "flow_status": flow.status,
        "current_step": flow.current_step,
        "step_status": step.status,
    }


def _flow_audit_action(flow, before: dict) -> str:
    if flow.status in ("APPROVED", "REJECTED"):
        return f"approval_flow_{flow.status.lower()}"
    if flow.current_step != before["current_step"]:
        return "approval_flow_advanced"
    if flow.status != before["flow_status"]:
        return "approval_flow_started"
    return "approval_flow_updated"
