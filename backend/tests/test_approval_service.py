"""End-to-end tests for ApprovalService over an in-memory SQLite database."""
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from church_approvals.core.exceptions import (
    AlreadyProcessed,
    DuplicateSubmission,
    FlowNotActionable,
    FlowNotFound,
    InvalidQuery,
    NoApproversFound,
    NotAuthorized,
    StepNotActive,
    StepNotFound,
    SubmissionMismatch,
    TransactionNotFound,
)
from church_approvals.db.base import utcnow
from church_approvals.models import ApprovalFlow, ApprovalStep, AuditLog, Transaction
from church_approvals.services.approval import ApprovalService
from church_approvals.services.approval_matrix import ApprovalLevel, MatrixRule
from church_approvals.services.approval_planner import ApprovalPlanner
from church_approvals.services.org_directory import SqlOrganizationDirectory


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _submit(service, church, make_transaction, amount="250000", category="MINISTRY", **kwargs):
    txn_id = make_transaction(amount=amount, category=category)
    flow_id = service.submit_expense_request(
        transaction_id=txn_id,
        requester_id=church.member,
        organization_id=church.youth,
        amount=Decimal(amount),
        category=category,
        **kwargs,
    )
    return txn_id, flow_id


def _steps(service, flow_id):
    return sorted(service.store.get_flow(flow_id).steps, key=lambda s: (s.step_order, str(s.approver_id)))


def _transaction(session_factory, txn_id):
    with session_factory() as db:
        return db.get(Transaction, txn_id)


def _count(session_factory, model):
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


# ─── Submission ───────────────────────────────────────────────────────────────

def test_submit_creates_flow_steps_and_stamps_transaction(service, church, make_transaction, session_factory, notifier):
    txn_id, flow_id = _submit(service, church, make_transaction)

    flow = service.store.get_flow(flow_id)
    assert flow.status == "PENDING"
    assert flow.current_step == 1
    assert flow.total_steps == 2
    assert flow.priority == "NORMAL"
    assert [s.approver_id for s in flow.steps] == [church.head, church.parish_leader]
    assert flow.steps[0].activated_at is not None
    assert flow.steps[1].activated_at is None

    txn = _transaction(session_factory, txn_id)
    assert txn.status == "PENDING"
    assert txn.submitted_at is not None

    notifier.notify_approval_request.assert_called_once_with(church.head, txn_id, church.youth)


def test_submit_writes_audit_entry(service, church, make_transaction, session_factory):
    _, flow_id = _submit(service, church, make_transaction)

    with session_factory() as db:
        row = db.execute(select(AuditLog).where(AuditLog.action == "approval_flow_submitted")).scalars().one()
    assert row.entity_id == flow_id
    assert row.actor_id == church.member


def test_submission_nobody_can_approve_creates_nothing(service, church, make_transaction, session_factory, notifier):
    with pytest.raises(NoApproversFound):
        _submit(service, church, make_transaction, amount="100000", category="OTHER")

    assert _count(session_factory, ApprovalFlow) == 0
    assert _count(session_factory, ApprovalStep) == 0
    notifier.notify_approval_request.assert_not_called()


def test_second_submission_for_same_transaction_is_refused(service, church, make_transaction, session_factory):
    txn_id, _ = _submit(service, church, make_transaction)

    with pytest.raises(DuplicateSubmission):
        service.submit_expense_request(txn_id, church.member, church.youth, Decimal("250000"), "MINISTRY")

    assert _count(session_factory, ApprovalFlow) == 1


def test_unknown_transaction_is_refused(service, church, session_factory):
    with pytest.raises(TransactionNotFound):
        service.submit_expense_request(uuid.uuid4(), church.member, church.youth, Decimal("5000"), "MINISTRY")

    assert _count(session_factory, ApprovalStep) == 0


def test_only_the_requester_may_submit(service, church, make_transaction):
    txn_id = make_transaction()

    with pytest.raises(NotAuthorized):
        service.submit_expense_request(txn_id, church.deputy, church.youth, Decimal("250000"), "MINISTRY")


@pytest.mark.parametrize(
    "amount, category, organization",
    [
        ("50000", "MINISTRY", "youth"),
        ("9000000", "EQUIPMENT", "youth"),
        ("9000000", "MINISTRY", "parish"),
    ],
)
def test_submission_must_describe_the_stored_transaction(
    service, church, make_transaction, session_factory, notifier, amount, category, organization
):
    txn_id = make_transaction(amount="9000000", category="MINISTRY")

    with pytest.raises(SubmissionMismatch):
        service.submit_expense_request(
            txn_id, church.member, getattr(church, organization), Decimal(amount), category
        )

    assert _count(session_factory, ApprovalFlow) == 0
    assert _transaction(session_factory, txn_id).status == "DRAFT"
    notifier.notify_approval_request.assert_not_called()


def test_matching_submission_gets_the_full_chain(service, church, make_transaction):
    _, flow_id = _submit(service, church, make_transaction, amount="9000000")

    assert service.store.get_flow(flow_id).total_steps == 3


def test_notification_failure_does_not_roll_back_submission(service, church, make_transaction, notifier):
    notifier.notify_approval_request.side_effect = RuntimeError("smtp down")

    _, flow_id = _submit(service, church, make_transaction)

    assert service.store.get_flow(flow_id).status == "PENDING"


def test_preview_persists_nothing(service, church, session_factory):
    plan = service.preview_approval_flow(church.member, church.youth, Decimal("1000000"), "MINISTRY")

    assert plan.total_steps == 3
    assert _count(session_factory, ApprovalFlow) == 0


# ─── Decisions ────────────────────────────────────────────────────────────────

def test_full_chain_approves_flow_and_transaction(service, church, make_transaction, session_factory, notifier):
    txn_id, flow_id = _submit(service, church, make_transaction, amount="1000000")
    first, second, third = _steps(service, flow_id)

    r1 = service.process_approval(first.id, church.head, "APPROVE")
    assert (r1.completed, r1.next_step_id, r1.current_step) == (False, second.id, 2)

    r2 = service.process_approval(second.id, church.parish_leader, "APPROVE")
    assert (r2.completed, r2.next_step_id, r2.current_step) == (False, third.id, 3)

    r3 = service.process_approval(third.id, church.chair, "APPROVE", comment="go ahead")
    assert r3.completed is True
    assert r3.outcome == "APPROVED"

    flow = service.store.get_flow(flow_id)
    assert flow.status == "APPROVED"
    assert flow.completed_at is not None
    assert all(s.status == "APPROVED" for s in flow.steps)
    assert _transaction(session_factory, txn_id).status == "APPROVED"
    notifier.notify_approval_completion.assert_called_once_with(
        txn_id, True, None, requester_id=church.member
    )


def test_rejection_terminates_early(service, church, make_transaction, session_factory):
    txn_id, flow_id = _submit(service, church, make_transaction, amount="1000000")
    first, second, third = _steps(service, flow_id)
    service.process_approval(first.id, church.head, "APPROVE")

    result = service.process_approval(second.id, church.parish_leader, "REJECT", comment="not this year")

    assert result.completed is True
    assert result.outcome == "REJECTED"
    flow = service.store.get_flow(flow_id)
    assert flow.status == "REJECTED"
    assert flow.current_step == 2
    assert [s.status for s in _steps(service, flow_id)] == ["APPROVED", "REJECTED", "PENDING"]
    txn = _transaction(session_factory, txn_id)
    assert txn.status == "REJECTED"
    assert txn.rejection_reason == "not this year"


def test_repeat_decision_is_refused_and_changes_nothing(service, church, make_transaction):
    _, flow_id = _submit(service, church, make_transaction)
    first, _ = _steps(service, flow_id)
    service.process_approval(first.id, church.head, "APPROVE")

    with pytest.raises(AlreadyProcessed):
        service.process_approval(first.id, church.head, "REJECT")

    flow = service.store.get_flow(flow_id)
    assert flow.status == "IN_PROGRESS"
    assert flow.current_step == 2


def test_wrong_approver_is_refused(service, church, make_transaction):
    _, flow_id = _submit(service, church, make_transaction)
    first, _ = _steps(service, flow_id)

    with pytest.raises(NotAuthorized):
        service.process_approval(first.id, church.deputy, "APPROVE")

    assert _steps(service, flow_id)[0].status == "PENDING"


def test_later_step_cannot_act_before_its_turn(service, church, make_transaction):
    _, flow_id = _submit(service, church, make_transaction)
    _, second = _steps(service, flow_id)

    with pytest.raises(StepNotActive):
        service.process_approval(second.id, church.parish_leader, "APPROVE")


def test_pending_step_of_closed_flow_is_refused(service, church, make_transaction):
    _, flow_id = _submit(service, church, make_transaction)
    first, second = _steps(service, flow_id)
    service.process_approval(first.id, church.head, "REJECT")

    with pytest.raises(FlowNotActionable):
        service.process_approval(second.id, church.parish_leader, "APPROVE")


def test_unknown_step_is_refused(service):
    with pytest.raises(StepNotFound):
        service.process_approval(uuid.uuid4(), uuid.uuid4(), "APPROVE")


def test_decision_stores_attachments_and_audit(service, church, make_transaction, session_factory):
    _, flow_id = _submit(service, church, make_transaction)
    first, _ = _steps(service, flow_id)

    service.process_approval(first.id, church.head, "APPROVE", comment="fine", attachments=["receipt-1.pdf"])

    step = _steps(service, flow_id)[0]
    assert step.comments == "fine"
    assert step.attachments == ["receipt-1.pdf"]
    with session_factory() as db:
        actions = db.execute(select(AuditLog.action)).scalars().all()
    assert "approval_step_approved" in actions
    assert "approval_flow_advanced" in actions


def test_notification_failure_does_not_roll_back_decision(service, church, make_transaction, notifier):
    _, flow_id = _submit(service, church, make_transaction)
    first, _ = _steps(service, flow_id)
    notifier.notify_approval_request.side_effect = RuntimeError("smtp down")

    result = service.process_approval(first.id, church.head, "APPROVE")

    assert result.current_step == 2
    assert service.store.get_flow(flow_id).current_step == 2


def test_parallel_peers_must_all_approve(session_factory, store, notifier, clock, church, make_transaction):
    rule = MatrixRule(
        name="retreat",
        categories=("EVENT",),
        levels=(
            ApprovalLevel(1, ("Department Head", "Deputy Head"), "SAME", is_parallel=True, timeout_hours=24),
            ApprovalLevel(2, ("Parish Leader",), "PARENT", timeout_hours=24),
        ),
    )
    planner = ApprovalPlanner(SqlOrganizationDirectory(session_factory), matrix=(rule,))
    service = ApprovalService(store, planner, notifier, clock=clock)
    _, flow_id = _submit(service, church, make_transaction, amount="1000", category="EVENT")
    steps = {s.approver_id: s for s in service.store.get_flow(flow_id).steps}

    assert notifier.notify_approval_request.call_count == 2

    held = service.process_approval(steps[church.head].id, church.head, "APPROVE")
    assert held.current_step == 1
    assert held.next_step_ids == []

    advanced = service.process_approval(steps[church.deputy].id, church.deputy, "APPROVE")
    assert advanced.current_step == 2
    assert advanced.next_step_id == steps[church.parish_leader].id


# ─── Queries ──────────────────────────────────────────────────────────────────

def test_pending_approvals_lists_open_steps_by_priority(service, church, make_transaction):
    _, normal = _submit(service, church, make_transaction, amount="250000")
    _, urgent = _submit(service, church, make_transaction, amount="250000", priority="URGENT")
    _, low = _submit(service, church, make_transaction, amount="5000", category="SUPPLIES")

    pending = service.get_pending_approvals(church.head)

    assert [s.flow_id for s in pending] == [urgent, normal, low]
    assert all(s.status == "PENDING" for s in pending)


def test_pending_approvals_excludes_closed_flows(service, church, make_transaction):
    _, flow_id = _submit(service, church, make_transaction)
    first, _ = _steps(service, flow_id)
    service.process_approval(first.id, church.head, "REJECT")

    assert service.get_pending_approvals(church.head) == []
    assert service.get_pending_approvals(church.parish_leader) == []


def test_pending_approvals_include_future_steps_with_their_flow(service, church, make_transaction):
    _, flow_id = _submit(service, church, make_transaction)

    pending = service.get_pending_approvals(church.parish_leader)

    assert len(pending) == 1
    assert pending[0].flow.current_step == 1
    assert pending[0].step_order == 2


def test_pending_approvals_paging(service, church, make_transaction):
    for _ in range(3):
        _submit(service, church, make_transaction)

    assert len(service.get_pending_approvals(church.head, page=1, limit=2)) == 2
    assert len(service.get_pending_approvals(church.head, page=2, limit=2)) == 1

    with pytest.raises(InvalidQuery):
        service.get_pending_approvals(church.head, page=0)
    with pytest.raises(InvalidQuery):
        service.get_pending_approvals(church.head, limit=101)


def test_my_requests_newest_first_with_ordered_steps(service, church, make_transaction):
    _, older = _submit(service, church, make_transaction)
    _, newer = _submit(service, church, make_transaction, amount="1000000")

    flows = service.get_my_requests(church.member)

    assert {f.id for f in flows} == {older, newer}
    assert flows[0].created_at >= flows[1].created_at
    for flow in flows:
        assert [s.step_order for s in flow.steps] == sorted(s.step_order for s in flow.steps)
    assert service.get_my_requests(church.head) == []


def test_get_flow_is_visible_to_requester_and_approvers_only(service, church, make_transaction):
    txn_id, flow_id = _submit(service, church, make_transaction)

    assert service.get_flow(flow_id, church.member).id == flow_id
    assert service.get_flow(flow_id, church.parish_leader).id == flow_id
    assert service.get_flow_by_transaction(txn_id, church.head).id == flow_id

    with pytest.raises(NotAuthorized):
        service.get_flow(flow_id, church.deputy)
    with pytest.raises(FlowNotFound):
        service.get_flow(uuid.uuid4(), church.member)
    assert service.get_flow_by_transaction(uuid.uuid4(), church.member) is None


def test_approval_stats(service, church, make_transaction):
    _, approved = _submit(service, church, make_transaction, amount="5000")
    _, rejected = _submit(service, church, make_transaction, amount="5000")
    _submit(service, church, make_transaction, amount="5000")
    service.process_approval(_steps(service, approved)[0].id, church.head, "APPROVE")
    service.process_approval(_steps(service, rejected)[0].id, church.head, "REJECT")

    now = utcnow()
    stats = service.get_approval_stats(date_from=now - timedelta(days=1), date_to=now + timedelta(days=1))

    assert stats["total_count"] == 3
    assert stats["approved_count"] == 1
    assert stats["rejected_count"] == 1
    assert stats["pending_count"] == 1
    assert stats["approval_rate"] == 50.0
    assert stats["status_breakdown"] == {"APPROVED": 1, "PENDING": 1, "REJECTED": 1}

    other_org = service.get_approval_stats(
        organization_id=church.root, date_from=now - timedelta(days=1), date_to=now + timedelta(days=1)
    )
    assert other_org["total_count"] == 0


def test_stats_reject_inverted_range(service):
    now = utcnow()
    with pytest.raises(InvalidQuery):
        service.get_approval_stats(date_from=now, date_to=now - timedelta(days=1))


# ─── Reminders ────────────────────────────────────────────────────────────────

def test_overdue_steps_are_reminded_once_per_interval(service, church, make_transaction, notifier, clock):
    txn_id, flow_id = _submit(service, church, make_transaction)
    first, _ = _steps(service, flow_id)

    assert service.send_overdue_reminders(clock.advance(hours=23)) == 0

    assert service.send_overdue_reminders(clock.advance(hours=3)) == 1
    notifier.notify_approval_reminder.assert_called_once_with(church.head, txn_id, 2)

    assert service.send_overdue_reminders(clock.advance(hours=1)) == 0
    assert service.send_overdue_reminders(clock.advance(hours=24)) == 1

    flow = service.store.get_flow(flow_id)
    assert flow.status == "PENDING"
    assert all(s.status == "PENDING" for s in flow.steps)


def test_reminders_skip_closed_flows_and_future_steps(service, church, make_transaction, clock):
    _, flow_id = _submit(service, church, make_transaction)
    first, _ = _steps(service, flow_id)
    service.process_approval(first.id, church.head, "REJECT")

    assert service.list_overdue_steps(clock.advance(days=10)) == []
