"""Tests for the approval store unit of work."""
import uuid
from decimal import Decimal

import pytest

from church_approvals.core.exceptions import ApprovalOperationFailed, FlowNotFound
from church_approvals.db.base import Base


def _submit(service, church, make_transaction):
    txn_id = make_transaction()
    return service.submit_expense_request(txn_id, church.member, church.youth, Decimal("250000"), "MINISTRY")


def test_callback_sees_flow_steps_and_transaction(store, service, church, make_transaction):
    flow_id = _submit(service, church, make_transaction)

    seen = store.with_flow_transaction(
        flow_id, lambda ctx: (ctx.flow.id, [s.step_order for s in ctx.steps], ctx.transaction.status)
    )

    assert seen == (flow_id, [1, 2], "PENDING")


def test_failing_callback_rolls_everything_back(store, service, church, make_transaction):
    flow_id = _submit(service, church, make_transaction)

    def mutate_then_fail(ctx):
        ctx.flow.status = "APPROVED"
        ctx.steps[0].status = "APPROVED"
        ctx.audit(action="approval_flow_approved", entity_type="approval_flow", entity_id=ctx.flow.id)
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        store.with_flow_transaction(flow_id, mutate_then_fail)

    flow = store.get_flow(flow_id)
    assert flow.status == "PENDING"
    assert flow.steps[0].status == "PENDING"


def test_unknown_flow_raises(store, church):
    with pytest.raises(FlowNotFound):
        store.with_flow_transaction(uuid.uuid4(), lambda ctx: None)


def test_database_errors_are_wrapped(store, session_factory):
    Base.metadata.drop_all(session_factory.kw["bind"])

    with pytest.raises(ApprovalOperationFailed) as excinfo:
        store.get_step(uuid.uuid4())

    assert excinfo.value.__cause__ is not None
