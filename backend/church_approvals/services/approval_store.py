"""Approval flow store — SQLAlchemy unit of work for flows and their steps.

Writes for one flow always happen inside with_flow_transaction(), which
locks the flow row (SELECT ... FOR UPDATE), hands the flow, its steps and
its transaction to a callback, then commits everything the callback
changed plus its buffered audit entries in one database transaction.
Two decisions racing on the same flow therefore serialize; the loser
re-reads committed state.

SQLAlchemy errors never leave this module raw: they are logged and
re-raised as ApprovalOperationFailed.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Iterable, TypeVar

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, contains_eager, selectinload

from church_approvals.core.exceptions import (
    ApprovalOperationFailed,
    DuplicateSubmission,
    FlowNotFound,
    NotAuthorized,
    SubmissionMismatch,
    TransactionNotFound,
)
from church_approvals.models.approval import FLOW_ACTIVE_STATUSES, ApprovalFlow, ApprovalStep
from church_approvals.models.transaction import Transaction
from church_approvals.services import audit as audit_svc
from church_approvals.services.approval_workflow import FlowContext
from church_approvals.services.audit import AuditEntry

logger = logging.getLogger(__name__)

T = TypeVar("T")

PRIORITY_RANK = {"LOW": 0, "NORMAL": 1, "HIGH": 2, "URGENT": 3}


def as_utc(value: datetime | None) -> datetime | None:
    """Make DB timestamps tz-aware (SQLite hands them back naive)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ApprovalStore:

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    @contextmanager
    def _unit_of_work(self, operation: str):
        try:
            with self._session_factory() as db, db.begin():
                yield db
        except SQLAlchemyError as exc:
            logger.error("approval store: %s failed: %s", operation, exc, exc_info=True)
            raise ApprovalOperationFailed(f"Could not {operation}; please retry.") from exc

    @contextmanager
    def _reader(self, operation: str):
        try:
            with self._session_factory() as db:
                yield db
        except SQLAlchemyError as exc:
            logger.error("approval store: %s failed: %s", operation, exc, exc_info=True)
            raise ApprovalOperationFailed(f"Could not {operation}; please retry.") from exc

    # ─── Writes ───

    def create_flow(
        self,
        flow: ApprovalFlow,
        submitted_at: datetime,
        audit_entries: Iterable[AuditEntry] = (),
    ) -> uuid.UUID:
        """Persist a flow with its steps and stamp the transaction, atomically."""
        with self._unit_of_work("submit the expense request") as db:
            transaction = db.execute(
                select(Transaction)
                .where(Transaction.id == flow.transaction_id)
                .with_for_update()
            ).scalars().first()
            if transaction is None:
                raise TransactionNotFound(f"Transaction {flow.transaction_id} not found.")
            if str(transaction.requester_id) != str(flow.requester_id):
                raise NotAuthorized("Only the transaction's requester may submit it for approval.")
            _check_matches_transaction(flow, transaction)

            existing = db.execute(
                select(ApprovalFlow.id).where(ApprovalFlow.transaction_id == flow.transaction_id)
            ).first()
            if existing is not None:
                raise DuplicateSubmission(
                    f"Transaction {flow.transaction_id} already has approval flow {existing[0]}."
                )

            db.add(flow)
            transaction.status = "PENDING"
            transaction.submitted_at = submitted_at
            db.flush()
            audit_svc.log_many(db, audit_entries)
            flow_id = flow.id

        return flow_id

    def with_flow_transaction(self, flow_id: uuid.UUID, fn: Callable[[FlowContext], T]) -> T:
        """Run `fn` against a locked flow and commit whatever it changed.

        Any exception from `fn` rolls the whole unit back.
        """
        with self._unit_of_work("process the approval") as db:
            flow = db.execute(
                select(ApprovalFlow).where(ApprovalFlow.id == flow_id).with_for_update()
            ).scalars().first()
            if flow is None:
                raise FlowNotFound(f"Approval flow {flow_id} not found.")

            steps = list(
                db.execute(
                    select(ApprovalStep)
                    .where(ApprovalStep.flow_id == flow_id)
                    .order_by(ApprovalStep.step_order, ApprovalStep.created_at, ApprovalStep.id)
                ).scalars().all()
            )
            transaction = db.execute(
                select(Transaction).where(Transaction.id == flow.transaction_id).with_for_update()
            ).scalars().first()

            ctx = FlowContext(flow=flow, steps=steps, transaction=transaction)
            result = fn(ctx)
            db.flush()
            audit_svc.log_many(db, ctx.audit_entries)

        return result

    def mark_reminded(self, step_ids: list[uuid.UUID], reminded_at: datetime) -> None:
        if not step_ids:
            return
        with self._unit_of_work("record approval reminders") as db:
            db.execute(
                update(ApprovalStep)
                .where(ApprovalStep.id.in_(step_ids), ApprovalStep.status == "PENDING")
                .values(last_reminded_at=reminded_at)
            )

    # ─── Reads ───

    def get_step(self, step_id: uuid.UUID) -> ApprovalStep | None:
        with self._reader("load the approval step") as db:
            return db.execute(
                select(ApprovalStep).where(ApprovalStep.id == step_id)
            ).scalars().first()

    def get_flow(self, flow_id: uuid.UUID) -> ApprovalFlow | None:
        with self._reader("load the approval flow") as db:
            return db.execute(
                select(ApprovalFlow)
                .options(selectinload(ApprovalFlow.steps))
                .where(ApprovalFlow.id == flow_id)
            ).scalars().first()

    def get_flow_by_transaction(self, transaction_id: uuid.UUID) -> ApprovalFlow | None:
        with self._reader("load the approval flow") as db:
            return db.execute(
                select(ApprovalFlow)
                .options(selectinload(ApprovalFlow.steps))
                .where(ApprovalFlow.transaction_id == transaction_id)
            ).scalars().first()

    def list_pending_steps(self, approver_id: uuid.UUID, offset: int, limit: int) -> list[ApprovalStep]:
        """Pending steps for an approver in open flows; urgent and older first."""
        priority_rank = case(PRIORITY_RANK, value=ApprovalFlow.priority, else_=1)
        stmt = (
            select(ApprovalStep)
            .join(ApprovalStep.flow)
            .options(contains_eager(ApprovalStep.flow))
            .where(
                ApprovalStep.approver_id == approver_id,
                ApprovalStep.status == "PENDING",
                ApprovalFlow.status.in_(FLOW_ACTIVE_STATUSES),
            )
            .order_by(priority_rank.desc(), ApprovalStep.created_at.asc(), ApprovalStep.id.asc())
            .offset(offset)
            .limit(limit)
        )
        with self._reader("list pending approvals") as db:
            return list(db.execute(stmt).scalars().all())

    def list_flows_for_requester(self, requester_id: uuid.UUID, offset: int, limit: int) -> list[ApprovalFlow]:
        stmt = (
            select(ApprovalFlow)
            .options(selectinload(ApprovalFlow.steps))
            .where(ApprovalFlow.requester_id == requester_id)
            .order_by(ApprovalFlow.created_at.desc(), ApprovalFlow.id.desc())
            .offset(offset)
            .limit(limit)
        )
        with self._reader("list approval requests") as db:
            return list(db.execute(stmt).scalars().all())

    def list_reminder_candidates(self) -> list[ApprovalStep]:
        """Pending steps of the current group in open flows that carry a timeout."""
        stmt = (
            select(ApprovalStep)
            .join(ApprovalStep.flow)
            .options(contains_eager(ApprovalStep.flow))
            .where(
                ApprovalStep.status == "PENDING",
                ApprovalStep.timeout_hours.is_not(None),
                ApprovalStep.activated_at.is_not(None),
                ApprovalStep.step_order == ApprovalFlow.current_step,
                ApprovalFlow.status.in_(FLOW_ACTIVE_STATUSES),
            )
            .order_by(ApprovalStep.activated_at.asc(), ApprovalStep.id.asc())
        )
        with self._reader("list overdue approvals") as db:
            return list(db.execute(stmt).scalars().all())

    def flow_stats(
        self,
        date_from: datetime,
        date_to: datetime,
        organization_id: uuid.UUID | None = None,
    ) -> dict:
        filters = [ApprovalFlow.created_at >= date_from, ApprovalFlow.created_at <= date_to]
        if organization_id is not None:
            filters.append(ApprovalFlow.organization_id == organization_id)

        with self._reader("compute approval statistics") as db:
            status_counts = {
                status: count
                for status, count in db.execute(
                    select(ApprovalFlow.status, func.count(ApprovalFlow.id))
                    .where(*filters)
                    .group_by(ApprovalFlow.status)
                ).all()
            }
            completed = db.execute(
                select(ApprovalFlow.created_at, ApprovalFlow.completed_at).where(
                    *filters,
                    ApprovalFlow.status.in_(("APPROVED", "REJECTED")),
                    ApprovalFlow.completed_at.is_not(None),
                )
            ).all()

        durations = [
            (as_utc(done) - as_utc(started)).total_seconds() / 3600
            for started, done in completed
        ]
        approved = status_counts.get("APPROVED", 0)
        rejected = status_counts.get("REJECTED", 0)
        decided = approved + rejected

        return {
            "total_count": sum(status_counts.values()),
            "pending_count": status_counts.get("PENDING", 0),
            "in_progress_count": status_counts.get("IN_PROGRESS", 0),
            "approved_count": approved,
            "rejected_count": rejected,
            "avg_approval_hours": round(sum(durations) / len(durations), 2) if durations else 0.0,
            "approval_rate": round(approved / decided * 100, 2) if decided else 0.0,
            "status_breakdown": dict(sorted(status_counts.items())),
        }


def _check_matches_transaction(flow: ApprovalFlow, transaction: Transaction) -> None:
    """The chain was planned from the request; it must describe the stored expense."""
    mismatched = []
    if Decimal(str(transaction.amount)) != Decimal(str(flow.amount)):
        mismatched.append("amount")
    if (transaction.category or "").strip().upper() != flow.category:
        mismatched.append("category")
    if str(transaction.organization_id) != str(flow.organization_id):
        mismatched.append("organization")
    if mismatched:
        raise SubmissionMismatch(
            f"Submitted {', '.join(mismatched)} does not match transaction {transaction.id}."
        )
