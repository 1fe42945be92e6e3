"""Approval workflow API endpoints (JWT required).

  POST /approvals/preview                 — plan the approver chain, persist nothing
  POST /approvals                         — submit a transaction for approval
  POST /approvals/steps/{step_id}/approve
  POST /approvals/steps/{step_id}/reject
  GET  /approvals/pending                 — steps waiting on the current user
  GET  /approvals/mine                    — flows the current user requested
  GET  /approvals/stats                   — FINANCE / ADMIN only
  GET  /approvals/flows/{flow_id}
  GET  /approvals/transactions/{transaction_id}

Handlers are sync: the approval service runs on the sync session factory
(shared with Celery), so FastAPI executes them in its threadpool. Domain
errors propagate to the ApprovalError handler in main.py.
"""
import logging
import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request, status

from church_approvals.core.config import settings
from church_approvals.core.deps import get_approval_service, get_current_user, require_role
from church_approvals.core.exceptions import FlowNotFound
from church_approvals.core.limiter import limiter
from church_approvals.schemas.approval import (
    ApprovalDecisionRequest,
    ApprovalFlowOut,
    ApprovalPlanOut,
    ApprovalPreviewRequest,
    ApprovalStatsOut,
    DecisionResultOut,
    ExpenseSubmitRequest,
    FlowListResponse,
    PendingApprovalListResponse,
    PendingApprovalOut,
    SubmitResponse,
)
from church_approvals.services.approval import ApprovalService
from church_approvals.services.approval_workflow import APPROVE, REJECT

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Submission ───

@router.post(
    "/preview",
    response_model=ApprovalPlanOut,
    summary="Preview the approver chain for an expense",
)
def preview_approval_flow(
    body: ApprovalPreviewRequest,
    current_user=Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    plan = service.preview_approval_flow(
        requester_id=current_user.id,
        organization_id=body.organization_id,
        amount=body.amount,
        category=body.category,
        priority=body.priority,
    )
    return ApprovalPlanOut.model_validate(plan)


@router.post(
    "",
    response_model=SubmitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an expense transaction for approval",
)
@limiter.limit(settings.RATE_LIMIT_DECISIONS)
def submit_expense_request(
    request: Request,
    body: ExpenseSubmitRequest,
    current_user=Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    flow_id = service.submit_expense_request(
        transaction_id=body.transaction_id,
        requester_id=current_user.id,
        organization_id=body.organization_id,
        amount=body.amount,
        category=body.category,
        priority=body.priority,
    )
    return SubmitResponse(flow_id=flow_id)


# ─── Decisions ───

def _decide(service: ApprovalService, step_id: uuid.UUID, user, action: str, body: ApprovalDecisionRequest):
    result = service.process_approval(
        step_id=step_id,
        approver_id=user.id,
        action=action,
        comment=body.comment,
        attachments=body.attachments,
    )
    return DecisionResultOut.model_validate(result)


@router.post(
    "/steps/{step_id}/approve",
    response_model=DecisionResultOut,
    summary="Approve an approval step",
)
@limiter.limit(settings.RATE_LIMIT_DECISIONS)
def approve_step(
    request: Request,
    step_id: uuid.UUID,
    body: ApprovalDecisionRequest | None = None,
    current_user=Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    return _decide(service, step_id, current_user, APPROVE, body or ApprovalDecisionRequest())


@router.post(
    "/steps/{step_id}/reject",
    response_model=DecisionResultOut,
    summary="Reject an approval step",
)
@limiter.limit(settings.RATE_LIMIT_DECISIONS)
def reject_step(
    request: Request,
    step_id: uuid.UUID,
    body: ApprovalDecisionRequest | None = None,
    current_user=Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    return _decide(service, step_id, current_user, REJECT, body or ApprovalDecisionRequest())


# ─── Queries ───

@router.get(
    "/pending",
    response_model=PendingApprovalListResponse,
    summary="List approval steps waiting on the current user",
)
def list_pending_approvals(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.APPROVAL_DEFAULT_PAGE_SIZE, ge=1, le=settings.APPROVAL_MAX_PAGE_SIZE),
    current_user=Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    steps = service.get_pending_approvals(current_user.id, page=page, limit=limit)
    return PendingApprovalListResponse(
        items=[PendingApprovalOut.from_step(step) for step in steps],
        page=page,
        limit=limit,
    )


@router.get(
    "/mine",
    response_model=FlowListResponse,
    summary="List approval flows requested by the current user",
)
def list_my_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.APPROVAL_DEFAULT_PAGE_SIZE, ge=1, le=settings.APPROVAL_MAX_PAGE_SIZE),
    current_user=Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    flows = service.get_my_requests(current_user.id, page=page, limit=limit)
    return FlowListResponse(
        items=[ApprovalFlowOut.model_validate(flow) for flow in flows],
        page=page,
        limit=limit,
    )


@router.get(
    "/stats",
    response_model=ApprovalStatsOut,
    summary="Approval statistics for a date range",
)
def get_approval_stats(
    organization_id: uuid.UUID | None = Query(None),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    current_user=Depends(require_role("FINANCE", "ADMIN")),
    service: ApprovalService = Depends(get_approval_service),
):
    stats = service.get_approval_stats(
        organization_id=organization_id, date_from=date_from, date_to=date_to
    )
    return ApprovalStatsOut(**stats)


@router.get(
    "/flows/{flow_id}",
    response_model=ApprovalFlowOut,
    summary="Get an approval flow with its steps",
)
def get_flow(
    flow_id: uuid.UUID,
    current_user=Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    return ApprovalFlowOut.model_validate(service.get_flow(flow_id, current_user.id))


@router.get(
    "/transactions/{transaction_id}",
    response_model=ApprovalFlowOut,
    summary="Get the approval flow gating a transaction",
)
def get_flow_by_transaction(
    transaction_id: uuid.UUID,
    current_user=Depends(get_current_user),
    service: ApprovalService = Depends(get_approval_service),
):
    flow = service.get_flow_by_transaction(transaction_id, current_user.id)
    if flow is None:
        raise FlowNotFound(f"No approval flow for transaction {transaction_id}.")
    return ApprovalFlowOut.model_validate(flow)
