"""Pydantic schemas for approval workflow API endpoints."""
import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from church_approvals.services.approval_matrix import CATEGORIES
from church_approvals.models.approval import PRIORITIES


# ─── Requests ───

class ApprovalPreviewRequest(BaseModel):
    organization_id: uuid.UUID
    amount: Decimal = Field(gt=0)
    category: str
    priority: str | None = None

    @field_validator("category")
    @classmethod
    def _category(cls, value: str) -> str:
        return normalize_category(value)

    @field_validator("priority")
    @classmethod
    def _priority(cls, value: str | None) -> str | None:
        return normalize_priority(value)


class ExpenseSubmitRequest(ApprovalPreviewRequest):
    transaction_id: uuid.UUID


class ApprovalDecisionRequest(BaseModel):
    comment: str | None = Field(default=None, max_length=2000)
    attachments: list[str] = Field(default_factory=list, max_length=20)


# ─── Plan preview ───

class PlannedStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    step_order: int
    approver_id: uuid.UUID
    approver_name: str
    approver_role: str
    organization_id: uuid.UUID
    organization_name: str
    is_required: bool
    is_parallel: bool
    timeout_hours: int | None


class ApprovalPlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rule_name: str
    priority: str
    total_steps: int
    estimated_days: int
    warnings: list[str]
    steps: list[PlannedStepOut]


class SubmitResponse(BaseModel):
    flow_id: uuid.UUID


# ─── Flow / step output ───

class ApprovalStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    flow_id: uuid.UUID
    step_order: int
    approver_id: uuid.UUID
    approver_role: str
    organization_id: uuid.UUID
    is_required: bool
    is_parallel: bool
    timeout_hours: int | None
    status: str
    processed_at: datetime | None
    comments: str | None
    attachments: list[str]
    activated_at: datetime | None
    created_at: datetime


class ApprovalFlowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    requester_id: uuid.UUID
    organization_id: uuid.UUID
    amount: Decimal
    category: str
    priority: str
    total_steps: int
    current_step: int
    status: str
    completed_at: datetime | None
    created_at: datetime
    steps: list[ApprovalStepOut] = []


class FlowSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    amount: Decimal
    category: str
    priority: str
    current_step: int
    total_steps: int
    status: str
    created_at: datetime


class PendingApprovalOut(ApprovalStepOut):
    flow: FlowSummaryOut
    # False while an earlier order group of the same flow is still open.
    is_actionable: bool = False

    @classmethod
    def from_step(cls, step) -> "PendingApprovalOut":
        out = cls.model_validate(step)
        out.is_actionable = step.step_order == step.flow.current_step
        return out


class PendingApprovalListResponse(BaseModel):
    items: list[PendingApprovalOut]
    page: int
    limit: int


class FlowListResponse(BaseModel):
    items: list[ApprovalFlowOut]
    page: int
    limit: int


# ─── Decisions ───

class DecisionResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    flow_id: uuid.UUID
    step_id: uuid.UUID
    completed: bool
    current_step: int
    outcome: str | None
    next_step_id: uuid.UUID | None
    next_step_ids: list[uuid.UUID]


# ─── Stats ───

class ApprovalStatsOut(BaseModel):
    organization_id: uuid.UUID | None
    date_from: datetime
    date_to: datetime
    total_count: int
    pending_count: int
    in_progress_count: int
    approved_count: int
    rejected_count: int
    avg_approval_hours: float
    approval_rate: float
    status_breakdown: dict[str, int]


def normalize_category(value: str) -> str:
    category = (value or "").strip().upper()
    if category not in CATEGORIES:
        raise ValueError(f"category must be one of {', '.join(CATEGORIES)}")
    return category


def normalize_priority(value: str | None) -> str | None:
    if value is None:
        return None
    priority = value.strip().upper()
    if priority not in PRIORITIES:
        raise ValueError(f"priority must be one of {', '.join(PRIORITIES)}")
    return priority
