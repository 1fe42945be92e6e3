"""Approval flow planner — turns an expense request into an approver chain.

Pure over the organization directory: it reads hierarchy and role holders
and returns an ApprovalPlan, never writing anything. For a fixed directory
snapshot the same request always yields the same plan.
"""
import dataclasses
import logging
import math
import uuid
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from church_approvals.core.exceptions import NoApproversFound, PlanningFailed
from church_approvals.models.approval import PRIORITIES
from church_approvals.services.approval_matrix import (
    CATEGORIES,
    DEFAULT_APPROVAL_MATRIX,
    FINAL_AUTHORITY_ROLES,
    ApprovalLevel,
    MatrixRule,
    alternative_role_groups,
    default_priority,
    find_matching_rule,
)
from church_approvals.services.org_directory import (
    OrganizationDirectory,
    OrganizationNode,
    RoleHolder,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedStep:
    step_order: int
    approver_id: uuid.UUID
    approver_name: str
    approver_role: str
    organization_id: uuid.UUID
    organization_name: str
    is_required: bool = True
    is_parallel: bool = False
    timeout_hours: int | None = None

    def as_resolution(self) -> dict:
        return {
            "approver_id": self.approver_id,
            "role": self.approver_role,
            "organization_id": self.organization_id,
            "required": self.is_required,
            "parallel": self.is_parallel,
            "timeout_hours": self.timeout_hours,
        }


@dataclass(frozen=True)
class ApprovalPlan:
    steps: tuple[PlannedStep, ...]
    rule_name: str
    priority: str
    estimated_days: int
    warnings: tuple[str, ...] = ()

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def first_group(self) -> tuple[PlannedStep, ...]:
        return tuple(step for step in self.steps if step.step_order == 1)


class ApprovalPlanner:

    def __init__(
        self,
        directory: OrganizationDirectory,
        matrix: tuple[MatrixRule, ...] = DEFAULT_APPROVAL_MATRIX,
        default_timeout_hours: int = 24,
        long_plan_warning_days: int = 7,
    ):
        self._directory = directory
        self._matrix = matrix
        self._default_timeout_hours = default_timeout_hours
        self._long_plan_warning_days = long_plan_warning_days

    # ─── Public API ───

    def plan(
        self,
        requester_id: uuid.UUID | None,
        organization_id: uuid.UUID,
        amount: Decimal | int | float | str,
        category: str,
        priority: str | None = None,
    ) -> ApprovalPlan:
        """Compute the ordered approval chain for an expense.

        Raises:
            PlanningFailed: amount, category or priority is invalid.
            NoApproversFound: no rule matches, the organization is unknown,
                or no approver could be staffed for any level.
        """
        amount = _to_amount(amount)
        category = (category or "").strip().upper()
        if category not in CATEGORIES:
            raise PlanningFailed(f"Unknown spending category '{category}'.")
        if priority is not None and priority not in PRIORITIES:
            raise PlanningFailed(f"Unknown priority '{priority}'.")

        rule = find_matching_rule(amount, category, str(organization_id), self._matrix)
        if rule is None:
            raise NoApproversFound(
                f"No approval rule covers {category} expenses of {amount}."
            )

        hierarchy = self._directory.get_hierarchy(organization_id)
        if not hierarchy:
            raise NoApproversFound(f"Organization {organization_id} not found.")

        warnings: list[str] = []
        candidates: list[PlannedStep] = []
        for level in sorted(rule.levels, key=lambda lvl: lvl.level_order):
            candidates.extend(self._staff_level(level, hierarchy, warnings))

        steps = _renumber(_remove_duplicate_approvers(candidates))
        if not steps:
            raise NoApproversFound(
                f"No eligible approvers for organization {organization_id} "
                f"(rule '{rule.name}')."
            )

        if requester_id is not None and any(
            str(step.approver_id) == str(requester_id) for step in steps
        ):
            warnings.append("The requester is also an approver in this chain.")

        estimated_days = self._estimated_days(steps)
        if estimated_days > self._long_plan_warning_days:
            warnings.append(f"Approval may take up to {estimated_days} days.")

        logger.info(
            "plan: org=%s amount=%s category=%s rule=%s steps=%d",
            organization_id, amount, category, rule.name, len(steps),
        )

        return ApprovalPlan(
            steps=tuple(steps),
            rule_name=rule.name,
            priority=priority or default_priority(category),
            estimated_days=estimated_days,
            warnings=tuple(warnings),
        )

    def resolve_approvers_for_amount(
        self,
        organization_id: uuid.UUID,
        amount: Decimal | int | float | str,
        category: str,
    ) -> list[dict]:
        """Return the resolved approver chain as plain dicts."""
        plan = self.plan(None, organization_id, amount, category)
        return [step.as_resolution() for step in plan.steps]

    # ─── Level staffing ───

    def _staff_level(
        self,
        level: ApprovalLevel,
        hierarchy: list[OrganizationNode],
        warnings: list[str],
    ) -> list[PlannedStep]:
        target = _target_organization(hierarchy, level.organization_level)

        # A parallel level needs one peer per listed role; otherwise any one role will do.
        if level.is_parallel:
            role_groups = [(role,) for role in level.required_roles]
        else:
            role_groups = [tuple(level.required_roles)]

        steps: list[PlannedStep] = []
        for roles in role_groups:
            holder = self._directory.find_role_holder(target.id, roles)
            if holder is None and level.is_required:
                holder = self._escalate(roles, hierarchy)
                if holder is not None:
                    logger.info(
                        "plan: level %d escalated from %s to %s (%s)",
                        level.level_order, roles, holder.role_name, holder.organization_name,
                    )
            if holder is None:
                if level.is_required:
                    warnings.append(
                        f"No approver found for level {level.level_order} ({', '.join(roles)})."
                    )
                continue
            steps.append(_planned_step(level, holder))
        return steps

    def _escalate(
        self, roles: tuple[str, ...], hierarchy: list[OrganizationNode]
    ) -> RoleHolder | None:
        """Find a stand-in for a required approver nobody holds at the target.

        Tries the same roles up the tree, then each role's alternatives
        across the whole tree, then the final-authority roles at the root.
        """
        for org in hierarchy[1:]:
            holder = self._directory.find_role_holder(org.id, roles)
            if holder is not None:
                return holder

        for alternatives in alternative_role_groups(roles):
            for org in hierarchy:
                holder = self._directory.find_role_holder(org.id, alternatives)
                if holder is not None:
                    return holder

        return self._directory.find_role_holder(hierarchy[-1].id, FINAL_AUTHORITY_ROLES)

    def _estimated_days(self, steps: list[PlannedStep]) -> int:
        total_hours = sum(step.timeout_hours or self._default_timeout_hours for step in steps)
        return math.ceil(total_hours / 24)


# ─── Helpers ───

def _to_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise PlanningFailed(f"Invalid amount '{value}'.")
    if not amount.is_finite() or amount <= 0:
        raise PlanningFailed("Amount must be a positive number.")
    return amount


def _target_organization(hierarchy: list[OrganizationNode], organization_level: str) -> OrganizationNode:
    if organization_level == "SAME":
        return hierarchy[0]
    if organization_level == "PARENT":
        return hierarchy[1] if len(hierarchy) > 1 else hierarchy[0]
    if organization_level == "ROOT":
        return hierarchy[-1]
    raise PlanningFailed(f"Unknown organization level '{organization_level}'.")


def _planned_step(level: ApprovalLevel, holder: RoleHolder) -> PlannedStep:
    return PlannedStep(
        step_order=level.level_order,
        approver_id=holder.user_id,
        approver_name=holder.user_name,
        approver_role=holder.role_name,
        organization_id=holder.organization_id,
        organization_name=holder.organization_name,
        is_required=level.is_required,
        is_parallel=level.is_parallel,
        timeout_hours=level.timeout_hours,
    )


def _remove_duplicate_approvers(steps: list[PlannedStep]) -> list[PlannedStep]:
    """Keep each approver once, at the highest level they were planned for."""
    kept: dict[uuid.UUID, PlannedStep] = {}
    for step in steps:
        existing = kept.get(step.approver_id)
        if existing is None or step.step_order > existing.step_order:
            kept[step.approver_id] = step
    return sorted(kept.values(), key=lambda step: step.step_order)


def _renumber(steps: list[PlannedStep]) -> list[PlannedStep]:
    """Close gaps so step orders run 1..N, peers keeping a shared order."""
    ranks = {order: rank for rank, order in enumerate(sorted({s.step_order for s in steps}), start=1)}
    return [dataclasses.replace(step, step_order=ranks[step.step_order]) for step in steps]
