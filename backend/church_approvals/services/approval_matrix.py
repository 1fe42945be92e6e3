"""Approval matrix — who must sign off on which expenses.

A rule matches on spending category and amount range and lists the
approval levels to staff. Each level names the acceptable roles and which
node of the requester's hierarchy supplies the approver:

  SAME   — the requesting organization itself
  PARENT — its direct parent (falls back to SAME at the top of the tree)
  ROOT   — the church at the top of the tree

When several rules match, the one with the highest priority wins.
Amounts are in KRW.
"""
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal

CATEGORIES = (
    "MINISTRY",
    "SUPPLIES",
    "EQUIPMENT",
    "EVENT",
    "CONSTRUCTION",
    "FACILITIES",
    "SALARY",
    "BONUS",
    "BENEFITS",
    "UTILITIES",
    "MAINTENANCE",
    "OTHER",
)

ORGANIZATION_LEVELS = ("SAME", "PARENT", "ROOT")


@dataclass(frozen=True)
class ApprovalLevel:
    level_order: int
    required_roles: tuple[str, ...]
    organization_level: str = "SAME"
    is_required: bool = True
    is_parallel: bool = False
    timeout_hours: int | None = None


@dataclass(frozen=True)
class MatrixRule:
    name: str
    categories: tuple[str, ...]
    levels: tuple[ApprovalLevel, ...]
    priority: int = 0
    min_amount: Decimal | None = None
    max_amount: Decimal | None = None
    organization_id: str | None = None

    def matches(self, amount: Decimal, category: str, organization_id: str | None = None) -> bool:
        if category not in self.categories:
            return False
        # Bands are whole won; any fraction falls into the next band up.
        whole = Decimal(amount).to_integral_value(rounding=ROUND_CEILING)
        if self.min_amount is not None and whole < self.min_amount:
            return False
        if self.max_amount is not None and whole > self.max_amount:
            return False
        if self.organization_id and self.organization_id != organization_id:
            return False
        return True


DEFAULT_APPROVAL_MATRIX: tuple[MatrixRule, ...] = (
    MatrixRule(
        name="ministry_expense_small",
        categories=("MINISTRY", "SUPPLIES"),
        max_amount=Decimal("100000"),
        priority=50,
        levels=(
            ApprovalLevel(1, ("Department Head", "Deputy Head"), "SAME", timeout_hours=24),
        ),
    ),
    MatrixRule(
        name="ministry_expense_medium",
        categories=("MINISTRY", "SUPPLIES", "EQUIPMENT"),
        min_amount=Decimal("100001"),
        max_amount=Decimal("500000"),
        priority=70,
        levels=(
            ApprovalLevel(1, ("Department Head",), "SAME", timeout_hours=24),
            ApprovalLevel(2, ("Parish Leader", "Division Leader"), "PARENT", timeout_hours=48),
        ),
    ),
    MatrixRule(
        name="ministry_expense_large",
        categories=("MINISTRY", "EQUIPMENT", "EVENT"),
        min_amount=Decimal("500001"),
        priority=80,
        levels=(
            ApprovalLevel(1, ("Department Head",), "SAME", timeout_hours=24),
            ApprovalLevel(2, ("Parish Leader", "Division Leader"), "PARENT", timeout_hours=48),
            ApprovalLevel(3, ("Committee Chair", "President"), "ROOT", timeout_hours=72),
        ),
    ),
    MatrixRule(
        name="construction",
        categories=("CONSTRUCTION", "FACILITIES"),
        min_amount=Decimal("1"),
        priority=90,
        levels=(
            ApprovalLevel(1, ("Department Head",), "SAME", timeout_hours=24),
            ApprovalLevel(2, ("Parish Leader",), "PARENT", timeout_hours=48),
            ApprovalLevel(3, ("Facilities Chair",), "ROOT", timeout_hours=72),
            ApprovalLevel(4, ("Senior Pastor",), "ROOT", timeout_hours=72),
        ),
    ),
    MatrixRule(
        name="personnel",
        categories=("SALARY", "BONUS", "BENEFITS"),
        min_amount=Decimal("1"),
        priority=100,
        levels=(
            ApprovalLevel(1, ("General Secretary",), "ROOT", timeout_hours=48),
            ApprovalLevel(2, ("Senior Pastor",), "ROOT", timeout_hours=72),
        ),
    ),
    MatrixRule(
        name="utilities_maintenance",
        categories=("UTILITIES", "MAINTENANCE"),
        max_amount=Decimal("1000000"),
        priority=60,
        levels=(
            ApprovalLevel(1, ("General Secretary",), "ROOT", timeout_hours=24),
        ),
    ),
    MatrixRule(
        name="other",
        categories=("OTHER",),
        max_amount=Decimal("50000"),
        priority=10,
        levels=(
            ApprovalLevel(1, ("Department Head", "Deputy Head", "General Secretary"), "SAME", timeout_hours=24),
        ),
    ),
)

# Roles tried, in order, when nobody holds a required role anywhere up the tree.
ALTERNATIVE_ROLES: dict[str, tuple[str, ...]] = {
    "Department Head": ("Deputy Head", "Team Leader", "Leader"),
    "Parish Leader": ("Deputy Parish Leader", "Division Leader", "Department Head"),
    "Division Leader": ("Deputy Division Leader", "Department Head", "Deputy Head"),
    "Committee Chair": ("Vice Chair", "General Secretary", "Clerk"),
    "President": ("Vice President", "General Secretary", "Committee Chair"),
}

# Last resort at the root organization.
FINAL_AUTHORITY_ROLES = ("Senior Pastor", "Pastor", "Committee Chair", "President", "General Secretary")

_CATEGORY_PRIORITY = {
    "CONSTRUCTION": "HIGH",
    "SALARY": "HIGH",
    "UTILITIES": "NORMAL",
    "MAINTENANCE": "NORMAL",
    "SUPPLIES": "LOW",
    "OTHER": "LOW",
}


def find_matching_rule(
    amount: Decimal,
    category: str,
    organization_id: str | None = None,
    matrix: tuple[MatrixRule, ...] = DEFAULT_APPROVAL_MATRIX,
) -> MatrixRule | None:
    """Return the highest-priority rule matching amount and category, or None."""
    eligible = [rule for rule in matrix if rule.matches(amount, category, organization_id)]
    if not eligible:
        return None
    # Stable sort keeps declaration order among equal priorities.
    return sorted(eligible, key=lambda rule: -rule.priority)[0]


def alternative_role_groups(required_roles: tuple[str, ...]) -> list[tuple[str, ...]]:
    return [ALTERNATIVE_ROLES.get(role, (role,)) for role in required_roles]


def default_priority(category: str) -> str:
    """Priority used when a submission does not set one explicitly."""
    return _CATEGORY_PRIORITY.get(category, "NORMAL")
