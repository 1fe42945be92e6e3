"""Organization directory — hierarchy and role-holder lookups for planning.

The planner only needs two questions answered: "what is the path from this
organization to the root?" and "who holds one of these leadership roles
here?". OrganizationDirectory is that seam; SqlOrganizationDirectory
answers it from the membership tables.
"""
import abc
import logging
import uuid
from dataclasses import dataclass
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from church_approvals.models.organization import (
    Organization,
    OrganizationMembership,
    OrganizationRole,
)
from church_approvals.models.user import User

logger = logging.getLogger(__name__)

# Guards against a corrupted parent chain looping forever.
MAX_HIERARCHY_DEPTH = 32


@dataclass(frozen=True)
class OrganizationNode:
    id: uuid.UUID
    name: str
    parent_id: uuid.UUID | None = None


@dataclass(frozen=True)
class RoleHolder:
    user_id: uuid.UUID
    user_name: str
    role_name: str
    role_level: int
    organization_id: uuid.UUID
    organization_name: str


class OrganizationDirectory(abc.ABC):

    @abc.abstractmethod
    def get_hierarchy(self, organization_id: uuid.UUID) -> list[OrganizationNode]:
        """Return nodes from the given organization up to the root, inclusive.

        Empty when the organization does not exist or is inactive.
        """

    @abc.abstractmethod
    def find_role_holder(
        self, organization_id: uuid.UUID, roles: tuple[str, ...]
    ) -> RoleHolder | None:
        """Return the active member holding the highest-ranked of `roles` here.

        Ties break on role name, then member id, so the answer is stable
        for a fixed directory snapshot.
        """


class SqlOrganizationDirectory(OrganizationDirectory):
    """Directory backed by organizations / organization_memberships tables."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get_hierarchy(self, organization_id: uuid.UUID) -> list[OrganizationNode]:
        hierarchy: list[OrganizationNode] = []
        seen: set[uuid.UUID] = set()
        current_id: uuid.UUID | None = organization_id

        with self._session_factory() as db:
            while current_id is not None and len(hierarchy) < MAX_HIERARCHY_DEPTH:
                if current_id in seen:
                    logger.warning("Organization hierarchy cycle detected at %s", current_id)
                    break
                seen.add(current_id)

                org = db.execute(
                    select(Organization).where(
                        Organization.id == current_id,
                        Organization.is_active.is_(True),
                    )
                ).scalars().first()
                if org is None:
                    break

                hierarchy.append(OrganizationNode(id=org.id, name=org.name, parent_id=org.parent_id))
                current_id = org.parent_id

        return hierarchy

    def find_role_holder(
        self, organization_id: uuid.UUID, roles: tuple[str, ...]
    ) -> RoleHolder | None:
        if not roles:
            return None

        stmt = (
            select(User, OrganizationRole, Organization)
            .join(OrganizationMembership, OrganizationMembership.member_id == User.id)
            .join(OrganizationRole, OrganizationRole.id == OrganizationMembership.role_id)
            .join(Organization, Organization.id == OrganizationMembership.organization_id)
            .where(
                OrganizationMembership.organization_id == organization_id,
                OrganizationMembership.is_active.is_(True),
                OrganizationRole.name.in_(list(roles)),
                OrganizationRole.is_active.is_(True),
                OrganizationRole.is_leadership.is_(True),
                User.is_active.is_(True),
            )
            .order_by(OrganizationRole.level.desc(), OrganizationRole.name.asc(), User.id.asc())
            .limit(1)
        )

        with self._session_factory() as db:
            row = db.execute(stmt).first()

        if row is None:
            return None

        user, role, org = row
        return RoleHolder(
            user_id=user.id,
            user_name=user.name,
            role_name=role.name,
            role_level=role.level,
            organization_id=org.id,
            organization_name=org.name,
        )
