"""Tests for the SQL-backed organization directory."""
import uuid

from sqlalchemy import select

from church_approvals.models import Organization, OrganizationMembership, OrganizationRole, User
from church_approvals.services.org_directory import SqlOrganizationDirectory


def test_hierarchy_runs_from_organization_to_root(session_factory, church):
    directory = SqlOrganizationDirectory(session_factory)

    path = directory.get_hierarchy(church.youth)

    assert [node.id for node in path] == [church.youth, church.parish, church.root]
    assert path[-1].parent_id is None


def test_unknown_organization_has_empty_hierarchy(session_factory, church):
    assert SqlOrganizationDirectory(session_factory).get_hierarchy(uuid.uuid4()) == []


def test_hierarchy_stops_on_cycle(session_factory, church):
    with session_factory() as db, db.begin():
        db.get(Organization, church.root).parent_id = church.youth

    path = SqlOrganizationDirectory(session_factory).get_hierarchy(church.youth)

    assert [node.id for node in path] == [church.youth, church.parish, church.root]


def test_role_holder_prefers_highest_role_level(session_factory, church):
    directory = SqlOrganizationDirectory(session_factory)

    holder = directory.find_role_holder(church.youth, ("Deputy Head", "Department Head"))

    assert holder.user_id == church.head
    assert holder.role_name == "Department Head"
    assert holder.organization_name == "Youth Ministry"


def test_role_holder_ignores_inactive_and_non_leadership(session_factory, church):
    directory = SqlOrganizationDirectory(session_factory)
    with session_factory() as db, db.begin():
        db.get(User, church.head).is_active = False

    assert directory.find_role_holder(church.youth, ("Department Head",)) is None
    assert directory.find_role_holder(church.youth, ("Member",)) is None


def test_role_holder_ties_break_on_member_id(session_factory, church):
    with session_factory() as db, db.begin():
        role_id = db.execute(
            select(OrganizationRole.id).where(OrganizationRole.name == "Department Head")
        ).scalar_one()
        co_head = User(id=uuid.UUID(int=0), email="cohead@church.example.org", name="Mr. Ahn")
        db.add(co_head)
        db.add(OrganizationMembership(organization_id=church.youth, member_id=co_head.id, role_id=role_id))

    holder = SqlOrganizationDirectory(session_factory).find_role_holder(church.youth, ("Department Head",))

    assert holder.user_id == uuid.UUID(int=0)


def test_role_holder_with_no_roles_is_none(session_factory, church):
    assert SqlOrganizationDirectory(session_factory).find_role_holder(church.youth, ()) is None
