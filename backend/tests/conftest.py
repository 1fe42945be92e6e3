"""Shared fixtures: an in-memory SQLite database seeded with a small church.

  Grace Community Church (root)  Senior Pastor, Committee Chair,
                                 Facilities Chair, General Secretary
  └── North Parish               Parish Leader
      └── Youth Ministry         Department Head, Deputy Head, Member
"""
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from church_approvals.db.base import Base
from church_approvals.models import (
    Organization,
    OrganizationMembership,
    OrganizationRole,
    Transaction,
    User,
)
from church_approvals.services.approval import ApprovalService
from church_approvals.services.approval_planner import ApprovalPlanner
from church_approvals.services.approval_store import ApprovalStore
from church_approvals.services.notifications import Notifier
from church_approvals.services.org_directory import SqlOrganizationDirectory


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def church(session_factory):
    """Seed the hierarchy above; returns ids by short name."""
    with session_factory() as db, db.begin():
        root = Organization(id=uuid.uuid4(), name="Grace Community Church", parent_id=None)
        parish = Organization(id=uuid.uuid4(), name="North Parish", parent_id=root.id)
        youth = Organization(id=uuid.uuid4(), name="Youth Ministry", parent_id=parish.id)
        db.add_all([root, parish, youth])

        roles = {}
        for name, level, leadership in [
            ("Senior Pastor", 100, True),
            ("Committee Chair", 90, True),
            ("Facilities Chair", 85, True),
            ("General Secretary", 80, True),
            ("Parish Leader", 60, True),
            ("Department Head", 40, True),
            ("Deputy Head", 30, True),
            ("Member", 0, False),
        ]:
            roles[name] = OrganizationRole(id=uuid.uuid4(), name=name, level=level, is_leadership=leadership)
        db.add_all(roles.values())

        users = {}
        for key, name, app_role, org, role in [
            ("pastor", "Pastor Kim", "ADMIN", root, "Senior Pastor"),
            ("chair", "Elder Park", "MEMBER", root, "Committee Chair"),
            ("facilities", "Deacon Choi", "MEMBER", root, "Facilities Chair"),
            ("secretary", "Ms. Lee", "FINANCE", root, "General Secretary"),
            ("parish_leader", "Elder Jung", "MEMBER", parish, "Parish Leader"),
            ("head", "Mr. Han", "MEMBER", youth, "Department Head"),
            ("deputy", "Ms. Yoon", "MEMBER", youth, "Deputy Head"),
            ("member", "Mr. Seo", "MEMBER", youth, "Member"),
        ]:
            user = User(id=uuid.uuid4(), email=f"{key}@church.example.org", name=name, role=app_role)
            users[key] = user
            db.add(user)
            db.add(OrganizationMembership(organization_id=org.id, member_id=user.id, role_id=roles[role].id))

    return SimpleNamespace(
        root=root.id,
        parish=parish.id,
        youth=youth.id,
        users={key: user.id for key, user in users.items()},
        **{key: user.id for key, user in users.items()},
    )


@pytest.fixture
def make_transaction(session_factory, church):
    def _make(amount="250000", category="MINISTRY", requester=None, organization=None) -> uuid.UUID:
        with session_factory() as db, db.begin():
            txn = Transaction(
                id=uuid.uuid4(),
                requester_id=requester or church.member,
                organization_id=organization or church.youth,
                amount=Decimal(amount),
                category=category,
                description="Test expense",
                status="DRAFT",
            )
            db.add(txn)
        return txn.id
    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def notifier():
    return MagicMock(spec=Notifier)


@pytest.fixture
def store(session_factory):
    return ApprovalStore(session_factory)


@pytest.fixture
def service(session_factory, store, notifier, clock):
    planner = ApprovalPlanner(SqlOrganizationDirectory(session_factory))
    return ApprovalService(store, planner, notifier, clock=clock)
