"""Seed script — creates tables and a sample church hierarchy for dev.

Church → parish → department, the leadership roles the default approval
matrix refers to, one member per role, and a DRAFT transaction ready to
be submitted. Prints a dev access token for every seeded user.

Idempotent: checks for existing records before inserting.
Run: python backend/scripts/seed.py
"""
import asyncio
import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from church_approvals.core.config import settings
from church_approvals.core.security import create_access_token
from church_approvals.db.base import Base
from church_approvals.models import (
    Organization,
    OrganizationMembership,
    OrganizationRole,
    Transaction,
    User,
)

# name, level, is_leadership
ROLES = [
    ("Senior Pastor", 100, True),
    ("Committee Chair", 90, True),
    ("Facilities Chair", 85, True),
    ("General Secretary", 80, True),
    ("Parish Leader", 60, True),
    ("Division Leader", 55, True),
    ("Department Head", 40, True),
    ("Deputy Head", 30, True),
    ("Member", 0, False),
]

# email, name, app role, organization key, organization role
MEMBERS = [
    ("pastor@church.example.org", "Pastor Kim", "ADMIN", "church", "Senior Pastor"),
    ("chair@church.example.org", "Elder Park", "MEMBER", "church", "Committee Chair"),
    ("facilities@church.example.org", "Deacon Choi", "MEMBER", "church", "Facilities Chair"),
    ("secretary@church.example.org", "Ms. Lee", "FINANCE", "church", "General Secretary"),
    ("parish@church.example.org", "Elder Jung", "MEMBER", "parish", "Parish Leader"),
    ("youth.head@church.example.org", "Mr. Han", "MEMBER", "youth", "Department Head"),
    ("youth.deputy@church.example.org", "Ms. Yoon", "MEMBER", "youth", "Deputy Head"),
    ("member@church.example.org", "Mr. Seo", "MEMBER", "youth", "Member"),
]


# ─── Upsert helpers ───────────────────────────────────────────────────────────

async def _upsert_org(db: AsyncSession, name: str, parent: Organization | None) -> Organization:
    result = await db.execute(select(Organization).where(Organization.name == name))
    org = result.scalars().first()
    if org:
        print(f"  [skip] Organization {name}")
        return org
    org = Organization(name=name, parent_id=parent.id if parent else None, is_active=True)
    db.add(org)
    await db.flush()
    print(f"  [new]  Organization {name}")
    return org


async def _upsert_role(db: AsyncSession, name: str, level: int, is_leadership: bool) -> OrganizationRole:
    result = await db.execute(select(OrganizationRole).where(OrganizationRole.name == name))
    role = result.scalars().first()
    if role:
        print(f"  [skip] Role {name}")
        return role
    role = OrganizationRole(name=name, level=level, is_leadership=is_leadership, is_active=True)
    db.add(role)
    await db.flush()
    print(f"  [new]  Role {name} (level {level})")
    return role


async def _upsert_user(db: AsyncSession, email: str, name: str, role: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalars().first()
    if user:
        print(f"  [skip] User {email}")
        return user
    user = User(email=email, name=name, role=role, is_active=True)
    db.add(user)
    await db.flush()
    print(f"  [new]  User {email} ({role})")
    return user


async def _upsert_membership(
    db: AsyncSession, org: Organization, user: User, role: OrganizationRole
) -> None:
    result = await db.execute(
        select(OrganizationMembership).where(
            OrganizationMembership.organization_id == org.id,
            OrganizationMembership.member_id == user.id,
        )
    )
    if result.scalars().first():
        return
    db.add(OrganizationMembership(organization_id=org.id, member_id=user.id, role_id=role.id, is_active=True))
    await db.flush()


async def seed():
    engine = create_async_engine(settings.DATABASE_URL)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async with SessionLocal() as db:
        print("Organizations:")
        church = await _upsert_org(db, "Grace Community Church", None)
        parish = await _upsert_org(db, "North Parish", church)
        youth = await _upsert_org(db, "Youth Ministry", parish)
        orgs = {"church": church, "parish": parish, "youth": youth}

        print("Roles:")
        roles = {}
        for name, level, is_leadership in ROLES:
            roles[name] = await _upsert_role(db, name, level, is_leadership)

        print("Members:")
        users = {}
        for email, name, app_role, org_key, org_role in MEMBERS:
            user = await _upsert_user(db, email, name, app_role)
            await _upsert_membership(db, orgs[org_key], user, roles[org_role])
            users[email] = user

        requester = users["member@church.example.org"]
        result = await db.execute(
            select(Transaction).where(Transaction.requester_id == requester.id)
        )
        draft = result.scalars().first()
        if draft is None:
            draft = Transaction(
                requester_id=requester.id,
                organization_id=youth.id,
                amount=Decimal("250000"),
                category="MINISTRY",
                description="Youth retreat supplies",
                status="DRAFT",
            )
            db.add(draft)
            await db.flush()
            print(f"  [new]  Draft transaction {draft.id}")

        await db.commit()

    await engine.dispose()

    print("\nDev access tokens:")
    for email, user in users.items():
        print(f"  {email}: {create_access_token(str(user.id), user.role)}")
    print(f"\nSubmit with organization_id={youth.id} transaction_id={draft.id}")


if __name__ == "__main__":
    asyncio.run(seed())
