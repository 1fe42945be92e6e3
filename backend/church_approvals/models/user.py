from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from church_approvals.db.base import Base, TimestampMixin, UUIDMixin

ROLES = ("MEMBER", "FINANCE", "ADMIN")


class User(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="MEMBER")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
