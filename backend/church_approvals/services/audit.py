"""Audit log helper — append-only writes to audit_logs table.

State-machine code never touches the session: it buffers AuditEntry
objects and the store writes them inside the same database transaction
as the change they describe.
"""
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy.orm import Session

from church_approvals.models.audit import AuditLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEntry:
    action: str
    entity_type: str
    entity_id: uuid.UUID | str | None = None
    actor_id: uuid.UUID | str | None = None
    before: Any | None = None
    after: Any | None = None
    notes: str | None = None


def log(db: Session, entry: AuditEntry) -> AuditLog:
    """Write a single audit log entry.

    Args:
        db: Sync SQLAlchemy session; the caller controls the transaction.
        entry: What happened, e.g. 'approval_step_approved' on 'approval_step'.
    """
    row = AuditLog(
        actor_id=uuid.UUID(str(entry.actor_id)) if entry.actor_id else None,
        action=entry.action,
        entity_type=entry.entity_type,
        entity_id=uuid.UUID(str(entry.entity_id)) if entry.entity_id else None,
        before_state=json.dumps(entry.before, default=str) if entry.before is not None else None,
        after_state=json.dumps(entry.after, default=str) if entry.after is not None else None,
        notes=entry.notes,
    )
    db.add(row)
    logger.debug("Audit: %s %s/%s", entry.action, entry.entity_type, entry.entity_id)
    return row


def log_many(db: Session, entries: Iterable[AuditEntry]) -> list[AuditLog]:
    rows = [log(db, entry) for entry in entries]
    if rows:
        db.flush()
    return rows
