"""Append-only audit trail.

Audit rows are written after the primary mutation has committed, in their
own statement. A failure here is logged and swallowed: the caller's
mutation already succeeded and must be reported as such.
"""
from __future__ import annotations

import logging
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from dealdesk.models import AuditLog
from dealdesk.utils import ensure_utc

log = logging.getLogger(__name__)


class AuditAction(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    ARCHIVE = "ARCHIVE"
    REJECT = "REJECT"
    CONVERT = "CONVERT"
    CREDENTIAL_ACCESS = "CREDENTIAL_ACCESS"
    CREATE_REPLACEMENT = "CREATE_REPLACEMENT"
    ENDED_BY_REPLACEMENT = "ENDED_BY_REPLACEMENT"
    ENDED_BY_SCAN = "ENDED_BY_SCAN"
    CREATE_FROM_SCAN = "CREATE_FROM_SCAN"


BUSINESS_ACTIONS = (
    AuditAction.CREATE,
    AuditAction.UPDATE,
    AuditAction.ARCHIVE,
    AuditAction.CREATE_REPLACEMENT,
    AuditAction.ENDED_BY_REPLACEMENT,
    AuditAction.ENDED_BY_SCAN,
    AuditAction.CREATE_FROM_SCAN,
)


def build_entry(
    user_id: int | None, entity: str, entity_id: int | str, action: AuditAction,
    details: dict[str, Any] | None = None,
) -> AuditLog:
    return AuditLog(
        user_id=user_id, entity=entity, entity_id=str(entity_id),
        action=str(action), details=details,
    )


def record(
    session: Session, user_id: int | None, entity: str, entity_id: int | str,
    action: AuditAction, details: dict[str, Any] | None = None,
) -> bool:
    """Append one audit row and commit it. Returns False if the write failed."""
    try:
        session.add(build_entry(user_id, entity, entity_id, action, details))
        session.commit()
    except Exception:
        session.rollback()
        log.exception("Audit write failed: %s %s %s#%s", action, user_id, entity, entity_id)
        return False
    return True


def list_entries(
    session: Session, *, entity: str | None = None, entity_id: str | None = None,
    action: str | None = None, business_only: bool = True,
    date_from: datetime | None = None, date_to: datetime | None = None, page: int = 1, limit: int = 50,
) -> tuple[list[AuditLog], int]:
    query = select(AuditLog)
    if entity:
        query = query.where(AuditLog.entity == entity)
    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)
    if action:
        query = query.where(AuditLog.action == action)
    elif business_only:
        query = query.where(AuditLog.action.in_([str(a) for a in BUSINESS_ACTIONS]))
    if date_from is not None:
        query = query.where(AuditLog.timestamp >= ensure_utc(date_from))
    if date_to is not None:
        query = query.where(AuditLog.timestamp <= ensure_utc(date_to))

    total = session.execute(select(func.count()).select_from(query.subquery())).scalar_one()
    rows = session.execute(
        query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset((max(page, 1) - 1) * limit).limit(limit)
    ).scalars().all()
    return list(rows), total
