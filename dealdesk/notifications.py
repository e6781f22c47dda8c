"""Best-effort notification fan-out and per-user inbox queries."""
from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from enum import StrEnum
from typing import Any, Callable

from sqlalchemy import func, insert, select, update
from sqlalchemy.orm import Session

from dealdesk.models import Notification, User

log = logging.getLogger(__name__)


class NotificationType(StrEnum):
    INTAKE_SUBMISSION = "INTAKE_SUBMISSION"
    INTAKE_CONVERTED = "INTAKE_CONVERTED"
    DEAL_CREATED = "DEAL_CREATED"
    DEAL_REPLACED = "DEAL_REPLACED"
    POSITION_AVAILABLE = "POSITION_AVAILABLE"


class Notifier:
    """Runs fan-out jobs off the request path.

    Jobs go to a bounded thread pool and open their own session, so the
    caller's session and response never wait on the user table. Without an
    executor jobs run inline (tests, CLI). Job failures are logged, never
    raised.
    """

    def __init__(self, session_factory: Callable[[], Session], executor: ThreadPoolExecutor | None = None):
        self._session_factory = session_factory
        self._executor = executor

    @classmethod
    def with_workers(cls, session_factory: Callable[[], Session], workers: int) -> Notifier:
        return cls(session_factory, ThreadPoolExecutor(max_workers=workers, thread_name_prefix="notify"))

    def broadcast(
        self, type: NotificationType, title: str, message: str,
        entity_type: str | None = None, entity_id: int | str | None = None,
    ) -> Future | None:
        return self._submit(self._fan_out, None, type, title, message, entity_type, entity_id)

    def notify(
        self, user_id: int, type: NotificationType, title: str, message: str,
        entity_type: str | None = None, entity_id: int | str | None = None,
    ) -> Future | None:
        return self._submit(self._fan_out, [user_id], type, title, message, entity_type, entity_id)

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Future | None:
        if self._executor is None:
            self._run_safely(fn, *args)
            return None
        try:
            return self._executor.submit(self._run_safely, fn, *args)
        except RuntimeError:
            log.exception("Notification executor rejected job")
            return None

    @staticmethod
    def _run_safely(fn: Callable[..., Any], *args: Any) -> None:
        try:
            fn(*args)
        except Exception:
            log.exception("Notification fan-out failed")

    def _fan_out(
        self, user_ids: list[int] | None, type: NotificationType, title: str, message: str,
        entity_type: str | None, entity_id: int | str | None,
    ) -> None:
        session = self._session_factory()
        try:
            if user_ids is None:
                user_ids = list(session.execute(select(User.id)).scalars().all())
            if not user_ids:
                return
            rows = [
                {
                    "user_id": uid, "type": str(type), "title": title, "message": message,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id) if entity_id is not None else None,
                }
                for uid in user_ids
            ]
            session.execute(insert(Notification), rows)
            session.commit()
            log.debug("Created %d %s notifications", len(rows), type)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------


def list_for_user(
    session: Session, user_id: int, *, unread_only: bool = False, limit: int = 50,
) -> tuple[list[Notification], int]:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.is_read.is_(False))
    rows = session.execute(
        query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(min(limit, 100))
    ).scalars().all()
    unread = session.execute(
        select(func.count()).select_from(Notification)
        .where(Notification.user_id == user_id, Notification.is_read.is_(False))
    ).scalar_one()
    return list(rows), unread


def mark_read(
    session: Session, user_id: int, *, notification_id: int | None = None, mark_all: bool = False,
) -> int:
    """Mark one or all of a user's notifications read. Returns rows changed."""
    stmt = update(Notification).where(Notification.user_id == user_id, Notification.is_read.is_(False))
    if not mark_all:
        if notification_id is None:
            return 0
        stmt = stmt.where(Notification.id == notification_id)
    result = session.execute(stmt.values(is_read=True))
    session.commit()
    return result.rowcount
