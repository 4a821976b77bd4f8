# Overview: In-process change feed over committed entity store writes.

"""
Change feed.

Writes made through the entity store are recorded against the current
session and published to subscribers only after the session commits. A
rollback discards them. Subscribers use the feed to refresh aggregation
views; nothing in the state machine depends on it for correctness.
"""

from __future__ import annotations

from typing import Callable, Iterable

from flask import current_app
from sqlalchemy import event
from sqlalchemy.orm import Session

ChangeCallback = Callable[[str, frozenset], None]

_PENDING_KEY = "retailops.pending_changes"
_subscribers: list[ChangeCallback] = []


def subscribe(callback: ChangeCallback) -> Callable[[], None]:
    """Register a callback(table_name, row_ids). Returns an unsubscribe function."""
    _subscribers.append(callback)

    def _unsubscribe() -> None:
        if callback in _subscribers:
            _subscribers.remove(callback)

    return _unsubscribe


def record(session: Session, table: str, row_ids: Iterable[int]) -> None:
    pending = session.info.setdefault(_PENDING_KEY, {})
    pending.setdefault(table, set()).update(row_ids)


@event.listens_for(Session, "after_commit")
def _publish(session: Session) -> None:
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending:
        return
    for table, ids in pending.items():
        for callback in list(_subscribers):
            try:
                callback(table, frozenset(ids))
            except Exception:
                # A broken subscriber must not fail the committed write
                current_app.logger.exception("Change feed subscriber failed for %s", table)


@event.listens_for(Session, "after_rollback")
def _discard(session: Session) -> None:
    session.info.pop(_PENDING_KEY, None)
