# Overview: Entity store primitives used by the fulfillment state machine.

"""
Entity Store

Thin layer over the SQLAlchemy session exposing the operations the state
machine is allowed to use:

- update_where: compare-and-swap style conditional update returning the
  number of affected rows. Zero rows means the expectation did not hold.
- update_where_in: the same over a set of ids (bulk conditional update).
- insert_rows: batch insert, flushed so unique indexes are checked at once.
- select_where / fetch_fresh: reads that bypass stale identity-map state.

Nothing here commits. The calling service owns the transaction boundary.
Every successful write is recorded on the change feed.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Mapping

from sqlalchemy import select, update

from ..extensions import db
from . import change_feed


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _criteria(model, expected: Mapping[str, Any] | None) -> list:
    clauses = []
    for name, value in (expected or {}).items():
        column = getattr(model, name)
        if value is None:
            clauses.append(column.is_(None))
        elif isinstance(value, (list, tuple, set, frozenset)):
            clauses.append(column.in_([_plain(v) for v in value]))
        else:
            clauses.append(column == _plain(value))
    return clauses


def _values(values: Mapping[str, Any]) -> dict:
    return {name: _plain(value) for name, value in values.items()}


def update_where(
    model,
    row_id: int,
    values: Mapping[str, Any],
    expected: Mapping[str, Any] | None = None,
    extra_criteria: Iterable = (),
) -> int:
    """
    Conditionally update one row.

    ``expected`` maps column names to the value they must currently hold
    (None means IS NULL, a sequence means IN). ``extra_criteria`` takes raw
    SQLAlchemy clauses such as EXISTS subqueries.

    Returns the number of rows affected (0 or 1).
    """
    stmt = (
        update(model)
        .where(model.id == row_id, *_criteria(model, expected), *extra_criteria)
        .values(**_values(values))
        .execution_options(synchronize_session=False)
    )
    rowcount = db.session.execute(stmt).rowcount
    if rowcount:
        change_feed.record(db.session, model.__tablename__, [row_id])
    return rowcount


def update_where_in(
    model,
    row_ids: Iterable[int],
    values: Mapping[str, Any],
    expected: Mapping[str, Any] | None = None,
) -> int:
    """Conditionally update every row in ``row_ids``; returns rows affected."""
    ids = list(row_ids)
    if not ids:
        return 0
    stmt = (
        update(model)
        .where(model.id.in_(ids), *_criteria(model, expected))
        .values(**_values(values))
        .execution_options(synchronize_session=False)
    )
    rowcount = db.session.execute(stmt).rowcount
    if rowcount:
        change_feed.record(db.session, model.__tablename__, ids)
    return rowcount


def insert_rows(rows: list) -> list:
    """Add and flush ``rows`` so ids are assigned and constraints checked."""
    if not rows:
        return rows
    db.session.add_all(rows)
    db.session.flush()
    change_feed.record(db.session, rows[0].__tablename__, [row.id for row in rows])
    return rows


def select_where(model, order_by=None, **filters) -> list:
    """Select rows matching ``filters`` (same conventions as ``expected``)."""
    stmt = select(model).where(*_criteria(model, filters))
    if order_by is not None:
        stmt = stmt.order_by(order_by)
    return list(db.session.execute(stmt.execution_options(populate_existing=True)).scalars())


def fetch_fresh(model, row_id: int):
    """Load one row by id, overwriting any stale copy in the identity map."""
    return db.session.get(model, row_id, populate_existing=True)
