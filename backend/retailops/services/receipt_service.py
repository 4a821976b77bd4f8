# Overview: Service-layer allocation of human-readable receipt numbers.

from __future__ import annotations

from datetime import date

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ReceiptSequence
from ..time_utils import utcnow


def format_receipt_number(prefix: str, business_date: date, number: int, pad: int = 4) -> str:
    """RCP-20260104-0007 style receipt number."""
    return f"{prefix}-{business_date.strftime('%Y%m%d')}-{str(number).zfill(pad)}"


def next_receipt_number(*, business_date: date | None = None, prefix: str | None = None) -> str:
    """
    Atomically allocate the next receipt number for a business day.

    Increments the day's sequence row with a single UPDATE; the first sale
    of the day inserts the row, and a concurrent insert falls back to the
    UPDATE path. Does not commit.

    NOTE: call before any other write in the transaction. Losing the insert
    race rolls the session back.
    """
    if business_date is None:
        business_date = utcnow().date()
    if prefix is None:
        prefix = current_app.config.get("RECEIPT_PREFIX", "RCP")

    stmt = (
        update(ReceiptSequence)
        .where(ReceiptSequence.business_date == business_date)
        .values(next_number=ReceiptSequence.next_number + 1)
        .execution_options(synchronize_session=False)
    )

    def _current() -> int:
        return (
            db.session.query(ReceiptSequence.next_number)
            .filter_by(business_date=business_date)
            .scalar()
        ) - 1

    if db.session.execute(stmt).rowcount:
        return format_receipt_number(prefix, business_date, _current())

    db.session.add(ReceiptSequence(business_date=business_date, next_number=2))
    try:
        db.session.flush()
        number = 1
    except IntegrityError:
        db.session.rollback()
        if not db.session.execute(stmt).rowcount:
            raise
        number = _current()

    return format_receipt_number(prefix, business_date, number)
