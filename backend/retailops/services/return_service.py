"""
Return Processing Service

Full-receipt returns with a separate approver.

LIFECYCLE (per return row):
1. Initiate (PENDING) - cashier returns every item on a receipt at once
2. Approve (APPROVED) - stock restored, then the sale moves to returned
   or Reject (REJECTED) - sale untouched, item may be returned again later

DESIGN PRINCIPLES:
- At most one pending/approved row per sale item. The service checks first,
  and the partial unique index on returns rejects a concurrent duplicate.
- Rows are always acted on per receipt (sale), never one by one.
- Approval is two-phase: every row is approved in one transaction, then the
  sale status transition is attempted. A failed transition is a warning;
  the approvals stay.
- Rejection is one conditional bulk update on rows still pending.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import ACTIVE_RETURN_STATUSES, Return, ReturnStatus, SaleItem, SaleStatus
from ..time_utils import utcnow
from . import entity_store, lifecycle_service, procedures
from .concurrency import run_with_retry
from .errors import DuplicateReturnError, GuardError, StoreUnavailableError
from .lifecycle_service import TransitionResult


@dataclass
class ApprovalResult:
    sale_id: int
    approved_ids: list[int]
    sale_transition: TransitionResult | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "approved_ids": list(self.approved_ids),
            "sale_transition": self.sale_transition.to_dict() if self.sale_transition else None,
            "warnings": list(self.warnings),
        }


@dataclass
class RejectionResult:
    sale_id: int
    rejected_count: int
    skipped_ids: list[int]

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "rejected_count": self.rejected_count,
            "skipped_ids": list(self.skipped_ids),
        }


# =============================================================================
# QUERIES
# =============================================================================

def get_active_returns(sale_item_ids: list[int]) -> list[Return]:
    """Pending or approved return rows for any of the given items."""
    if not sale_item_ids:
        return []
    return entity_store.select_where(
        Return, sale_item_id=list(sale_item_ids), status=ACTIVE_RETURN_STATUSES
    )


def get_sale_returns(sale_id: int) -> list[Return]:
    return entity_store.select_where(Return, order_by=Return.id, sale_id=sale_id)


def sale_ids_with_active_returns(sale_ids: list[int]) -> set[int]:
    if not sale_ids:
        return set()
    rows = entity_store.select_where(Return, sale_id=list(sale_ids), status=ACTIVE_RETURN_STATUSES)
    return {r.sale_id for r in rows}


# =============================================================================
# INITIATION
# =============================================================================

def initiate_full_return(sale_id: int, reason: str | None, actor_id: int) -> list[Return]:
    """
    Create one pending return row per item of the sale.

    Retries after a timeout re-run the duplicate check first, so a "maybe
    applied" insert is detected instead of being inserted twice.

    Raises:
        NotFoundError: sale does not exist.
        GuardError: sale already returned or has no items.
        DuplicateReturnError: an item already has a pending/approved return.
            ``retryable`` is True when a concurrent initiator won the race.
    """
    reason = (reason or "").strip() or None

    def _op() -> list[int]:
        sale = lifecycle_service.get_sale(sale_id)
        if sale.status == SaleStatus.RETURNED.value:
            raise GuardError(f"Receipt {sale.receipt_number} is already returned")

        items = entity_store.select_where(SaleItem, order_by=SaleItem.id, sale_id=sale_id)
        if not items:
            raise GuardError(f"Receipt {sale.receipt_number} has no items to return")

        existing = get_active_returns([item.id for item in items])
        if existing:
            raise DuplicateReturnError(
                "One or more items on this receipt already has an active return",
                details={"sale_item_ids": sorted({r.sale_item_id for r in existing})},
            )

        rows = [
            Return(
                sale_id=sale.id,
                sale_item_id=item.id,
                branch_id=sale.branch_id,
                quantity=item.quantity,
                reason=reason,
                initiated_by=actor_id,
                status=ReturnStatus.PENDING.value,
                created_at=utcnow(),
            )
            for item in items
        ]
        try:
            entity_store.insert_rows(rows)
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise DuplicateReturnError(
                "Another return for this receipt was just created; refresh and retry",
                retryable=True,
            )
        return [row.id for row in rows]

    ids = run_with_retry(_op)
    current_app.logger.info("Return initiated for sale %s by %s (%s items)", sale_id, actor_id, len(ids))
    return [entity_store.fetch_fresh(Return, rid) for rid in ids]


# =============================================================================
# APPROVAL / REJECTION (per receipt)
# =============================================================================

def _resolve_group(sale_id: int, return_ids: list[int] | None) -> list[Return]:
    lifecycle_service.get_sale(sale_id)
    if return_ids is None:
        rows = entity_store.select_where(
            Return, order_by=Return.id, sale_id=sale_id, status=ReturnStatus.PENDING
        )
    else:
        ids = sorted(set(return_ids))
        rows = entity_store.select_where(Return, order_by=Return.id, id=ids) if ids else []
        foreign = [r.id for r in rows if r.sale_id != sale_id]
        missing = sorted(set(ids) - {r.id for r in rows})
        if foreign or missing:
            raise GuardError(
                "Return rows do not belong to this receipt",
                details={"foreign_ids": foreign, "missing_ids": missing},
            )
    if not rows:
        raise GuardError("No return rows to act on for this receipt", details={"sale_id": sale_id})
    return rows


def approve_group(sale_id: int, return_ids: list[int] | None, actor_id: int) -> ApprovalResult:
    """
    Approve every given return row of a receipt, then mark the sale returned.

    Passing ``return_ids=None`` approves every pending row of the sale.

    Phase 1 approves all rows in one transaction through the per-row
    approval procedure; a concurrent reader never sees half a receipt
    approved. Phase 2 is the sale transition; if it fails the approvals are
    kept and a warning is returned.

    Raises:
        GuardError: ids missing/foreign, or a row was already rejected.
        StoreUnavailableError: phase 1 could not reach the store.
    """
    rows = _resolve_group(sale_id, return_ids)
    ids = [r.id for r in rows]

    def _approve_all() -> None:
        try:
            for rid in ids:
                procedures.approve_return(rid, actor_id, commit=False)
        except Exception:
            db.session.rollback()
            raise
        db.session.commit()

    run_with_retry(_approve_all)
    current_app.logger.info("Approved %s return rows for sale %s by %s", len(ids), sale_id, actor_id)

    result = ApprovalResult(sale_id=sale_id, approved_ids=ids)
    try:
        result.sale_transition = lifecycle_service.mark_returned(sale_id)
    except StoreUnavailableError as e:
        result.warnings.append(f"Approved items but failed to update sale status: {e}")
    else:
        if not result.sale_transition.ok:
            result.warnings.append(
                f"Approved items but failed to update sale status: {result.sale_transition.message}"
            )
    for warning in result.warnings:
        current_app.logger.warning("Sale %s: %s", sale_id, warning)
    return result


def reject_group(sale_id: int, return_ids: list[int] | None, actor_id: int) -> RejectionResult:
    """
    Reject the still-pending rows of a receipt in one conditional bulk update.

    Rows another approver already decided are skipped silently. The sale
    status is never changed by a rejection.
    """
    rows = _resolve_group(sale_id, return_ids)
    ids = [r.id for r in rows]
    was_pending = {r.id for r in rows if r.status == ReturnStatus.PENDING.value}
    decided_at = utcnow()

    def _op() -> int:
        count = entity_store.update_where_in(
            Return,
            ids,
            {
                "status": ReturnStatus.REJECTED,
                "approved_by": actor_id,
                "approved_at": decided_at,
            },
            expected={"status": ReturnStatus.PENDING, "sale_id": sale_id},
        )
        db.session.commit()
        return count

    count = run_with_retry(_op)
    after = entity_store.select_where(Return, id=ids)
    skipped = sorted(
        r.id for r in after
        if r.id not in was_pending
        or r.status != ReturnStatus.REJECTED.value
        or r.approved_by != actor_id
    )
    current_app.logger.info("Rejected %s return rows for sale %s by %s", count, sale_id, actor_id)
    return RejectionResult(sale_id=sale_id, rejected_count=count, skipped_ids=skipped)
