# Overview: Atomic multi-row store procedures used by the coupon gate and returns workflow.

"""
Atomic store procedures.

Each function here runs as ONE database transaction and relies only on
conditional writes, so two terminals calling it concurrently cannot both
apply the effect:

- receive_coupon_by_receipt_number: sets received_at once; repeat calls
  return the same coupon untouched.
- mark_coupon_printed: bumps print_count and stamps printed_at/printed_by.
- approve_return: pending -> approved and restores stock exactly once.
- reissue_sale_coupon: revokes the active coupon and issues a new one.

approve_return accepts commit=False so the returns workflow can approve a
whole receipt in a single transaction.
"""

from __future__ import annotations

from sqlalchemy import select

from ..extensions import db
from ..models import Product, Return, ReturnStatus, Sale, SaleCoupon, SaleItem, SaleStatus
from ..time_utils import utcnow
from . import entity_store
from .errors import GuardError, NotFoundError


def _active_coupon_id_for_receipt(receipt_number: str) -> tuple[int, str] | None:
    row = db.session.execute(
        select(SaleCoupon.id, Sale.status)
        .select_from(SaleCoupon)
        .join(Sale, Sale.id == SaleCoupon.sale_id)
        .where(Sale.receipt_number == receipt_number, SaleCoupon.revoked_at.is_(None))
    ).first()
    return (row[0], row[1]) if row else None


def receive_coupon_by_receipt_number(receipt_number: str, actor_id: int) -> int:
    """
    Warehouse receive of the active coupon for ``receipt_number``.

    Returns the coupon id. Idempotent: an already received coupon is left
    as is and its id returned.

    Raises:
        GuardError: no active coupon for the receipt, or the sale was
            returned before the coupon was received.
    """
    found = _active_coupon_id_for_receipt(receipt_number)
    if not found:
        db.session.rollback()
        raise GuardError(
            f"No active coupon for receipt {receipt_number}",
            details={"receipt_number": receipt_number},
        )
    coupon_id, sale_status = found

    rows = entity_store.update_where(
        SaleCoupon,
        coupon_id,
        {"received_at": utcnow(), "received_by": actor_id},
        expected={"received_at": None, "revoked_at": None},
        extra_criteria=[
            SaleCoupon.sale_id.in_(
                select(Sale.id).where(
                    Sale.receipt_number == receipt_number,
                    Sale.status != SaleStatus.RETURNED.value,
                )
            )
        ],
    )

    if not rows:
        coupon = entity_store.fetch_fresh(SaleCoupon, coupon_id)
        if coupon.revoked_at is not None:
            db.session.rollback()
            raise GuardError(f"Coupon for receipt {receipt_number} was revoked")
        if coupon.received_at is None:
            db.session.rollback()
            raise GuardError(
                f"Receipt {receipt_number} cannot be received (sale is {sale_status})",
                details={"status": sale_status},
            )

    db.session.commit()
    return coupon_id


def mark_coupon_printed(coupon_id: int, actor_id: int) -> bool:
    """
    Record a (re)print of an active coupon.

    Raises:
        NotFoundError: unknown coupon.
        GuardError: coupon revoked.
    """
    rows = entity_store.update_where(
        SaleCoupon,
        coupon_id,
        {
            "print_count": SaleCoupon.print_count + 1,
            "printed_at": utcnow(),
            "printed_by": actor_id,
        },
        expected={"revoked_at": None},
    )
    if not rows:
        coupon = entity_store.fetch_fresh(SaleCoupon, coupon_id)
        db.session.rollback()
        if coupon is None:
            raise NotFoundError(f"Coupon {coupon_id} not found")
        raise GuardError(f"Coupon {coupon_id} is revoked")

    db.session.commit()
    return True


def approve_return(return_id: int, actor_id: int, *, commit: bool = True) -> bool:
    """
    Approve one pending return row and put its quantity back in stock.

    Idempotent for rows already approved (no second stock movement).

    Raises:
        NotFoundError: unknown return row.
        GuardError: the row was rejected.
    """
    rows = entity_store.update_where(
        Return,
        return_id,
        {
            "status": ReturnStatus.APPROVED,
            "approved_by": actor_id,
            "approved_at": utcnow(),
        },
        expected={"status": ReturnStatus.PENDING},
    )

    if rows:
        product_id, quantity = db.session.execute(
            select(SaleItem.product_id, Return.quantity)
            .select_from(Return)
            .join(SaleItem, SaleItem.id == Return.sale_item_id)
            .where(Return.id == return_id)
        ).one()
        if product_id is not None:
            entity_store.update_where(
                Product,
                product_id,
                {"quantity_in_stock": Product.quantity_in_stock + quantity, "updated_at": utcnow()},
            )
    else:
        ret = entity_store.fetch_fresh(Return, return_id)
        if ret is None:
            raise NotFoundError(f"Return {return_id} not found")
        if ret.status != ReturnStatus.APPROVED.value:
            raise GuardError(
                f"Return {return_id} is {ret.status} and cannot be approved",
                details={"return_id": return_id, "status": ret.status},
            )

    if commit:
        db.session.commit()
    return True


def reissue_sale_coupon(sale_id: int, reason: str, actor_id: int) -> int:
    """
    Revoke the active coupon of a pending sale and issue a fresh one.

    Used when a customer lost an unreceived voucher. Returns the new coupon id.

    Raises:
        NotFoundError: unknown sale.
        GuardError: sale not pending, or the active coupon was already
            received by the warehouse.
    """
    sale = entity_store.fetch_fresh(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    if sale.status != SaleStatus.PENDING.value:
        raise GuardError(
            f"Cannot reissue coupon: sale {sale.receipt_number} is {sale.status}",
            details={"status": sale.status},
        )

    now = utcnow()
    active = entity_store.select_where(SaleCoupon, sale_id=sale_id, revoked_at=None)
    for coupon in active:
        rows = entity_store.update_where(
            SaleCoupon,
            coupon.id,
            {"revoked_at": now, "revoked_by": actor_id, "revoke_reason": reason},
            expected={"revoked_at": None, "received_at": None},
        )
        if not rows:
            db.session.rollback()
            raise GuardError(
                f"Cannot reissue coupon: receipt {sale.receipt_number} was already received or revoked"
            )

    coupon = SaleCoupon(
        sale_id=sale_id,
        branch_id=sale.branch_id,
        issued_at=now,
        issued_by=actor_id,
        print_count=0,
    )
    entity_store.insert_rows([coupon])
    db.session.commit()
    return coupon.id
