# Overview: Coupon gate; issue, print, receive and reissue of pickup vouchers.

"""
Coupon Gate

A sale's pickup voucher must be printed at the till and physically received
by the warehouse before picking may start.

DESIGN:
- issue() runs inside checkout; exactly one active coupon per sale, backed
  by a partial unique index.
- mark_printed() is called AFTER the voucher went to the printer. Recording
  is best effort: a failure is returned as a warning, never raised, because
  the paper already left the printer.
- receive_by_receipt_number() delegates to the atomic store procedure so
  two warehouse terminals scanning the same receipt cannot double-receive.
- is_picking_eligible() is a pure predicate used by the lifecycle controller.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Sale, SaleCoupon, SaleStatus
from ..time_utils import utcnow
from . import entity_store, procedures
from .concurrency import run_once, run_with_retry
from .errors import FulfillmentError, GuardError, NotFoundError


@dataclass
class PrintResult:
    """Outcome of recording a voucher print."""
    coupon_id: int
    recorded: bool
    coupon: SaleCoupon | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "coupon_id": self.coupon_id,
            "recorded": self.recorded,
            "coupon": self.coupon.to_dict() if self.coupon else None,
            "warnings": list(self.warnings),
        }


def issue(sale: Sale, actor_id: int | None = None) -> SaleCoupon:
    """
    Issue the initial coupon for a freshly created sale.

    Runs inside the checkout transaction (no commit).
    """
    coupon = SaleCoupon(
        sale_id=sale.id,
        branch_id=sale.branch_id,
        issued_at=utcnow(),
        issued_by=actor_id,
        print_count=0,
    )
    entity_store.insert_rows([coupon])
    return coupon


def get_active_coupon(sale_id: int) -> SaleCoupon | None:
    coupons = entity_store.select_where(SaleCoupon, sale_id=sale_id, revoked_at=None)
    return coupons[0] if coupons else None


def is_picking_eligible(sale: Sale, coupon: SaleCoupon | None) -> bool:
    return picking_block_reason(sale, coupon) is None


def picking_block_reason(sale: Sale, coupon: SaleCoupon | None) -> str | None:
    """Why picking cannot start yet, or None when it can."""
    if coupon is None or coupon.revoked_at is not None:
        return "Cannot start: no active coupon"
    if coupon.printed_at is None:
        return "Cannot start: coupon not printed"
    if coupon.received_at is None:
        return "Cannot start: coupon not received"
    if sale.status != SaleStatus.PENDING.value:
        return f"Cannot start: order is {sale.status}"
    return None


def mark_printed(coupon_id: int, actor_id: int) -> PrintResult:
    """
    Record that the voucher was sent to the printer.

    Never raises for store problems: the print already happened.
    """
    try:
        run_once(lambda: procedures.mark_coupon_printed(coupon_id, actor_id))
    except FulfillmentError as e:
        current_app.logger.warning("Coupon %s printed but not recorded: %s", coupon_id, e)
        return PrintResult(
            coupon_id=coupon_id,
            recorded=False,
            warnings=[f"Printed but not recorded: {e}"],
        )

    return PrintResult(
        coupon_id=coupon_id,
        recorded=True,
        coupon=entity_store.fetch_fresh(SaleCoupon, coupon_id),
    )


def receive_by_receipt_number(receipt_number: str, actor_id: int) -> SaleCoupon:
    """
    Warehouse acknowledges physical custody of a printed coupon.

    Idempotent: receiving the same receipt twice returns the coupon with its
    original received_at.

    Raises:
        GuardError: blank receipt, unknown/revoked coupon or returned sale.
        StoreUnavailableError: the store could not be reached.
    """
    receipt_number = (receipt_number or "").strip()
    if not receipt_number:
        raise GuardError("receipt_number required")

    coupon_id = run_with_retry(
        lambda: procedures.receive_coupon_by_receipt_number(receipt_number, actor_id)
    )
    current_app.logger.info("Receipt %s received by %s", receipt_number, actor_id)
    return entity_store.fetch_fresh(SaleCoupon, coupon_id)


def reissue(sale_id: int, reason: str, actor_id: int) -> SaleCoupon:
    """
    Replace a lost, unreceived coupon.

    Raises:
        GuardError: missing reason, sale not pending, coupon already received,
            or another terminal reissued at the same time.
    """
    reason = (reason or "").strip()
    if not reason:
        raise GuardError("reason required to reissue a coupon")

    def _op() -> int:
        try:
            return procedures.reissue_sale_coupon(sale_id, reason, actor_id)
        except IntegrityError:
            db.session.rollback()
            raise GuardError("Coupon was reissued concurrently; refresh and retry")

    coupon_id = run_once(_op)
    current_app.logger.info("Coupon reissued for sale %s by %s: %s", sale_id, actor_id, reason)
    return entity_store.fetch_fresh(SaleCoupon, coupon_id)


def get_coupon(coupon_id: int) -> SaleCoupon:
    coupon = entity_store.fetch_fresh(SaleCoupon, coupon_id)
    if coupon is None:
        raise NotFoundError(f"Coupon {coupon_id} not found")
    return coupon
