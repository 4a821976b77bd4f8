"""
Sales Service - checkout at the till

WHY: A sale, its items, the stock movement and the pickup coupon are created
together. Everything after checkout (printing, receiving, picking, returns)
is handled by the fulfillment services.
"""

from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import or_

from ..extensions import db
from ..models import Branch, Product, Sale, SaleItem, SaleStatus
from ..time_utils import start_of_day, utcnow
from . import coupon_service, entity_store, receipt_service, return_service
from .concurrency import run_once
from .errors import GuardError, NotFoundError


class SaleError(GuardError):
    """Raised for checkout validation errors."""
    pass


def _validate_lines(branch_id: int, lines: list[dict]) -> list[tuple[Product, int]]:
    if not lines:
        raise SaleError("Cannot create a sale with no lines")

    resolved = []
    invalid = []
    for line in lines:
        product_id = line.get("product_id")
        quantity = line.get("quantity")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            invalid.append({"product_id": product_id, "error": "quantity must be a positive integer"})
            continue
        product = db.session.get(Product, product_id) if product_id is not None else None
        if product is None or product.branch_id != branch_id:
            invalid.append({"product_id": product_id, "error": "product not found in branch"})
            continue
        resolved.append((product, quantity))

    if invalid:
        raise SaleError("Invalid sale lines", details={"lines": invalid})
    return resolved


def create_sale(
    branch_id: int,
    cashier_id: int,
    lines: list[dict],
    customer_name: str | None = None,
    customer_phone: str | None = None,
) -> Sale:
    """
    Check out a sale: receipt number, items, stock decrement and coupon.

    Args:
        lines: [{"product_id": 1, "quantity": 2}, ...]; prices are taken
            from the product at checkout time.

    Returns:
        Sale in pending status with one active, unprinted coupon.

    Raises:
        NotFoundError: unknown branch.
        SaleError: no lines, bad quantity, or product outside the branch.
    """
    def _op() -> int:
        branch = db.session.get(Branch, branch_id)
        if branch is None:
            raise NotFoundError(f"Branch {branch_id} not found")

        resolved = _validate_lines(branch_id, lines)

        # First write of the transaction; losing the sequence insert race
        # rolls back the session
        receipt_number = receipt_service.next_receipt_number()

        sale = Sale(
            branch_id=branch_id,
            receipt_number=receipt_number,
            status=SaleStatus.PENDING.value,
            cashier_id=cashier_id,
            customer_name=(customer_name or "").strip() or None,
            customer_phone=(customer_phone or "").strip() or None,
            total_cents=sum(p.unit_price_cents * qty for p, qty in resolved),
            created_at=utcnow(),
        )
        entity_store.insert_rows([sale])

        entity_store.insert_rows([
            SaleItem(
                sale_id=sale.id,
                product_id=product.id,
                quantity=quantity,
                unit_price_cents=product.unit_price_cents,
                picked=False,
            )
            for product, quantity in resolved
        ])

        for product, quantity in resolved:
            entity_store.update_where(
                Product,
                product.id,
                {"quantity_in_stock": Product.quantity_in_stock - quantity, "updated_at": utcnow()},
            )

        coupon_service.issue(sale, actor_id=cashier_id)
        db.session.commit()
        return sale.id

    sale_id = run_once(_op)
    return get_sale(sale_id)


def get_sale(sale_id: int) -> Sale:
    sale = entity_store.fetch_fresh(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def get_sale_by_receipt(receipt_number: str) -> Sale:
    sales = entity_store.select_where(Sale, receipt_number=(receipt_number or "").strip())
    if not sales:
        raise NotFoundError(f"Receipt {receipt_number} not found")
    return sales[0]


def search_returnable_sales(branch_id: int, term: str | None = None, day: date | None = None) -> list[Sale]:
    """
    Sales of a branch for one business day that may still be returned.

    Matches the receipt number, customer name or phone. Receipts that
    already carry a pending/approved return, and returned sales, are hidden.
    """
    start = start_of_day(day)
    query = (
        db.session.query(Sale)
        .filter(
            Sale.branch_id == branch_id,
            Sale.created_at >= start,
            Sale.created_at < start + timedelta(days=1),
            Sale.status != SaleStatus.RETURNED.value,
        )
    )
    term = (term or "").strip()
    if term:
        like = f"%{term}%"
        query = query.filter(or_(
            Sale.receipt_number.ilike(like),
            Sale.customer_name.ilike(like),
            Sale.customer_phone.ilike(like),
        ))
    sales = query.order_by(Sale.created_at.desc(), Sale.id.desc()).all()

    blocked = return_service.sale_ids_with_active_returns([s.id for s in sales])
    return [s for s in sales if s.id not in blocked]
