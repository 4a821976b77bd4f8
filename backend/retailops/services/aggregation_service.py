# Overview: Read-only aggregation of coupons and returns for operator queues.

"""
Aggregation Views

Pure grouping functions plus thin loaders that feed them. Nothing here
writes. Rows whose relations could not be loaded (deleted product, missing
sale) are rendered with placeholder labels instead of failing the view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterable

from sqlalchemy.orm import joinedload

from ..extensions import db
from ..models import (
    Return,
    ReturnGroupStatus,
    ReturnStatus,
    Sale,
    SaleCoupon,
    SaleItem,
    SaleStatus,
)
from ..time_utils import start_of_day, to_utc_z
from . import coupon_service

UNKNOWN_ITEM = "Unknown item"
NO_VALUE = "—"

WAREHOUSE_QUEUES = (SaleStatus.PENDING, SaleStatus.PICKING, SaleStatus.COMPLETED)


@dataclass
class ReturnLine:
    name: str
    sku: str | None
    quantity: int

    def to_dict(self) -> dict:
        return {"name": self.name, "sku": self.sku, "quantity": self.quantity}


@dataclass
class ReturnGroup:
    sale_id: int
    receipt_number: str
    customer_name: str | None
    status: ReturnGroupStatus
    created_at: datetime | None
    approved_at: datetime | None
    initiated_by: int | None
    approved_by: int | None
    return_ids: list[int] = field(default_factory=list)
    items: list[ReturnLine] = field(default_factory=list)
    total_quantity: int = 0
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "receipt_number": self.receipt_number,
            "customer_name": self.customer_name,
            "status": self.status.value,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "initiated_by": self.initiated_by,
            "approved_by": self.approved_by,
            "return_ids": list(self.return_ids),
            "items": [line.to_dict() for line in self.items],
            "items_count": len(self.return_ids),
            "total_quantity": self.total_quantity,
            "reasons": list(self.reasons),
        }


# =============================================================================
# PURE GROUPING
# =============================================================================

def group_status(statuses: Iterable[str]) -> ReturnGroupStatus:
    """
    Aggregate status of a receipt's return rows.

    pending if any row is pending, approved/rejected when every row agrees,
    mixed otherwise.
    """
    seen = {ReturnStatus(s) for s in statuses}
    if ReturnStatus.PENDING in seen:
        return ReturnGroupStatus.PENDING
    if seen == {ReturnStatus.APPROVED}:
        return ReturnGroupStatus.APPROVED
    if seen == {ReturnStatus.REJECTED}:
        return ReturnGroupStatus.REJECTED
    return ReturnGroupStatus.MIXED


def _product_label(ret: Return) -> tuple[str, str | None]:
    item = ret.sale_item
    product = item.product if item is not None else None
    if product is None:
        return UNKNOWN_ITEM, None
    return product.name or UNKNOWN_ITEM, product.sku


def summarize_items(rows: Iterable[Return]) -> list[ReturnLine]:
    """Item lines (name, SKU, quantity) summed per product label."""
    lines: dict[tuple[str, str | None], ReturnLine] = {}
    for ret in rows:
        name, sku = _product_label(ret)
        line = lines.setdefault((name, sku), ReturnLine(name=name, sku=sku, quantity=0))
        line.quantity += ret.quantity or 0
    return list(lines.values())


def _first(values: Iterable):
    return next((v for v in values if v is not None), None)


def group_returns(rows: Iterable[Return]) -> list[ReturnGroup]:
    """
    Group return rows by sale, newest receipt first.

    created_at is the earliest row of the group; approved_at the latest.
    """
    by_sale: dict[int, list[Return]] = {}
    for ret in rows:
        by_sale.setdefault(ret.sale_id, []).append(ret)

    groups = []
    for sale_id, members in by_sale.items():
        newest_first = sorted(members, key=lambda r: (r.created_at or datetime.min, r.id), reverse=True)
        sale = newest_first[0].sale
        created = [r.created_at for r in members if r.created_at is not None]
        approved = [r.approved_at for r in members if r.approved_at is not None]
        groups.append(ReturnGroup(
            sale_id=sale_id,
            receipt_number=sale.receipt_number if sale is not None else f"#{sale_id}",
            customer_name=(sale.customer_name if sale is not None else None) or NO_VALUE,
            status=group_status(r.status for r in members),
            created_at=min(created) if created else None,
            approved_at=max(approved) if approved else None,
            initiated_by=_first(r.initiated_by for r in newest_first),
            approved_by=_first(r.approved_by for r in newest_first),
            return_ids=sorted(r.id for r in members),
            items=summarize_items(newest_first),
            total_quantity=sum(r.quantity or 0 for r in members),
            reasons=list(dict.fromkeys(r.reason for r in newest_first if r.reason)),
        ))

    groups.sort(key=lambda g: (g.created_at or datetime.min, g.sale_id), reverse=True)
    return groups


def group_coupon_queues(coupons: Iterable[SaleCoupon]) -> dict[SaleStatus, list[SaleCoupon]]:
    """
    Warehouse queues keyed by the owning sale's status.

    Only active coupons the warehouse has received are queued; returned
    sales and sales that could not be loaded are left out. Most recently
    received first.
    """
    queues: dict[SaleStatus, list[SaleCoupon]] = {status: [] for status in WAREHOUSE_QUEUES}
    for coupon in coupons:
        if coupon.revoked_at is not None or coupon.received_at is None or coupon.sale is None:
            continue
        status = SaleStatus(coupon.sale.status)
        if status in queues:
            queues[status].append(coupon)
    for entries in queues.values():
        entries.sort(key=lambda c: (c.received_at, c.id), reverse=True)
    return queues


def split_print_board(coupons: Iterable[SaleCoupon]) -> dict[str, list[SaleCoupon]]:
    """Active coupons split into unprinted and printed, newest issue first."""
    board: dict[str, list[SaleCoupon]] = {"unprinted": [], "printed": []}
    for coupon in sorted(coupons, key=lambda c: (c.issued_at, c.id), reverse=True):
        if coupon.revoked_at is not None:
            continue
        board["printed" if coupon.printed_at else "unprinted"].append(coupon)
    return board


def queue_entry(coupon: SaleCoupon) -> dict:
    sale = coupon.sale
    reason = coupon_service.picking_block_reason(sale, coupon)
    return {
        "coupon_id": coupon.id,
        "sale_id": coupon.sale_id,
        "receipt_number": sale.receipt_number,
        "customer_name": sale.customer_name,
        "customer_phone": sale.customer_phone,
        "status": sale.status,
        "printed": coupon.printed_at is not None,
        "printed_at": to_utc_z(coupon.printed_at),
        "received_at": to_utc_z(coupon.received_at),
        "can_start_picking": reason is None,
        "block_reason": reason,
        "items": [item.to_dict() for item in sale.items],
    }


# =============================================================================
# LOADERS
# =============================================================================

def _coupon_query(branch_id: int | None):
    query = (
        db.session.query(SaleCoupon)
        .options(
            joinedload(SaleCoupon.sale)
            .joinedload(Sale.items)
            .joinedload(SaleItem.product)
        )
        .filter(SaleCoupon.revoked_at.is_(None))
    )
    if branch_id is not None:
        query = query.filter(SaleCoupon.branch_id == branch_id)
    return query


def _return_query(branch_id: int | None):
    query = db.session.query(Return).options(
        joinedload(Return.sale),
        joinedload(Return.sale_item).joinedload(SaleItem.product),
    )
    if branch_id is not None:
        query = query.filter(Return.branch_id == branch_id)
    return query


def load_warehouse_queues(branch_id: int | None = None) -> dict[str, list[dict]]:
    coupons = _coupon_query(branch_id).filter(SaleCoupon.received_at.is_not(None)).all()
    queues = group_coupon_queues(coupons)
    return {status.value: [queue_entry(c) for c in entries] for status, entries in queues.items()}


def load_print_board(branch_id: int | None = None, day: date | None = None) -> dict[str, list[dict]]:
    start = start_of_day(day)
    coupons = (
        _coupon_query(branch_id)
        .filter(SaleCoupon.issued_at >= start, SaleCoupon.issued_at < start + timedelta(days=1))
        .all()
    )
    board = split_print_board(coupons)
    return {
        tab: [
            {
                **coupon.to_dict(),
                "receipt_number": coupon.sale.receipt_number,
                "customer_name": coupon.sale.customer_name,
                "status": coupon.sale.status,
            }
            for coupon in entries
        ]
        for tab, entries in board.items()
    }


def load_pending_return_groups(branch_id: int | None = None) -> list[ReturnGroup]:
    rows = _return_query(branch_id).filter(Return.status == ReturnStatus.PENDING.value).all()
    return group_returns(rows)


def load_approved_today(branch_id: int | None = None, day: date | None = None) -> list[ReturnGroup]:
    start = start_of_day(day)
    rows = (
        _return_query(branch_id)
        .filter(
            Return.status == ReturnStatus.APPROVED.value,
            Return.approved_at >= start,
            Return.approved_at < start + timedelta(days=1),
        )
        .all()
    )
    groups = group_returns(rows)
    groups.sort(key=lambda g: (g.approved_at or datetime.min, g.sale_id), reverse=True)
    return groups


def load_returned_items(
    branch_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[ReturnGroup]:
    """Every return row created in [start, end], grouped per receipt."""
    query = _return_query(branch_id)
    if start is not None:
        query = query.filter(Return.created_at >= start_of_day(start))
    if end is not None:
        query = query.filter(Return.created_at < start_of_day(end) + timedelta(days=1))
    return group_returns(query.all())
