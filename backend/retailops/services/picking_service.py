# Overview: Picking tracker; per-item pick state driving automatic sale completion.

from __future__ import annotations

from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy import exists

from ..extensions import db
from ..models import Sale, SaleItem, SaleStatus
from ..time_utils import utcnow
from . import entity_store, lifecycle_service
from .concurrency import run_with_retry
from .errors import GuardError, NotFoundError, StoreUnavailableError
from .lifecycle_service import TransitionResult


@dataclass
class PickResult:
    item: SaleItem
    all_picked: bool
    sale_status: SaleStatus
    completion: TransitionResult | None = None
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "item": self.item.to_dict(),
            "all_picked": self.all_picked,
            "sale_status": self.sale_status.value,
            "completion": self.completion.to_dict() if self.completion else None,
            "warnings": list(self.warnings),
        }


def _sale_in_picking():
    return exists().where(Sale.id == SaleItem.sale_id, Sale.status == SaleStatus.PICKING.value)


def _count_unpicked(sale_id: int) -> tuple[int, int]:
    """(total items, unpicked items) read from the store, never from a cache."""
    query = db.session.query(SaleItem).filter(SaleItem.sale_id == sale_id)
    total = query.count()
    unpicked = query.filter(SaleItem.picked.is_(False)).count()
    return total, unpicked


def set_picked(sale_item_id: int, picked: bool, actor_id: int) -> PickResult:
    """
    Tick or untick one item and complete the sale when every item is picked.

    The pick write commits on its own. Completion is a second, conditional
    step; if it cannot be applied (e.g. the sale was returned meanwhile) the
    item stays picked and the failure is returned as a warning.

    Raises:
        NotFoundError: unknown item.
        GuardError: the sale is not in picking, on read or at write time.
    """
    picked = bool(picked)

    def _op() -> int:
        item = entity_store.fetch_fresh(SaleItem, sale_item_id)
        if item is None:
            raise NotFoundError(f"Sale item {sale_item_id} not found")
        sale = entity_store.fetch_fresh(Sale, item.sale_id)
        if sale.status != SaleStatus.PICKING.value:
            raise GuardError(
                f"Cannot pick items: order {sale.receipt_number} is {sale.status}",
                details={"sale_id": sale.id, "status": sale.status},
            )

        values = {
            "picked": picked,
            "picked_by": actor_id if picked else None,
            "picked_at": utcnow() if picked else None,
        }
        rows = entity_store.update_where(
            SaleItem, sale_item_id, values, extra_criteria=[_sale_in_picking()]
        )
        if not rows:
            db.session.rollback()
            current = entity_store.fetch_fresh(Sale, sale.id)
            current_app.logger.info(
                "Pick on sale %s refused; sale moved to %s", current.id, current.status
            )
            raise GuardError(
                f"Cannot pick items: order {current.receipt_number} is {current.status}",
                details={"sale_id": current.id, "status": current.status},
            )
        db.session.commit()
        return sale.id

    sale_id = run_with_retry(_op)

    # Re-evaluate from post-write state so two near-simultaneous ticks on the
    # last two items cannot both see "one left".
    total, unpicked = _count_unpicked(sale_id)
    all_picked = total > 0 and unpicked == 0

    completion = None
    warnings: list[str] = []
    if all_picked:
        try:
            completion = lifecycle_service.complete_sale(sale_id)
        except StoreUnavailableError as e:
            warnings.append(f"Items picked, but failed to mark order completed: {e}")
        else:
            if not completion.ok:
                warnings.append(
                    f"Items picked, but failed to mark order completed: {completion.message}"
                )
        for warning in warnings:
            current_app.logger.warning("Sale %s: %s", sale_id, warning)

    item = entity_store.fetch_fresh(SaleItem, sale_item_id)
    sale = entity_store.fetch_fresh(Sale, sale_id)
    return PickResult(
        item=item,
        all_picked=all_picked,
        sale_status=sale.sale_status,
        completion=completion,
        warnings=warnings,
    )
