# Overview: Sale lifecycle controller; guarded, conditional status transitions.

"""
Sale Lifecycle Controller

================================================================================
STATE MACHINE
================================================================================

    pending  --(start picking: coupon eligible)--> picking
    picking  --(all items picked)----------------> completed
    pending | picking | completed --(return approved)--> returned

    returned is final. A rejected return never moves the sale.

RULES:
1. Every write is "UPDATE sales SET status=<target> WHERE id=? AND status IN
   (<allowed priors>)". There is no lock and no read-modify-write.
2. Zero rows affected is a LOST RACE, not an error. The controller re-reads
   the sale and reports either ALREADY_APPLIED (someone else made the same
   move) or LOST_RACE (the sale moved elsewhere and the transition can no
   longer happen).
3. Guard failures detected before the write (coupon not received, sale not
   pending) raise GuardError.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from flask import current_app
from sqlalchemy import exists

from ..extensions import db
from ..models import Sale, SaleCoupon, SaleStatus
from ..time_utils import utcnow
from . import coupon_service, entity_store
from .concurrency import run_with_retry
from .errors import GuardError, NotFoundError


ALLOWED_TRANSITIONS: dict[SaleStatus, frozenset[SaleStatus]] = {
    SaleStatus.PENDING: frozenset({SaleStatus.PICKING, SaleStatus.RETURNED}),
    SaleStatus.PICKING: frozenset({SaleStatus.COMPLETED, SaleStatus.RETURNED}),
    SaleStatus.COMPLETED: frozenset({SaleStatus.RETURNED}),
    SaleStatus.RETURNED: frozenset(),
}


class LifecycleError(ValueError):
    """
    Raised when code asks for a transition the state machine does not have.

    This is a programming error, unlike GuardError which reflects the
    current state of a sale.
    """
    pass


class TransitionOutcome(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    LOST_RACE = "lost_race"


@dataclass
class TransitionResult:
    sale_id: int
    target: SaleStatus
    outcome: TransitionOutcome
    status: SaleStatus
    message: str

    @property
    def ok(self) -> bool:
        """True when the sale is now in the target status."""
        return self.outcome in (TransitionOutcome.APPLIED, TransitionOutcome.ALREADY_APPLIED)

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale_id,
            "target": self.target.value,
            "outcome": self.outcome.value,
            "status": self.status.value,
            "message": self.message,
        }


def can_transition(from_status: SaleStatus, to_status: SaleStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS[SaleStatus(from_status)]


def priors_of(target: SaleStatus) -> tuple[SaleStatus, ...]:
    """Every status the state machine allows to move into ``target``."""
    return tuple(s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets)


def get_sale(sale_id: int) -> Sale:
    sale = entity_store.fetch_fresh(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def transition(sale_id: int, target: SaleStatus, extra_criteria=()) -> TransitionResult:
    """
    Apply ``target`` to a sale with a conditional write.

    Raises:
        NotFoundError: sale does not exist.
        StoreUnavailableError: the store could not be reached.
    """
    target = SaleStatus(target)
    priors = priors_of(target)
    if not priors:
        raise LifecycleError(f"No transition leads to {target.value}")

    def _op() -> TransitionResult:
        rows = entity_store.update_where(
            Sale,
            sale_id,
            {"status": target, "updated_at": utcnow()},
            expected={"status": priors},
            extra_criteria=extra_criteria,
        )
        if rows:
            db.session.commit()
            return TransitionResult(
                sale_id=sale_id,
                target=target,
                outcome=TransitionOutcome.APPLIED,
                status=target,
                message=f"Sale moved to {target.value}",
            )

        db.session.rollback()
        current = get_sale(sale_id).sale_status
        if current == target:
            return TransitionResult(
                sale_id=sale_id,
                target=target,
                outcome=TransitionOutcome.ALREADY_APPLIED,
                status=current,
                message=f"Sale is already {target.value}",
            )
        current_app.logger.info(
            "Lost race moving sale %s to %s; sale is %s", sale_id, target.value, current.value
        )
        return TransitionResult(
            sale_id=sale_id,
            target=target,
            outcome=TransitionOutcome.LOST_RACE,
            status=current,
            message=f"Cannot move sale from {current.value} to {target.value}",
        )

    return run_with_retry(_op)


def _eligible_coupon_exists():
    return exists().where(
        SaleCoupon.sale_id == Sale.id,
        SaleCoupon.revoked_at.is_(None),
        SaleCoupon.printed_at.is_not(None),
        SaleCoupon.received_at.is_not(None),
    )


def start_picking(sale_id: int, actor_id: int) -> TransitionResult:
    """
    Move a sale from pending to picking.

    The coupon guard is checked on read and again inside the conditional
    write, so a coupon revoked in between makes the write miss.

    Raises:
        GuardError: coupon not printed/received/active, or sale not pending.
        NotFoundError: sale does not exist.
    """
    sale = get_sale(sale_id)
    coupon = coupon_service.get_active_coupon(sale_id)
    reason = coupon_service.picking_block_reason(sale, coupon)
    if reason:
        raise GuardError(reason, details={"sale_id": sale_id, "status": sale.status})

    result = transition(sale_id, SaleStatus.PICKING, extra_criteria=[_eligible_coupon_exists()])
    current_app.logger.info(
        "Start picking sale %s by %s: %s", sale_id, actor_id, result.outcome.value
    )
    return result


def complete_sale(sale_id: int) -> TransitionResult:
    return transition(sale_id, SaleStatus.COMPLETED)


def mark_returned(sale_id: int) -> TransitionResult:
    return transition(sale_id, SaleStatus.RETURNED)
