from __future__ import annotations

from enum import Enum

from ..extensions import db
from ..time_utils import to_utc_z


class ReturnStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReturnGroupStatus(str, Enum):
    """Aggregate status of every return row belonging to one receipt."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MIXED = "mixed"


# Statuses that block a further return on the same sale item
ACTIVE_RETURN_STATUSES = (ReturnStatus.PENDING.value, ReturnStatus.APPROVED.value)


class Return(db.Model):
    """
    One returned sale item.

    Rows are inserted in a batch (one per item) by a full-receipt return and
    decided in a batch by the approver. The partial unique index keeps at
    most one pending/approved row per sale item; rejected rows do not count.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index(
            "uq_returns_active_sale_item",
            "sale_item_id",
            unique=True,
            sqlite_where=db.text("status IN ('pending', 'approved')"),
            postgresql_where=db.text("status IN ('pending', 'approved')"),
        ),
        db.Index("ix_returns_status_approved", "status", "approved_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    initiated_by = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(16), nullable=False, default=ReturnStatus.PENDING.value, index=True)
    approved_by = db.Column(db.Integer, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    sale_item = db.relationship("SaleItem", backref=db.backref("returns", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "sale_item_id": self.sale_item_id,
            "branch_id": self.branch_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "initiated_by": self.initiated_by,
            "status": self.status,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "created_at": to_utc_z(self.created_at),
        }
