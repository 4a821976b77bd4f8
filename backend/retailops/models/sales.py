from __future__ import annotations

from enum import Enum

from ..extensions import db
from ..time_utils import to_utc_z


class SaleStatus(str, Enum):
    """Warehouse-facing lifecycle of a sale."""
    PENDING = "pending"
    PICKING = "picking"
    COMPLETED = "completed"
    RETURNED = "returned"


class Sale(db.Model):
    """
    One checkout transaction.

    Created at the till in status pending. Status only moves along
    pending -> picking -> completed, or into returned from any of those.
    Rows are never deleted.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_sales_receipt_number"),
        # Composite index for branch-scoped queues by status and date
        db.Index("ix_sales_branch_status_created", "branch_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Human-readable receipt number (e.g., "RCP-20260104-0001")
    receipt_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=SaleStatus.PENDING.value, index=True)

    cashier_id = db.Column(db.Integer, nullable=False, index=True)
    customer_name = db.Column(db.String(200), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    branch = db.relationship("Branch", backref=db.backref("sales", lazy=True))

    @property
    def sale_status(self) -> SaleStatus:
        return SaleStatus(self.status)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "receipt_number": self.receipt_number,
            "status": self.status,
            "cashier_id": self.cashier_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "total_cents": self.total_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class SaleItem(db.Model):
    """
    Line item on a sale, picked individually by the warehouse.

    picked, picked_by and picked_at move together; the check constraint keeps
    a half-attributed pick out of the table.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint(
            "(picked AND picked_by IS NOT NULL AND picked_at IS NOT NULL)"
            " OR (NOT picked AND picked_by IS NULL AND picked_at IS NULL)",
            name="ck_sale_items_pick_attribution",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    # Nullable so a product removed from the catalog does not orphan history
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="SET NULL"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    picked = db.Column(db.Boolean, nullable=False, default=False)
    picked_by = db.Column(db.Integer, nullable=True)
    picked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))
    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "sku": self.product.sku if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "picked": self.picked,
            "picked_by": self.picked_by,
            "picked_at": to_utc_z(self.picked_at),
        }


class SaleCoupon(db.Model):
    """
    Physical pickup voucher for a sale.

    A coupon is active while revoked_at is NULL; the partial unique index
    allows only one active coupon per sale. received_at is written once.
    """
    __tablename__ = "sale_coupons"
    __table_args__ = (
        db.Index(
            "uq_sale_coupons_active_sale",
            "sale_id",
            unique=True,
            sqlite_where=db.text("revoked_at IS NULL"),
            postgresql_where=db.text("revoked_at IS NULL"),
        ),
        db.Index("ix_sale_coupons_branch_issued", "branch_id", "issued_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)

    issued_at = db.Column(db.DateTime(timezone=True), nullable=False)
    issued_by = db.Column(db.Integer, nullable=True)

    printed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    printed_by = db.Column(db.Integer, nullable=True)
    print_count = db.Column(db.Integer, nullable=False, default=0)

    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_by = db.Column(db.Integer, nullable=True)

    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_by = db.Column(db.Integer, nullable=True)
    revoke_reason = db.Column(db.String(255), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("coupons", lazy=True, order_by="SaleCoupon.id"))

    @property
    def is_active(self) -> bool:
        return self.revoked_at is None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "branch_id": self.branch_id,
            "issued_at": to_utc_z(self.issued_at),
            "issued_by": self.issued_by,
            "printed_at": to_utc_z(self.printed_at),
            "printed_by": self.printed_by,
            "print_count": self.print_count,
            "received_at": to_utc_z(self.received_at),
            "received_by": self.received_by,
            "revoked_at": to_utc_z(self.revoked_at),
            "revoked_by": self.revoked_by,
            "revoke_reason": self.revoke_reason,
        }


class ReceiptSequence(db.Model):
    """
    Atomic per-day receipt number sequence.

    Prevents two tills from handing out the same receipt number.
    """
    __tablename__ = "receipt_sequences"
    __table_args__ = (
        db.UniqueConstraint("business_date", name="uq_receipt_sequences_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_date = db.Column(db.Date, nullable=False)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
