from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Branch(db.Model):
    """
    Physical branch of the company.

    Sales, coupons and returns are branch-scoped. Provisioning of branches is
    handled elsewhere; this table only carries what fulfillment needs.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_branches_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    code = db.Column(db.String(32), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data as seen by the till and the warehouse.

    quantity_in_stock is decremented at checkout and restored when a return
    row is approved.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "sku", name="uq_products_branch_sku"),
        db.Index("ix_products_branch_name", "branch_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    unit = db.Column(db.String(32), nullable=False, default="piece")
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    quantity_in_stock = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "name": self.name,
            "sku": self.sku,
            "unit": self.unit,
            "unit_price_cents": self.unit_price_cents,
            "quantity_in_stock": self.quantity_in_stock,
        }
