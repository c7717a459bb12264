from __future__ import annotations

from ..extensions import db
from stockflow.time_utils import to_utc_z


class MovementKind:
    """Stock movement kinds. Stored as plain strings."""
    PURCHASE = "Purchase"
    SALE = "Sale"
    RETURN = "Return"
    ADJUSTMENT = "Adjustment"
    DAMAGE = "Damage"
    TRANSFER = "Transfer"

    ALL = (PURCHASE, SALE, RETURN, ADJUSTMENT, DAMAGE, TRANSFER)

    # Kinds whose magnitude is always positive; the kind decides the sign
    INBOUND = (PURCHASE, RETURN)
    OUTBOUND = (SALE, DAMAGE)

    # Kinds whose magnitude carries its own sign
    SIGNED = (ADJUSTMENT, TRANSFER)


class Stock(db.Model):
    """
    Current quantity of one product at one branch.

    This is a cache over stock_movements. The only writer is
    stock_ledger_service.append_movement, which updates it in the same
    transaction that appends the movement.
    """
    __tablename__ = "stock"
    __table_args__ = (
        db.UniqueConstraint("product_id", "branch_id", name="uq_stock_product_branch"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product")
    branch = db.relationship("Branch")

    __mapper_args__ = {"version_id_col": version_id}


class StockMovement(db.Model):
    """
    Append-only inventory movement.

    For a fixed (product, branch) ordered by (movement_date, id):
      new_quantity[i] = previous_quantity[i] + effect(kind, quantity)
      previous_quantity[i] = new_quantity[i - 1]

    A movement references at most one source document (a sale or a purchase
    order). Rows are never updated or deleted.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_pair_date", "product_id", "branch_id", "movement_date", "id"),
        db.CheckConstraint(
            "NOT (sale_id IS NOT NULL AND purchase_order_id IS NOT NULL)",
            name="ck_stock_movements_single_source",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    # Source document (mutually exclusive)
    sale_id = db.Column(db.String(64), nullable=True, index=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=True, index=True)

    kind = db.Column(db.String(16), nullable=False, index=True)

    # Magnitude; signed only for Adjustment and Transfer
    quantity = db.Column(db.Integer, nullable=False)

    previous_quantity = db.Column(db.Integer, nullable=False)
    new_quantity = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)

    movement_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "sale_id": self.sale_id,
            "purchase_order_id": self.purchase_order_id,
            "kind": self.kind,
            "quantity": self.quantity,
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "reason": self.reason,
            "movement_date": to_utc_z(self.movement_date),
            "created_by_user_id": self.created_by_user_id,
            "is_active": self.is_active,
        }
