from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from stockflow.time_utils import to_utc_z


class PurchaseOrderStatus:
    """Order header statuses. Stored as plain strings."""
    PENDING_ADMIN_ACCEPTANCE = "PendingAdminAcceptance"
    ACCEPTED_BY_ADMIN = "AcceptedByAdmin"
    PARTIALLY_REGISTERED = "PartiallyRegistered"
    COMPLETELY_REGISTERED = "CompletelyRegistered"
    PARTIALLY_FINANCE_PROCESSED = "PartiallyFinanceProcessed"
    FULLY_FINANCE_PROCESSED = "FullyFinanceProcessed"
    PARTIALLY_APPROVED = "PartiallyApproved"
    FULLY_APPROVED = "FullyApproved"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"

    ALL = (
        PENDING_ADMIN_ACCEPTANCE,
        ACCEPTED_BY_ADMIN,
        PARTIALLY_REGISTERED,
        COMPLETELY_REGISTERED,
        PARTIALLY_FINANCE_PROCESSED,
        FULLY_FINANCE_PROCESSED,
        PARTIALLY_APPROVED,
        FULLY_APPROVED,
        REJECTED,
        CANCELLED,
    )

    TERMINAL = (FULLY_APPROVED, REJECTED, CANCELLED)


class ItemStage:
    """Effective stage of a single line, in forward order."""
    REQUESTED = "Requested"
    ACCEPTED = "Accepted"
    REGISTERED = "Registered"
    VERIFIED = "Verified"
    APPROVED = "Approved"

    ORDER = (REQUESTED, ACCEPTED, REGISTERED, VERIFIED, APPROVED)

    @classmethod
    def rank(cls, stage: str) -> int:
        return cls.ORDER.index(stage)


class PurchaseOrder(db.Model):
    """
    Purchase order header.

    LIFECYCLE: see stockflow.services.purchase_status for how the status is
    derived from the items. The status column is a stored copy of that
    derivation, except for the explicit Rejected/Cancelled transitions.

    Soft delete: cancelling clears is_active on the order and every item.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_purchase_orders_branch_status", "branch_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(
        db.String(32),
        nullable=False,
        default=PurchaseOrderStatus.PENDING_ADMIN_ACCEPTANCE,
        index=True,
    )

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Reason recorded by an explicit reject/cancel
    closing_reason = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("purchase_orders", lazy=True))
    created_by = db.relationship("User", foreign_keys=[created_by_user_id])
    items = db.relationship(
        "PurchaseOrderItem",
        back_populates="purchase_order",
        order_by="PurchaseOrderItem.id",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PurchaseOrder id={self.id} branch_id={self.branch_id} status={self.status}>"

    @property
    def active_items(self) -> list["PurchaseOrderItem"]:
        return [item for item in self.items if item.is_active]

    def find_item(self, item_id: int) -> "PurchaseOrderItem | None":
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "created_by_user_id": self.created_by_user_id,
            "status": self.status,
            "is_active": self.is_active,
            "closing_reason": self.closing_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    """
    One product line on a purchase order.

    Fields only move forward:
      requested -> accepted -> registered (accumulated) -> finance verified -> approved

    finance_verified is tri-state:
      None  = finance has not looked at the line
      False = finance reviewed it and did not verify
      True  = verified, prices set

    approved_at is set once and never cleared.
    """
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        db.UniqueConstraint("purchase_order_id", "product_id", name="uq_po_items_order_product"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Step 1: request
    quantity_requested = db.Column(db.Integer, nullable=False)

    # Step 2: admin acceptance
    quantity_accepted = db.Column(db.Integer, nullable=True)
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    accepted_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Step 3: registration of delivered quantities (accumulates across deliveries)
    quantity_registered = db.Column(db.Integer, nullable=True)
    registered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    registered_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    registration_edit_count = db.Column(db.Integer, nullable=False, default=0)
    last_registration_edit_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Step 4: finance verification and pricing
    finance_verified = db.Column(db.Boolean, nullable=True)
    finance_verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finance_verified_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    buying_price = db.Column(db.Numeric(12, 2), nullable=True)
    selling_price = db.Column(db.Numeric(12, 2), nullable=True)
    price_set_at = db.Column(db.DateTime(timezone=True), nullable=True)
    price_set_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    price_edit_count = db.Column(db.Integer, nullable=False, default=0)

    # Step 5: final approval
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    purchase_order = db.relationship("PurchaseOrder", back_populates="items")
    product = db.relationship("Product")

    def __repr__(self) -> str:
        return f"<PurchaseOrderItem id={self.id} product_id={self.product_id} stage={self.effective_stage}>"

    @property
    def is_accepted(self) -> bool:
        return self.quantity_accepted is not None

    @property
    def is_dropped(self) -> bool:
        """Accepted at zero: the line takes no further part in the order."""
        return self.quantity_accepted == 0

    @property
    def registered_quantity(self) -> int:
        return self.quantity_registered or 0

    @property
    def is_registered(self) -> bool:
        return self.registered_quantity > 0

    @property
    def is_fully_registered(self) -> bool:
        return (
            self.quantity_accepted is not None
            and self.quantity_accepted > 0
            and self.registered_quantity == self.quantity_accepted
        )

    @property
    def is_finance_verified(self) -> bool:
        return self.finance_verified is True

    @property
    def is_approved(self) -> bool:
        return self.approved_at is not None

    @property
    def effective_stage(self) -> str:
        if self.is_approved:
            return ItemStage.APPROVED
        if self.is_finance_verified:
            return ItemStage.VERIFIED
        if self.is_registered:
            return ItemStage.REGISTERED
        if self.is_accepted:
            return ItemStage.ACCEPTED
        return ItemStage.REQUESTED

    def has_reached(self, stage: str) -> bool:
        return ItemStage.rank(self.effective_stage) >= ItemStage.rank(stage)

    @property
    def profit_margin(self) -> Decimal | None:
        if self.buying_price is None or self.selling_price is None or self.buying_price <= 0:
            return None
        margin = (Decimal(self.selling_price) - Decimal(self.buying_price)) / Decimal(self.buying_price) * 100
        return margin.quantize(Decimal("0.01"))

    def to_dict(self) -> dict:
        margin = self.profit_margin
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "quantity_requested": self.quantity_requested,
            "quantity_accepted": self.quantity_accepted,
            "accepted_at": to_utc_z(self.accepted_at),
            "accepted_by_user_id": self.accepted_by_user_id,
            "quantity_registered": self.quantity_registered,
            "registered_at": to_utc_z(self.registered_at),
            "registered_by_user_id": self.registered_by_user_id,
            "registration_edit_count": self.registration_edit_count,
            "last_registration_edit_at": to_utc_z(self.last_registration_edit_at),
            "finance_verified": self.finance_verified,
            "finance_verified_at": to_utc_z(self.finance_verified_at),
            "finance_verified_by_user_id": self.finance_verified_by_user_id,
            "buying_price": str(self.buying_price) if self.buying_price is not None else None,
            "selling_price": str(self.selling_price) if self.selling_price is not None else None,
            "profit_margin": str(margin) if margin is not None else None,
            "price_set_at": to_utc_z(self.price_set_at),
            "price_set_by_user_id": self.price_set_by_user_id,
            "price_edit_count": self.price_edit_count,
            "approved_at": to_utc_z(self.approved_at),
            "approved_by_user_id": self.approved_by_user_id,
            "effective_stage": self.effective_stage,
            "is_active": self.is_active,
        }


class PurchaseHistory(db.Model):
    """
    Append-only trail of workflow actions.

    Rows are never updated. The only delete path is removing an unreviewed
    line, which takes that line's own rows with it.
    """
    __tablename__ = "purchase_history"
    __table_args__ = (
        db.Index("ix_purchase_history_order_created", "purchase_order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    purchase_order_item_id = db.Column(db.Integer, nullable=True, index=True)

    action = db.Column(db.String(64), nullable=False, index=True)
    performed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    details = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "purchase_order_item_id": self.purchase_order_item_id,
            "action": self.action,
            "performed_by_user_id": self.performed_by_user_id,
            "details": self.details,
            "created_at": to_utc_z(self.created_at),
        }
