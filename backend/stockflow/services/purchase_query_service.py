# Overview: Read-only purchase order queries (lookup, listing, statistics).

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus
from ..errors import NotFoundError, ValidationError
from . import history_service


MAX_PAGE_SIZE = 500


def get_order(order_id: int) -> PurchaseOrder:
    """
    Fetch one order with its items.

    Cancelled (inactive) orders are still returned so their trail can be
    audited; only mutations refuse them.
    """
    order = db.session.get(PurchaseOrder, order_id)
    if order is None:
        raise NotFoundError(f"Purchase order {order_id} not found")
    return order


def get_history(order_id: int):
    get_order(order_id)
    return history_service.list_history(order_id)


def list_orders(
    *,
    status: str | None = None,
    branch_id: int | None = None,
    created_by: int | None = None,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[PurchaseOrder], int]:
    """Newest first. Returns (page, total matching)."""
    if status is not None and status not in PurchaseOrderStatus.ALL:
        raise ValidationError(f"Invalid status. Must be one of: {', '.join(PurchaseOrderStatus.ALL)}")

    limit = max(1, min(limit, MAX_PAGE_SIZE))
    offset = max(0, offset)

    q = db.session.query(PurchaseOrder)
    if status is not None:
        q = q.filter(PurchaseOrder.status == status)
    if branch_id is not None:
        q = q.filter(PurchaseOrder.branch_id == branch_id)
    if created_by is not None:
        q = q.filter(PurchaseOrder.created_by_user_id == created_by)
    if not include_inactive and status != PurchaseOrderStatus.CANCELLED:
        q = q.filter(PurchaseOrder.is_active.is_(True))

    total = q.count()
    orders = q.order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc()).offset(offset).limit(limit).all()
    return orders, total


def order_stats(*, branch_id: int | None = None) -> dict:
    """
    Order counts per status and the total purchase value.

    Purchase value is selling_price x registered quantity over priced lines.
    """
    counts_q = db.session.query(PurchaseOrder.status, func.count(PurchaseOrder.id))
    if branch_id is not None:
        counts_q = counts_q.filter(PurchaseOrder.branch_id == branch_id)
    counts = dict(counts_q.group_by(PurchaseOrder.status).all())

    lines_q = (
        db.session.query(PurchaseOrderItem.selling_price, PurchaseOrderItem.quantity_registered)
        .join(PurchaseOrder, PurchaseOrder.id == PurchaseOrderItem.purchase_order_id)
        .filter(
            PurchaseOrderItem.is_active.is_(True),
            PurchaseOrderItem.selling_price.isnot(None),
            PurchaseOrderItem.quantity_registered.isnot(None),
        )
    )
    if branch_id is not None:
        lines_q = lines_q.filter(PurchaseOrder.branch_id == branch_id)

    total_value = Decimal("0.00")
    for selling_price, registered in lines_q.all():
        total_value += Decimal(selling_price) * registered

    by_status = {status: counts.get(status, 0) for status in PurchaseOrderStatus.ALL}
    return {
        "branch_id": branch_id,
        "total_orders": sum(by_status.values()),
        "by_status": by_status,
        "total_purchase_value": str(total_value.quantize(Decimal("0.01"))),
    }
