# Overview: Append-only purchase order trail.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import PurchaseHistory


class HistoryAction:
    CREATED = "Created"
    ITEMS_ADDED = "ItemsAdded"
    ITEM_REMOVED = "ItemRemoved"
    QUANTITIES_ACCEPTED = "QuantitiesAccepted"
    QUANTITIES_REGISTERED = "QuantitiesRegistered"
    FINANCE_VERIFIED = "FinanceVerified"
    FINAL_APPROVED = "FinalApproved"
    ITEMS_REJECTED = "ItemsRejected"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"
    REQUESTED_QUANTITIES_EDITED = "RequestedQuantitiesEdited"
    ACCEPTED_QUANTITIES_EDITED = "AcceptedQuantitiesEdited"
    REGISTERED_QUANTITIES_EDITED = "RegisteredQuantitiesEdited"
    PRICES_EDITED = "PricesEdited"


def record_history(
    *,
    purchase_order_id: int,
    action: str,
    actor_id: int,
    details: str | None = None,
    item_id: int | None = None,
) -> PurchaseHistory | None:
    """
    Append a trail entry inside a savepoint.

    The trail is a side write: if it fails, the failure is logged and the
    savepoint is rolled back without touching the surrounding unit of work.
    Returns None in that case.

    Pending workflow changes are flushed before the savepoint opens, so a
    stale or conflicting primary write reaches the caller's retry loop.
    """
    db.session.flush()
    try:
        with db.session.begin_nested():
            entry = PurchaseHistory(
                purchase_order_id=purchase_order_id,
                purchase_order_item_id=item_id,
                action=action,
                performed_by_user_id=actor_id,
                details=details,
            )
            db.session.add(entry)
        return entry
    except SQLAlchemyError:
        current_app.logger.exception(
            "Failed to write purchase history %s for order %s", action, purchase_order_id
        )
        return None


def list_history(purchase_order_id: int) -> list[PurchaseHistory]:
    return (
        db.session.query(PurchaseHistory)
        .filter(PurchaseHistory.purchase_order_id == purchase_order_id)
        .order_by(PurchaseHistory.created_at.asc(), PurchaseHistory.id.asc())
        .all()
    )


def delete_item_history(purchase_order_id: int, item_id: int) -> int:
    """Remove the trail rows of one line. Only used by the unreviewed-line delete path."""
    return (
        db.session.query(PurchaseHistory)
        .filter(
            PurchaseHistory.purchase_order_id == purchase_order_id,
            PurchaseHistory.purchase_order_item_id == item_id,
        )
        .delete(synchronize_session=False)
    )
