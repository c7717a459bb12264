# Overview: Service-layer operations for the purchase order approval workflow.

"""
Purchase Order Workflow

WHY: Stock is replenished through a multi-actor approval chain. Sales staff
request quantities, the manager accepts them, receiving staff register what
actually arrived (possibly over several deliveries), finance verifies and
prices each line, and the manager gives final approval, which is the only
point where stock enters the ledger.

LIFECYCLE (per line, forward only):
1. REQUESTED: created with a positive requested quantity
2. ACCEPTED: manager sets 0 <= accepted <= requested (0 drops the line)
3. REGISTERED: deliveries accumulate, never above accepted
4. VERIFIED: finance sets buying/selling prices
5. APPROVED: prices pushed to the product, Purchase movement appended

The header status is re-derived from the lines after every mutation (see
purchase_status). Rejected and Cancelled are the only statuses set directly.

UNIT OF WORK: every public function below runs as one transaction through
run_in_transaction(): validate everything, then mutate, then re-derive,
then append the trail entry. Any raised error rolls back all of it.

LOCK ORDER: order row first, then stock rows (approve_final).
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from flask import current_app

from ..extensions import db
from ..models import PurchaseOrder, PurchaseOrderItem, PurchaseOrderStatus as S, MovementKind
from ..errors import NotFoundError, RangeError, StateError, ValidationError
from ..permissions import Capability
from .concurrency import lock_for_update, run_in_transaction
from .history_service import HistoryAction, record_history
from .purchase_status import derive_status
from . import catalog_service, history_service, permission_service, stock_ledger_service
from stockflow.time_utils import utcnow


CENT = Decimal("0.01")

# Statuses in which deliveries may still be registered
REGISTRABLE_STATUSES = {
    S.ACCEPTED_BY_ADMIN,
    S.PARTIALLY_REGISTERED,
    S.COMPLETELY_REGISTERED,
    S.PARTIALLY_FINANCE_PROCESSED,
    S.FULLY_FINANCE_PROCESSED,
    S.PARTIALLY_APPROVED,
}

REJECTABLE_STATUSES = {
    S.PENDING_ADMIN_ACCEPTANCE,
    S.ACCEPTED_BY_ADMIN,
    S.PARTIALLY_REGISTERED,
    S.COMPLETELY_REGISTERED,
    S.PARTIALLY_FINANCE_PROCESSED,
    S.FULLY_FINANCE_PROCESSED,
}

CANCELLABLE_STATUSES = {
    S.PENDING_ADMIN_ACCEPTANCE,
    S.ACCEPTED_BY_ADMIN,
    S.PARTIALLY_REGISTERED,
}

CLOSED_STATUSES = {S.REJECTED, S.CANCELLED}


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------

def _parse_quantity(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    return value


def _parse_money(value, field: str) -> Decimal:
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a decimal number")
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a decimal number")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _parse_item_id(entry) -> int:
    if not isinstance(entry, dict):
        raise ValidationError("Each item entry must be an object")
    item_id = entry.get("item_id")
    if isinstance(item_id, bool) or not isinstance(item_id, int):
        raise ValidationError("item_id must be an integer")
    return item_id


def _require_entries(entries) -> list:
    if not isinstance(entries, (list, tuple)) or not entries:
        raise ValidationError("At least one item entry is required")
    return list(entries)


def selling_price_for(buying_price: Decimal, selling_price=None) -> Decimal:
    """
    Validate a price pair, or derive the selling price from the markup.

    buying_price must be positive; an explicit selling_price must exceed it.
    """
    if buying_price <= 0:
        raise RangeError("buying_price must be greater than zero")
    if selling_price is not None:
        selling = _parse_money(selling_price, "selling_price")
        if selling <= buying_price:
            raise RangeError("selling_price must be greater than buying_price")
        return selling

    markup = catalog_service.get_default_markup_percent()
    selling = (buying_price * (1 + markup / Decimal(100))).quantize(CENT, rounding=ROUND_HALF_UP)
    if selling <= buying_price:
        raise RangeError("Configured markup does not produce a selling price above buying_price")
    return selling


# ---------------------------------------------------------------------------
# Aggregate helpers
# ---------------------------------------------------------------------------

def _load_order_for_update(order_id: int) -> PurchaseOrder:
    order = lock_for_update(db.session.query(PurchaseOrder).filter(PurchaseOrder.id == order_id)).first()
    if order is None or not order.is_active:
        raise NotFoundError(f"Purchase order {order_id} not found")
    return order


def _require_open(order: PurchaseOrder) -> None:
    if order.status in CLOSED_STATUSES:
        raise StateError(f"Purchase order {order.id} is {order.status}")


def _require_status(order: PurchaseOrder, allowed, action: str) -> None:
    _require_open(order)
    if order.status not in allowed:
        raise StateError(f"Cannot {action} a purchase order in status {order.status}")


def _resolve_items(order: PurchaseOrder, entries) -> list[tuple[PurchaseOrderItem, dict]]:
    """Map entries to active lines of this order. Unknown or repeated ids are refused."""
    resolved = []
    seen = set()
    for entry in _require_entries(entries):
        item_id = _parse_item_id(entry)
        if item_id in seen:
            raise ValidationError(f"Item {item_id} listed more than once")
        seen.add(item_id)
        item = order.find_item(item_id)
        if item is None or not item.is_active:
            raise NotFoundError(f"Item {item_id} not found on purchase order {order.id}")
        resolved.append((item, entry))
    return resolved


def _rederive(order: PurchaseOrder) -> str:
    previous = order.status
    order.status = derive_status(order.items)
    if order.status != previous:
        current_app.logger.info(
            "Purchase order %s status %s -> %s", order.id, previous, order.status
        )
    return order.status


def _validate_new_lines(entries, existing_product_ids=()) -> list[tuple[int, int]]:
    lines = []
    seen = set(existing_product_ids)
    for entry in _require_entries(entries):
        if not isinstance(entry, dict):
            raise ValidationError("Each item entry must be an object")
        product_id = entry.get("product_id")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise ValidationError("product_id must be an integer")
        quantity = _parse_quantity(entry.get("quantity"), "quantity")
        if quantity <= 0:
            raise RangeError(f"Requested quantity for product {product_id} must be positive")
        if not catalog_service.product_exists_and_active(product_id):
            raise ValidationError(f"Invalid or inactive product: {product_id}")
        if product_id in seen:
            raise ValidationError(f"Product {product_id} appears more than once on the order")
        seen.add(product_id)
        lines.append((product_id, quantity))
    return lines


def _describe(pairs) -> str:
    return ", ".join(f"item {item_id}: {value}" for item_id, value in pairs)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------

def create_order(*, branch_id: int, items, actor_id: int | None = None) -> PurchaseOrder:
    """
    Create a purchase order in PendingAdminAcceptance.

    Args:
        branch_id: Branch the stock is for
        items: [{"product_id": int, "quantity": int}, ...]

    Raises:
        ValidationError: inactive/missing branch or product, empty or duplicate lines
        RangeError: non-positive requested quantity
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.CREATE_PURCHASE_ORDER)
        if not catalog_service.branch_exists_and_active(branch_id):
            raise ValidationError(f"Invalid or inactive branch: {branch_id}")
        lines = _validate_new_lines(items)

        order = PurchaseOrder(
            branch_id=branch_id,
            created_by_user_id=actor.id,
            status=S.PENDING_ADMIN_ACCEPTANCE,
        )
        for product_id, quantity in lines:
            order.items.append(PurchaseOrderItem(product_id=product_id, quantity_requested=quantity))
        db.session.add(order)
        db.session.flush()

        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.CREATED,
            actor_id=actor.id,
            details=f"Created with {len(lines)} item(s)",
        )
        current_app.logger.info(
            "Purchase order %s created by user %s for branch %s", order.id, actor.id, branch_id
        )
        return order

    return run_in_transaction(_op)


def add_items(order_id: int, items, *, actor_id: int | None = None) -> PurchaseOrder:
    """Append new lines while the order still awaits acceptance."""
    def _op():
        permission_service.require_capability(actor_id, Capability.EDIT_REQUESTED_QUANTITIES)
        order = _load_order_for_update(order_id)
        actor = permission_service.require_order_capability(
            actor_id, Capability.EDIT_REQUESTED_QUANTITIES, order
        )
        _require_status(order, {S.PENDING_ADMIN_ACCEPTANCE}, "add items to")

        lines = _validate_new_lines(items, existing_product_ids=[i.product_id for i in order.items])
        for product_id, quantity in lines:
            order.items.append(PurchaseOrderItem(product_id=product_id, quantity_requested=quantity))
        db.session.flush()

        _rederive(order)
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.ITEMS_ADDED,
            actor_id=actor.id,
            details=", ".join(f"product {p} x {q}" for p, q in lines),
        )
        current_app.logger.info("Added %s item(s) to purchase order %s", len(lines), order.id)
        return order

    return run_in_transaction(_op)


def remove_item(order_id: int, item_id: int, *, actor_id: int | None = None) -> PurchaseOrder:
    """
    Hard-delete one unreviewed line, together with its own trail rows.

    Only while the order awaits acceptance and another active line remains.
    """
    def _op():
        permission_service.require_capability(actor_id, Capability.EDIT_REQUESTED_QUANTITIES)
        order = _load_order_for_update(order_id)
        actor = permission_service.require_order_capability(
            actor_id, Capability.EDIT_REQUESTED_QUANTITIES, order
        )
        _require_status(order, {S.PENDING_ADMIN_ACCEPTANCE}, "remove items from")

        item = order.find_item(item_id)
        if item is None or not item.is_active:
            raise NotFoundError(f"Item {item_id} not found on purchase order {order.id}")
        if item.is_accepted:
            raise StateError(f"Item {item_id} has already been reviewed")
        if len(order.active_items) < 2:
            raise StateError("Cannot remove the last item; cancel the order instead")

        product_id = item.product_id
        history_service.delete_item_history(order.id, item.id)
        order.items.remove(item)
        db.session.flush()

        _rederive(order)
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.ITEM_REMOVED,
            actor_id=actor.id,
            details=f"Removed item {item_id} (product {product_id})",
        )
        current_app.logger.info("Removed item %s from purchase order %s", item_id, order.id)
        return order

    return run_in_transaction(_op)


# ---------------------------------------------------------------------------
# Accept
# ---------------------------------------------------------------------------

def _apply_acceptance(order: PurchaseOrder, actor, accepted: list[tuple[PurchaseOrderItem, int]]) -> None:
    covered = {item.id for item, _ in accepted}
    missing = [i.id for i in order.active_items if i.id not in covered]
    if missing:
        raise ValidationError(f"Accepted quantity missing for item(s): {', '.join(map(str, missing))}")

    for item, quantity in accepted:
        if quantity < 0:
            raise RangeError(f"Accepted quantity for item {item.id} cannot be negative")
        if quantity > item.quantity_requested:
            raise RangeError(
                f"Accepted quantity {quantity} exceeds requested {item.quantity_requested} for item {item.id}"
            )

    now = utcnow()
    for item, quantity in accepted:
        item.quantity_accepted = quantity
        item.accepted_at = now
        item.accepted_by_user_id = actor.id

    if _rederive(order) == S.REJECTED:
        order.closing_reason = "All items accepted at zero"

    record_history(
        purchase_order_id=order.id,
        action=HistoryAction.QUANTITIES_ACCEPTED,
        actor_id=actor.id,
        details=_describe((item.id, quantity) for item, quantity in accepted),
    )
    current_app.logger.info("Purchase order %s accepted by user %s", order.id, actor.id)


def accept_quantities(order_id: int, items, *, actor_id: int | None = None) -> PurchaseOrder:
    """
    Set the accepted quantity of every active line.

    Args:
        items: [{"item_id": int, "quantity": int}, ...] covering every active line

    Raises:
        StateError: order is past PendingAdminAcceptance
        RangeError: negative or above requested
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.ACCEPT_PURCHASE_ORDER)
        order = _load_order_for_update(order_id)
        _require_status(order, {S.PENDING_ADMIN_ACCEPTANCE}, "accept")
        accepted = [
            (item, _parse_quantity(entry.get("quantity"), "quantity"))
            for item, entry in _resolve_items(order, items)
        ]
        _apply_acceptance(order, actor, accepted)
        return order

    return run_in_transaction(_op)


def accept_all(order_id: int, *, actor_id: int | None = None) -> PurchaseOrder:
    """Accept every active line at its requested quantity."""
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.ACCEPT_PURCHASE_ORDER)
        order = _load_order_for_update(order_id)
        _require_status(order, {S.PENDING_ADMIN_ACCEPTANCE}, "accept")
        _apply_acceptance(order, actor, [(i, i.quantity_requested) for i in order.active_items])
        return order

    return run_in_transaction(_op)


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------

def register_received(order_id: int, items, *, actor_id: int | None = None) -> PurchaseOrder:
    """
    Add delivered quantities to the lines' registered totals.

    Each call ADDS to what was registered before, so partial deliveries can be
    booked one at a time. The running total never exceeds the accepted quantity.

    Args:
        items: [{"item_id": int, "quantity": int}, ...] with positive increments

    Raises:
        StateError: order not in a registrable status, line not accepted, dropped or approved
        RangeError: non-positive increment or total above accepted
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.REGISTER_RECEIPT)
        order = _load_order_for_update(order_id)
        _require_status(order, REGISTRABLE_STATUSES, "register deliveries for")

        increments = []
        for item, entry in _resolve_items(order, items):
            quantity = _parse_quantity(entry.get("quantity"), "quantity")
            if item.is_approved:
                raise StateError(f"Item {item.id} is already approved")
            if not item.is_accepted:
                raise StateError(f"Item {item.id} has not been accepted")
            if item.is_dropped:
                raise StateError(f"Item {item.id} was accepted at zero")
            if quantity <= 0:
                raise RangeError(f"Registered quantity for item {item.id} must be positive")
            total = item.registered_quantity + quantity
            if total > item.quantity_accepted:
                raise RangeError(
                    f"Registering {quantity} for item {item.id} would exceed accepted "
                    f"{item.quantity_accepted} (already {item.registered_quantity})"
                )
            increments.append((item, quantity, total))

        now = utcnow()
        for item, _, total in increments:
            item.quantity_registered = total
            item.registered_at = now
            item.registered_by_user_id = actor.id

        _rederive(order)
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.QUANTITIES_REGISTERED,
            actor_id=actor.id,
            details=_describe((item.id, f"+{q} (total {t})") for item, q, t in increments),
            item_id=increments[0][0].id if len(increments) == 1 else None,
        )
        current_app.logger.info(
            "Registered deliveries on purchase order %s by user %s", order.id, actor.id
        )
        return order

    return run_in_transaction(_op)


# ---------------------------------------------------------------------------
# Finance
# ---------------------------------------------------------------------------

def verify_finance(order_id: int, items, *, actor_id: int | None = None) -> PurchaseOrder:
    """
    Record the finance review of registered lines.

    Args:
        items: [{"item_id": int, "verify": bool (default true),
                 "buying_price": decimal, "selling_price": decimal | None}, ...]

    A verified line gets its prices; without a selling_price the configured
    markup is applied to the buying price. verify=false records a
    reviewed-not-verified outcome and cannot undo an earlier verification.
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.VERIFY_FINANCE)
        order = _load_order_for_update(order_id)
        _require_open(order)
        if not any(i.is_registered and not i.is_approved for i in order.active_items):
            raise StateError("Nothing to verify: no registered, unapproved items")

        decisions = []
        for item, entry in _resolve_items(order, items):
            verify = entry.get("verify", True)
            if not isinstance(verify, bool):
                raise ValidationError("verify must be a boolean")
            if item.is_approved:
                raise StateError(f"Item {item.id} is already approved")
            if not item.is_registered:
                raise StateError(f"Item {item.id} has no registered quantity")
            if verify:
                buying = _parse_money(entry.get("buying_price"), "buying_price")
                selling = selling_price_for(buying, entry.get("selling_price"))
                decisions.append((item, True, buying, selling))
            else:
                if item.is_finance_verified:
                    raise StateError(f"Item {item.id} is already verified")
                decisions.append((item, False, None, None))

        now = utcnow()
        for item, verify, buying, selling in decisions:
            item.finance_verified = verify
            item.finance_verified_at = now
            item.finance_verified_by_user_id = actor.id
            if verify:
                item.buying_price = buying
                item.selling_price = selling
                item.price_set_at = now
                item.price_set_by_user_id = actor.id

        _rederive(order)
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.FINANCE_VERIFIED,
            actor_id=actor.id,
            details=_describe(
                (item.id, f"buy {b} sell {s}" if v else "not verified")
                for item, v, b, s in decisions
            ),
            item_id=decisions[0][0].id if len(decisions) == 1 else None,
        )
        current_app.logger.info("Finance review on purchase order %s by user %s", order.id, actor.id)
        return order

    return run_in_transaction(_op)


def edit_prices(order_id: int, items, *, actor_id: int | None = None) -> PurchaseOrder:
    """
    Correct the prices of verified, unapproved lines.

    Args:
        items: [{"item_id": int, "buying_price": decimal, "selling_price": decimal | None}, ...]
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.EDIT_PRICES)
        order = _load_order_for_update(order_id)
        _require_open(order)
        if order.status == S.FULLY_APPROVED:
            raise StateError("Prices cannot change on a fully approved order")

        changes = []
        for item, entry in _resolve_items(order, items):
            if item.is_approved:
                raise StateError(f"Item {item.id} is already approved")
            if not item.is_finance_verified:
                raise StateError(f"Item {item.id} has not been priced by finance")
            buying = _parse_money(entry.get("buying_price"), "buying_price")
            selling = selling_price_for(buying, entry.get("selling_price"))
            changes.append((item, buying, selling))

        now = utcnow()
        for item, buying, selling in changes:
            item.buying_price = buying
            item.selling_price = selling
            item.price_set_at = now
            item.price_set_by_user_id = actor.id
            item.price_edit_count = (item.price_edit_count or 0) + 1

        _rederive(order)
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.PRICES_EDITED,
            actor_id=actor.id,
            details=_describe((item.id, f"buy {b} sell {s}") for item, b, s in changes),
            item_id=changes[0][0].id if len(changes) == 1 else None,
        )
        current_app.logger.info("Prices edited on purchase order %s by user %s", order.id, actor.id)
        return order

    return run_in_transaction(_op)


# ---------------------------------------------------------------------------
# Final approval
# ---------------------------------------------------------------------------

def _purchase_reason(order: PurchaseOrder, item: PurchaseOrderItem) -> str:
    margin = item.profit_margin
    return (
        f"Purchase order #{order.id}: cost {item.buying_price}, "
        f"sell {item.selling_price}, margin {margin}%"
    )


def approve_final(order_id: int, item_ids=None, *, actor_id: int | None = None) -> PurchaseOrder:
    """
    Approve finance-verified lines and bring their stock into the ledger.

    item_ids narrows the approval to those lines; by default every verified,
    unapproved line is approved. Every selected line must be fully delivered,
    otherwise nothing is approved.

    For each approved line: prices are written to the product, one Purchase
    movement for the registered quantity is appended, and approved_at is set.
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.APPROVE_PURCHASE_ORDER)
        order = _load_order_for_update(order_id)
        _require_open(order)

        eligible = [
            i for i in order.active_items
            if not i.is_dropped and i.is_finance_verified and not i.is_approved
        ]
        if not eligible:
            raise StateError("Nothing to approve: no finance-verified, unapproved items")

        if item_ids is None:
            selected = eligible
        else:
            if not isinstance(item_ids, (list, tuple)) or not item_ids:
                raise ValidationError("item_ids must be a non-empty list")
            selected = []
            for item_id in dict.fromkeys(item_ids):
                item = order.find_item(item_id)
                if item is None or not item.is_active:
                    raise NotFoundError(f"Item {item_id} not found on purchase order {order.id}")
                if item not in eligible:
                    raise StateError(f"Item {item_id} is not finance-verified and unapproved")
                selected.append(item)

        for item in selected:
            if item.registered_quantity < item.quantity_accepted:
                raise StateError(
                    f"Item {item.id} is not fully delivered "
                    f"({item.registered_quantity} of {item.quantity_accepted})"
                )

        now = utcnow()
        # stock rows are locked in product order
        for item in sorted(selected, key=lambda i: i.product_id):
            catalog_service.set_prices(item.product_id, item.buying_price, item.selling_price)
            stock_ledger_service.append_movement(
                product_id=item.product_id,
                branch_id=order.branch_id,
                kind=MovementKind.PURCHASE,
                quantity=item.registered_quantity,
                purchase_order_id=order.id,
                reason=_purchase_reason(order, item),
                actor_id=actor.id,
            )
            item.approved_at = now
            item.approved_by_user_id = actor.id

        _rederive(order)
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.FINAL_APPROVED,
            actor_id=actor.id,
            details=_describe((item.id, item.registered_quantity) for item in selected),
            item_id=selected[0].id if len(selected) == 1 else None,
        )
        current_app.logger.info(
            "Purchase order %s: %s item(s) approved by user %s", order.id, len(selected), actor.id
        )
        return order

    return run_in_transaction(_op)


# ---------------------------------------------------------------------------
# Reject / cancel
# ---------------------------------------------------------------------------

def _require_reason(reason) -> str:
    if not isinstance(reason, str) or not reason.strip():
        raise ValidationError("reason is required")
    return reason.strip()


def reject(order_id: int, *, reason: str, item_ids=None, actor_id: int | None = None) -> PurchaseOrder:
    """
    Reject the whole order, or only some lines.

    With item_ids the listed lines are accepted at zero and drop out of the
    order; a line with registrations or an approval cannot be rejected. If no
    live line remains the order ends up Rejected.
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.REJECT_PURCHASE_ORDER)
        order = _load_order_for_update(order_id)
        _require_status(order, REJECTABLE_STATUSES, "reject")
        note = _require_reason(reason)

        if item_ids is None:
            order.status = S.REJECTED
            order.closing_reason = note
            record_history(
                purchase_order_id=order.id,
                action=HistoryAction.REJECTED,
                actor_id=actor.id,
                details=note,
            )
            current_app.logger.info("Purchase order %s rejected by user %s", order.id, actor.id)
            return order

        if not isinstance(item_ids, (list, tuple)) or not item_ids:
            raise ValidationError("item_ids must be a non-empty list")
        targets = []
        for item_id in dict.fromkeys(item_ids):
            item = order.find_item(item_id)
            if item is None or not item.is_active:
                raise NotFoundError(f"Item {item_id} not found on purchase order {order.id}")
            if item.is_approved:
                raise StateError(f"Item {item_id} is already approved")
            if item.is_registered:
                raise StateError(f"Item {item_id} already has registered deliveries")
            targets.append(item)

        now = utcnow()
        for item in targets:
            item.quantity_accepted = 0
            item.accepted_at = now
            item.accepted_by_user_id = actor.id

        if _rederive(order) == S.REJECTED:
            order.closing_reason = note
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.ITEMS_REJECTED,
            actor_id=actor.id,
            details=f"{note} (items {', '.join(str(i.id) for i in targets)})",
            item_id=targets[0].id if len(targets) == 1 else None,
        )
        current_app.logger.info(
            "Purchase order %s: %s item(s) rejected by user %s", order.id, len(targets), actor.id
        )
        return order

    return run_in_transaction(_op)


def cancel(order_id: int, *, reason: str, actor_id: int | None = None) -> PurchaseOrder:
    """Soft-delete the order and its lines. Only before deliveries are complete."""
    def _op():
        permission_service.require_capability(actor_id, Capability.CANCEL_PURCHASE_ORDER)
        order = _load_order_for_update(order_id)
        actor = permission_service.require_order_capability(
            actor_id, Capability.CANCEL_PURCHASE_ORDER, order
        )
        _require_status(order, CANCELLABLE_STATUSES, "cancel")
        note = _require_reason(reason)

        order.status = S.CANCELLED
        order.closing_reason = note
        order.is_active = False
        for item in order.items:
            item.is_active = False

        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.CANCELLED,
            actor_id=actor.id,
            details=note,
        )
        current_app.logger.info("Purchase order %s cancelled by user %s", order.id, actor.id)
        return order

    return run_in_transaction(_op)


# ---------------------------------------------------------------------------
# Edits
# ---------------------------------------------------------------------------

def edit_requested_quantities(order_id: int, items, *, actor_id: int | None = None) -> PurchaseOrder:
    """Change requested quantities of lines the manager has not reviewed yet."""
    def _op():
        permission_service.require_capability(actor_id, Capability.EDIT_REQUESTED_QUANTITIES)
        order = _load_order_for_update(order_id)
        actor = permission_service.require_order_capability(
            actor_id, Capability.EDIT_REQUESTED_QUANTITIES, order
        )
        _require_status(order, {S.PENDING_ADMIN_ACCEPTANCE}, "edit requested quantities of")

        changes = []
        for item, entry in _resolve_items(order, items):
            quantity = _parse_quantity(entry.get("quantity"), "quantity")
            if item.is_accepted:
                raise StateError(f"Item {item.id} has already been reviewed")
            if quantity <= 0:
                raise RangeError(f"Requested quantity for item {item.id} must be positive")
            changes.append((item, quantity))

        for item, quantity in changes:
            item.quantity_requested = quantity

        _rederive(order)
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.REQUESTED_QUANTITIES_EDITED,
            actor_id=actor.id,
            details=_describe((item.id, q) for item, q in changes),
            item_id=changes[0][0].id if len(changes) == 1 else None,
        )
        current_app.logger.info("Requested quantities edited on purchase order %s", order.id)
        return order

    return run_in_transaction(_op)


def edit_accepted_quantities(order_id: int, items, *, actor_id: int | None = None) -> PurchaseOrder:
    """Correct accepted quantities. Refused once any delivery is registered."""
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.EDIT_ACCEPTED_QUANTITIES)
        order = _load_order_for_update(order_id)
        _require_open(order)
        if any(i.is_registered for i in order.active_items):
            raise StateError("Accepted quantities cannot change once deliveries are registered")

        changes = []
        for item, entry in _resolve_items(order, items):
            quantity = _parse_quantity(entry.get("quantity"), "quantity")
            if not item.is_accepted:
                raise StateError(f"Item {item.id} has not been accepted")
            if quantity < 0 or quantity > item.quantity_requested:
                raise RangeError(
                    f"Accepted quantity for item {item.id} must be between 0 and {item.quantity_requested}"
                )
            changes.append((item, quantity))

        now = utcnow()
        for item, quantity in changes:
            item.quantity_accepted = quantity
            item.accepted_at = now
            item.accepted_by_user_id = actor.id

        if _rederive(order) == S.REJECTED:
            order.closing_reason = "All items accepted at zero"
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.ACCEPTED_QUANTITIES_EDITED,
            actor_id=actor.id,
            details=_describe((item.id, q) for item, q in changes),
            item_id=changes[0][0].id if len(changes) == 1 else None,
        )
        current_app.logger.info("Accepted quantities edited on purchase order %s", order.id)
        return order

    return run_in_transaction(_op)


def edit_registered_quantities(order_id: int, items, *, actor_id: int | None = None) -> PurchaseOrder:
    """
    Replace registered totals with corrected absolute values.

    Refused once finance has verified any line of the order.
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.EDIT_REGISTERED_QUANTITIES)
        order = _load_order_for_update(order_id)
        _require_status(order, REGISTRABLE_STATUSES, "edit registered quantities of")
        if any(i.is_finance_verified for i in order.active_items):
            raise StateError("Registered quantities cannot change once finance has verified an item")

        changes = []
        for item, entry in _resolve_items(order, items):
            quantity = _parse_quantity(entry.get("quantity"), "quantity")
            if item.is_approved:
                raise StateError(f"Item {item.id} is already approved")
            if not item.is_accepted or item.is_dropped:
                raise StateError(f"Item {item.id} has no accepted quantity to register against")
            if quantity < 0 or quantity > item.quantity_accepted:
                raise RangeError(
                    f"Registered quantity for item {item.id} must be between 0 and {item.quantity_accepted}"
                )
            changes.append((item, quantity))

        now = utcnow()
        for item, quantity in changes:
            item.quantity_registered = quantity
            item.registration_edit_count = (item.registration_edit_count or 0) + 1
            item.last_registration_edit_at = now

        _rederive(order)
        record_history(
            purchase_order_id=order.id,
            action=HistoryAction.REGISTERED_QUANTITIES_EDITED,
            actor_id=actor.id,
            details=_describe((item.id, q) for item, q in changes),
            item_id=changes[0][0].id if len(changes) == 1 else None,
        )
        current_app.logger.info("Registered quantities edited on purchase order %s", order.id)
        return order

    return run_in_transaction(_op)
