# Overview: Service-layer operations for the stock ledger and its quantity cache.

"""
Stock Ledger Invariants (authoritative)

Data:
- stock_movements is append-only. Rows are never updated or deleted.
- stock holds one cached quantity per (product, branch).

Single writer:
- append_movement() is the ONLY code that inserts movements or changes a
  cached quantity. Both happen in the caller's unit of work, so they commit or
  roll back together.

Snapshot chain, per (product, branch) ordered by (movement_date, id):
- previous_quantity = cached quantity read under lock at append time
- new_quantity = previous_quantity + effect(kind, quantity)
- previous_quantity of a row = new_quantity of the row before it

Time semantics:
- All internal datetimes are UTC-naive.
- As-of filters are inclusive: movement_date <= as_of. A plain date means the
  end of that day.
- A movement may not be dated before the pair's latest movement.

Reconstruction:
- quantity_as_of() replays effects from zero; it is the canonical answer.
- snapshot_quantity_as_of() reads the latest row's new_quantity. It is only an
  index and is checked against replay by verify_chain().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Branch, Product, Stock, StockMovement, MovementKind
from ..errors import NotFoundError, RangeError, StateError, ValidationError
from .concurrency import lock_for_update, run_in_transaction
from . import catalog_service, permission_service
from ..permissions import Capability
from stockflow.time_utils import as_of_bound, iter_days, normalize_datetime, utcnow


# Clock skew tolerated for client-supplied movement dates
FUTURE_TOLERANCE = timedelta(minutes=2)


def effect(kind: str, magnitude: int) -> int:
    """Signed change a movement applies to the on-hand quantity."""
    if kind in MovementKind.INBOUND:
        return magnitude
    if kind in MovementKind.OUTBOUND:
        return -magnitude
    if kind in MovementKind.SIGNED:
        return magnitude
    raise ValidationError(f"Unknown movement kind: {kind}")


def _validate_movement(kind: str, magnitude, sale_id, purchase_order_id) -> None:
    if kind not in MovementKind.ALL:
        raise ValidationError(f"Invalid movement kind. Must be one of: {', '.join(MovementKind.ALL)}")
    if not isinstance(magnitude, int) or isinstance(magnitude, bool):
        raise ValidationError("quantity must be an integer")
    if magnitude == 0:
        raise RangeError("quantity must be non-zero")
    if kind not in MovementKind.SIGNED and magnitude < 0:
        raise RangeError(f"quantity must be positive for {kind} movements")
    if sale_id is not None and purchase_order_id is not None:
        raise ValidationError("A movement may reference a sale or a purchase order, not both")


def _lock_stock_row(product_id: int, branch_id: int) -> Stock:
    """
    Fetch the cache row under lock, creating it at zero on first use.

    A concurrent first insert for the same pair hits the unique constraint;
    the savepoint is rolled back and the winner's row is re-read under lock.
    """
    query = db.session.query(Stock).filter_by(product_id=product_id, branch_id=branch_id)
    stock = lock_for_update(query).first()
    if stock is not None:
        return stock

    try:
        with db.session.begin_nested():
            stock = Stock(product_id=product_id, branch_id=branch_id, quantity=0)
            db.session.add(stock)
        return stock
    except IntegrityError:
        return lock_for_update(query).one()


def _latest_movement(product_id: int, branch_id: int, as_of: datetime | None = None) -> StockMovement | None:
    q = db.session.query(StockMovement).filter(
        StockMovement.product_id == product_id,
        StockMovement.branch_id == branch_id,
    )
    if as_of is not None:
        q = q.filter(StockMovement.movement_date <= as_of)
    return q.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc()).first()


def append_movement(
    *,
    product_id: int,
    branch_id: int,
    kind: str,
    quantity: int,
    reason: str | None = None,
    sale_id: str | None = None,
    purchase_order_id: int | None = None,
    movement_date: datetime | None = None,
    actor_id: int | None = None,
) -> StockMovement:
    """
    Append one movement and move the cached quantity with it.

    Does not commit: the caller's unit of work owns the transaction. Callers
    that hold other locks (an order, say) must take them before calling this,
    so the cache lock is always acquired last.

    Raises:
        ValidationError: bad kind, both source refs, unknown product/branch
        RangeError: zero/negative magnitude where not allowed, or the result
            would put on-hand below zero
        StateError: movement_date earlier than the pair's latest movement
    """
    _validate_movement(kind, quantity, sale_id, purchase_order_id)

    if db.session.get(Product, product_id) is None:
        raise ValidationError(f"Product {product_id} not found")
    if db.session.get(Branch, branch_id) is None:
        raise ValidationError(f"Branch {branch_id} not found")

    now = utcnow()
    moved_at = normalize_datetime(movement_date) if movement_date is not None else now
    if moved_at > now + FUTURE_TOLERANCE:
        raise ValidationError("movement_date cannot be in the future")

    stock = _lock_stock_row(product_id, branch_id)

    latest = _latest_movement(product_id, branch_id)
    if latest is not None and moved_at < latest.movement_date:
        raise StateError("movement_date cannot be earlier than the latest movement for this product and branch")

    previous = stock.quantity
    new = previous + effect(kind, quantity)
    if new < 0:
        raise RangeError(
            f"{kind} of {quantity} would make on-hand negative ({previous} -> {new})"
        )

    movement = StockMovement(
        product_id=product_id,
        branch_id=branch_id,
        sale_id=sale_id,
        purchase_order_id=purchase_order_id,
        kind=kind,
        quantity=quantity,
        previous_quantity=previous,
        new_quantity=new,
        reason=reason,
        movement_date=moved_at,
        created_by_user_id=actor_id,
    )
    db.session.add(movement)
    stock.quantity = new
    db.session.flush()

    current_app.logger.info(
        "Stock %s for product %s at branch %s: %s -> %s (movement %s)",
        kind, product_id, branch_id, previous, new, movement.id,
    )
    return movement


def current_quantity(product_id: int, branch_id: int) -> int:
    """Cached on-hand quantity (fast path). Zero when the pair never moved."""
    stock = db.session.query(Stock).filter_by(product_id=product_id, branch_id=branch_id).first()
    return stock.quantity if stock else 0


def _movements_up_to(product_id: int, branch_id: int, as_of: datetime | None = None) -> list[StockMovement]:
    q = db.session.query(StockMovement).filter(
        StockMovement.product_id == product_id,
        StockMovement.branch_id == branch_id,
    )
    if as_of is not None:
        q = q.filter(StockMovement.movement_date <= as_of)
    return q.order_by(StockMovement.movement_date.asc(), StockMovement.id.asc()).all()


def replay(movements) -> int:
    total = 0
    for movement in movements:
        total += effect(movement.kind, movement.quantity)
    return total


def quantity_as_of(product_id: int, branch_id: int, as_of: date | datetime) -> int:
    """
    On-hand quantity at ``as_of`` by replaying every movement from zero.

    This is the canonical point-in-time answer.
    """
    return replay(_movements_up_to(product_id, branch_id, as_of_bound(as_of)))


def snapshot_quantity_as_of(product_id: int, branch_id: int, as_of: date | datetime) -> int:
    """On-hand quantity at ``as_of`` read from the latest movement's snapshot."""
    latest = _latest_movement(product_id, branch_id, as_of_bound(as_of))
    return latest.new_quantity if latest else 0


@dataclass
class ChainReport:
    product_id: int
    branch_id: int
    movement_count: int = 0
    replayed_quantity: int = 0
    cached_quantity: int = 0
    problems: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.problems

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "branch_id": self.branch_id,
            "movement_count": self.movement_count,
            "replayed_quantity": self.replayed_quantity,
            "cached_quantity": self.cached_quantity,
            "ok": self.ok,
            "problems": list(self.problems),
        }


def verify_chain(product_id: int, branch_id: int) -> ChainReport:
    """
    Check every snapshot of a pair against replay, and the cache against both.

    Nothing about previous_quantity is trusted: each row is compared with the
    running total computed from the rows before it.
    """
    report = ChainReport(product_id=product_id, branch_id=branch_id)
    running = 0
    for movement in _movements_up_to(product_id, branch_id):
        report.movement_count += 1
        if movement.previous_quantity != running:
            report.problems.append(
                f"movement {movement.id}: previous_quantity {movement.previous_quantity} != running total {running}"
            )
        running += effect(movement.kind, movement.quantity)
        if movement.new_quantity != movement.previous_quantity + effect(movement.kind, movement.quantity):
            report.problems.append(
                f"movement {movement.id}: new_quantity {movement.new_quantity} does not follow from its own previous_quantity"
            )
        if movement.new_quantity != running:
            report.problems.append(
                f"movement {movement.id}: new_quantity {movement.new_quantity} != running total {running}"
            )

    report.replayed_quantity = running
    report.cached_quantity = current_quantity(product_id, branch_id)
    if report.cached_quantity != running:
        report.problems.append(
            f"cached quantity {report.cached_quantity} != ledger total {running}"
        )
    return report


def verify_all_chains() -> list[ChainReport]:
    pairs = db.session.query(StockMovement.product_id, StockMovement.branch_id).distinct().all()
    cached = db.session.query(Stock.product_id, Stock.branch_id).all()
    keys = sorted({tuple(p) for p in pairs} | {tuple(c) for c in cached})
    return [verify_chain(product_id, branch_id) for product_id, branch_id in keys]


def _change_type(current: int, previous: int) -> str:
    if current > previous:
        return "Increase"
    if current < previous:
        return "Decrease"
    return "No Change"


def stock_history(product_id: int, branch_id: int, start: date, end: date) -> list[dict]:
    """
    One entry per day from ``start`` to ``end`` inclusive.

    quantity is the on-hand at the end of the day; change is relative to the
    end of the previous day (including for the first day in the range).
    """
    if start > end:
        raise ValidationError("start date cannot be after end date")
    if (end - start).days > 366:
        raise RangeError("history range cannot exceed 366 days")

    movements = _movements_up_to(product_id, branch_id, as_of_bound(end))
    index = 0
    running = 0
    day_before = as_of_bound(start - timedelta(days=1))
    while index < len(movements) and movements[index].movement_date <= day_before:
        running += effect(movements[index].kind, movements[index].quantity)
        index += 1

    history = []
    previous = running
    for day in iter_days(start, end):
        bound = as_of_bound(day)
        while index < len(movements) and movements[index].movement_date <= bound:
            running += effect(movements[index].kind, movements[index].quantity)
            index += 1
        history.append({
            "date": day.isoformat(),
            "quantity": running,
            "change": running - previous,
            "change_type": _change_type(running, previous),
        })
        previous = running
    return history


def list_current_stock(*, branch_id: int | None = None, product_id: int | None = None) -> dict:
    """Cached quantities joined with product and branch details."""
    q = (
        db.session.query(Stock, Product, Branch)
        .join(Product, Product.id == Stock.product_id)
        .join(Branch, Branch.id == Stock.branch_id)
    )
    if branch_id is not None:
        q = q.filter(Stock.branch_id == branch_id)
    if product_id is not None:
        q = q.filter(Stock.product_id == product_id)

    items = []
    total_value = 0
    for stock, product, branch in q.order_by(Branch.name, Product.name).all():
        value = stock.quantity * product.buying_price if product.buying_price is not None else None
        if value is not None:
            total_value += value
        items.append({
            "product_id": product.id,
            "product_name": product.name,
            "item_code": product.item_code,
            "branch_id": branch.id,
            "branch_name": branch.name,
            "quantity": stock.quantity,
            "selling_price": str(product.selling_price) if product.selling_price is not None else None,
            "total_value": str(value) if value is not None else None,
        })

    return {
        "date": utcnow().date().isoformat(),
        "items": items,
        "total_items": len(items),
        "total_value": str(total_value),
    }


def list_movements(product_id: int, branch_id: int, *, limit: int = 200) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter(StockMovement.product_id == product_id, StockMovement.branch_id == branch_id)
        .order_by(StockMovement.movement_date.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def _require_active_pair(product_id: int, branch_id: int) -> None:
    if not catalog_service.product_exists_and_active(product_id):
        raise ValidationError(f"Invalid or inactive product: {product_id}")
    if not catalog_service.branch_exists_and_active(branch_id):
        raise ValidationError(f"Invalid or inactive branch: {branch_id}")


MANUAL_KINDS = (MovementKind.ADJUSTMENT, MovementKind.DAMAGE, MovementKind.RETURN, MovementKind.SALE)


def record_movement(
    *,
    product_id: int,
    branch_id: int,
    kind: str,
    quantity: int,
    reason: str | None = None,
    sale_id: str | None = None,
    movement_date: datetime | None = None,
    actor_id: int | None = None,
) -> StockMovement:
    """
    Record a manual adjustment, damage, return or sale in its own unit of work.

    Purchases only enter the ledger through final purchase order approval and
    transfers through transfer_stock().
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.ADJUST_STOCK)
        if kind not in MANUAL_KINDS:
            raise ValidationError(f"kind must be one of: {', '.join(MANUAL_KINDS)}")
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("reason is required for manual stock movements")
        _require_active_pair(product_id, branch_id)
        return append_movement(
            product_id=product_id,
            branch_id=branch_id,
            kind=kind,
            quantity=quantity,
            reason=reason.strip(),
            sale_id=sale_id,
            movement_date=movement_date,
            actor_id=actor.id,
        )

    return run_in_transaction(_op)


def transfer_stock(
    *,
    product_id: int,
    from_branch_id: int,
    to_branch_id: int,
    quantity: int,
    reason: str | None = None,
    actor_id: int | None = None,
) -> tuple[StockMovement, StockMovement]:
    """
    Move stock between branches: a negative Transfer at the source and a
    positive one at the destination, committed together.

    The two cache rows are locked in branch id order.
    """
    def _op():
        actor = permission_service.require_capability(actor_id, Capability.ADJUST_STOCK)
        if from_branch_id == to_branch_id:
            raise ValidationError("Source and destination branch must differ")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise RangeError("Transfer quantity must be a positive integer")
        _require_active_pair(product_id, from_branch_id)
        _require_active_pair(product_id, to_branch_id)

        if reason is not None and not isinstance(reason, str):
            raise ValidationError("reason must be a string")
        note = (reason or "").strip() or f"Transfer branch {from_branch_id} -> branch {to_branch_id}"
        legs = {
            from_branch_id: -quantity,
            to_branch_id: quantity,
        }
        movements = {}
        for branch_id in sorted(legs):
            movements[branch_id] = append_movement(
                product_id=product_id,
                branch_id=branch_id,
                kind=MovementKind.TRANSFER,
                quantity=legs[branch_id],
                reason=note,
                actor_id=actor.id,
            )
        return movements[from_branch_id], movements[to_branch_id]

    return run_in_transaction(_op)


def get_pair_summary(product_id: int, branch_id: int, as_of: date | datetime | None = None) -> dict:
    """Cached quantity, plus the replayed and snapshot quantity when as_of is given."""
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")
    if db.session.get(Branch, branch_id) is None:
        raise NotFoundError(f"Branch {branch_id} not found")

    result = {
        "product_id": product_id,
        "branch_id": branch_id,
        "current_quantity": current_quantity(product_id, branch_id),
    }
    if as_of is not None:
        result["as_of"] = as_of.isoformat()
        result["quantity_as_of"] = quantity_as_of(product_id, branch_id, as_of)
        result["snapshot_quantity_as_of"] = snapshot_quantity_as_of(product_id, branch_id, as_of)
    return result
