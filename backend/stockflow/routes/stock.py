# Overview: Flask API routes for stock levels, the movement ledger and manual movements.

"""
Stock Routes

SECURITY: All routes require authentication.
- Read operations require VIEW_STOCK
- Adjustments and transfers require ADJUST_STOCK

Purchases never come through here: they enter the ledger only when a
purchase order line gets final approval.
"""

from datetime import date

from flask import Blueprint, current_app, jsonify, request

from ..decorators import error_response, require_auth, require_capability
from ..errors import StockFlowError, ValidationError
from ..permissions import Capability
from ..services import stock_ledger_service
from stockflow.time_utils import parse_iso_datetime


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _parse_as_of(value: str):
    """A bare YYYY-MM-DD means the end of that day; anything else is an ISO datetime."""
    try:
        if len(value) == 10:
            return date.fromisoformat(value)
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"Invalid date: {value}")


def _parse_date(value: str | None, field: str) -> date:
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"Invalid {field}: {value}")


@stock_bp.get("")
@require_auth
@require_capability(Capability.VIEW_STOCK)
def list_stock_route():
    """Cached quantities with product/branch names. Filters: branch_id, product_id."""
    return jsonify(stock_ledger_service.list_current_stock(
        branch_id=request.args.get("branch_id", type=int),
        product_id=request.args.get("product_id", type=int),
    ))


@stock_bp.get("/<int:product_id>/<int:branch_id>")
@require_auth
@require_capability(Capability.VIEW_STOCK)
def get_stock_route(product_id: int, branch_id: int):
    """
    Current quantity of one product at one branch.

    With ?as_of=YYYY-MM-DD (or an ISO datetime) the point-in-time quantity is
    included, both replayed and read from the snapshot chain.
    """
    try:
        as_of_str = request.args.get("as_of")
        as_of = _parse_as_of(as_of_str) if as_of_str else None
        return jsonify(stock_ledger_service.get_pair_summary(product_id, branch_id, as_of))
    except StockFlowError as e:
        return error_response(e)


@stock_bp.get("/<int:product_id>/<int:branch_id>/movements")
@require_auth
@require_capability(Capability.VIEW_STOCK)
def list_movements_route(product_id: int, branch_id: int):
    limit = max(1, min(request.args.get("limit", 200, type=int), 1000))
    movements = stock_ledger_service.list_movements(product_id, branch_id, limit=limit)
    return jsonify({"items": [m.to_dict() for m in movements], "count": len(movements)})


@stock_bp.get("/<int:product_id>/<int:branch_id>/history")
@require_auth
@require_capability(Capability.VIEW_STOCK)
def stock_history_route(product_id: int, branch_id: int):
    """Daily end-of-day quantities. Query: start, end (YYYY-MM-DD)."""
    try:
        start = _parse_date(request.args.get("start"), "start")
        end = _parse_date(request.args.get("end"), "end")
        history = stock_ledger_service.stock_history(product_id, branch_id, start, end)
    except StockFlowError as e:
        return error_response(e)
    return jsonify({"product_id": product_id, "branch_id": branch_id, "items": history})


@stock_bp.get("/<int:product_id>/<int:branch_id>/verify")
@require_auth
@require_capability(Capability.VIEW_STOCK)
def verify_chain_route(product_id: int, branch_id: int):
    report = stock_ledger_service.verify_chain(product_id, branch_id)
    return jsonify(report.to_dict())


@stock_bp.post("/adjustments")
@require_auth
@require_capability(Capability.ADJUST_STOCK)
def record_movement_route():
    """
    Record an Adjustment, Damage, Return or Sale.

    Request body:
    {
        "product_id": 1,
        "branch_id": 1,
        "kind": "Adjustment",       // Adjustment quantities carry their own sign
        "quantity": -2,
        "reason": "Cycle count",
        "sale_id": "S-100",         // optional
        "movement_date": "..."      // optional, ISO-8601
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        movement_date = parse_iso_datetime(data.get("movement_date")) if data.get("movement_date") else None
    except ValueError:
        return error_response(ValidationError("Invalid movement_date"))

    try:
        movement = stock_ledger_service.record_movement(
            product_id=data.get("product_id"),
            branch_id=data.get("branch_id"),
            kind=data.get("kind", "Adjustment"),
            quantity=data.get("quantity"),
            reason=data.get("reason"),
            sale_id=data.get("sale_id"),
            movement_date=movement_date,
        )
    except StockFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record stock movement")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"movement": movement.to_dict()}), 201


@stock_bp.post("/transfers")
@require_auth
@require_capability(Capability.ADJUST_STOCK)
def transfer_route():
    """Body: {"product_id", "from_branch_id", "to_branch_id", "quantity", "reason" (optional)}."""
    data = request.get_json(silent=True) or {}
    try:
        outbound, inbound = stock_ledger_service.transfer_stock(
            product_id=data.get("product_id"),
            from_branch_id=data.get("from_branch_id"),
            to_branch_id=data.get("to_branch_id"),
            quantity=data.get("quantity"),
            reason=data.get("reason"),
        )
    except StockFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to transfer stock")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"outbound": outbound.to_dict(), "inbound": inbound.to_dict()}), 201
