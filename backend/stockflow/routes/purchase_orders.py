# Overview: Flask API routes for the purchase order workflow; parses input and returns JSON responses.

"""
Purchase Order Routes

SECURITY: All routes require authentication.
- View operations require VIEW_PURCHASE_ORDERS
- Each workflow step requires its own capability (see stockflow.permissions)
- Creator-only rules (cancel, requested-quantity edits) are enforced by the service

Item payloads are lists of objects keyed by item_id, e.g.
    {"items": [{"item_id": 1, "quantity": 5}]}
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import error_response, require_auth, require_capability
from ..errors import StockFlowError
from ..permissions import Capability
from ..services import purchase_query_service, purchase_service


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _run(action: str, call, status: int = 200):
    """Call a workflow operation and shape the response."""
    try:
        order = call()
    except StockFlowError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s purchase order", action)
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"purchase_order": order.to_dict()}), status


@purchase_orders_bp.get("")
@require_auth
@require_capability(Capability.VIEW_PURCHASE_ORDERS)
def list_orders_route():
    """
    List purchase orders, newest first.

    Query parameters: status, branch_id, created_by, include_inactive,
    limit (default 50, max 500), offset.
    """
    try:
        orders, total = purchase_query_service.list_orders(
            status=request.args.get("status"),
            branch_id=request.args.get("branch_id", type=int),
            created_by=request.args.get("created_by", type=int),
            include_inactive=request.args.get("include_inactive", "false").lower() == "true",
            limit=request.args.get("limit", 50, type=int),
            offset=request.args.get("offset", 0, type=int),
        )
    except StockFlowError as e:
        return error_response(e)

    return jsonify({
        "items": [o.to_dict(include_items=False) for o in orders],
        "count": total,
    })


@purchase_orders_bp.get("/stats")
@require_auth
@require_capability(Capability.VIEW_PURCHASE_ORDERS)
def order_stats_route():
    return jsonify(purchase_query_service.order_stats(branch_id=request.args.get("branch_id", type=int)))


@purchase_orders_bp.get("/<int:order_id>")
@require_auth
@require_capability(Capability.VIEW_PURCHASE_ORDERS)
def get_order_route(order_id: int):
    try:
        order = purchase_query_service.get_order(order_id)
    except StockFlowError as e:
        return error_response(e)
    return jsonify({"purchase_order": order.to_dict()})


@purchase_orders_bp.get("/<int:order_id>/history")
@require_auth
@require_capability(Capability.VIEW_PURCHASE_ORDERS)
def order_history_route(order_id: int):
    try:
        entries = purchase_query_service.get_history(order_id)
    except StockFlowError as e:
        return error_response(e)
    return jsonify({"items": [e.to_dict() for e in entries]})


@purchase_orders_bp.post("")
@require_auth
@require_capability(Capability.CREATE_PURCHASE_ORDER)
def create_order_route():
    """
    Request body:
    {
        "branch_id": 1,
        "items": [{"product_id": 1, "quantity": 5}, ...]
    }
    """
    data = _body()
    return _run(
        "create",
        lambda: purchase_service.create_order(branch_id=data.get("branch_id"), items=data.get("items")),
        status=201,
    )


@purchase_orders_bp.post("/<int:order_id>/accept")
@require_auth
@require_capability(Capability.ACCEPT_PURCHASE_ORDER)
def accept_route(order_id: int):
    data = _body()
    return _run("accept", lambda: purchase_service.accept_quantities(order_id, data.get("items")))


@purchase_orders_bp.post("/<int:order_id>/accept-all")
@require_auth
@require_capability(Capability.ACCEPT_PURCHASE_ORDER)
def accept_all_route(order_id: int):
    return _run("accept", lambda: purchase_service.accept_all(order_id))


@purchase_orders_bp.post("/<int:order_id>/register")
@require_auth
@require_capability(Capability.REGISTER_RECEIPT)
def register_route(order_id: int):
    """Quantities are increments added to what was registered before."""
    data = _body()
    return _run("register deliveries for", lambda: purchase_service.register_received(order_id, data.get("items")))


@purchase_orders_bp.post("/<int:order_id>/verify")
@require_auth
@require_capability(Capability.VERIFY_FINANCE)
def verify_route(order_id: int):
    """
    Request body:
    {
        "items": [
            {"item_id": 1, "verify": true, "buying_price": "10.00", "selling_price": "15.00"},
            {"item_id": 2, "verify": false}
        ]
    }
    selling_price is optional; the configured markup applies when omitted.
    """
    data = _body()
    return _run("verify", lambda: purchase_service.verify_finance(order_id, data.get("items")))


@purchase_orders_bp.post("/<int:order_id>/approve")
@require_auth
@require_capability(Capability.APPROVE_PURCHASE_ORDER)
def approve_route(order_id: int):
    """Optional body: {"item_ids": [1, 2]}; default approves every eligible item."""
    data = _body()
    return _run("approve", lambda: purchase_service.approve_final(order_id, data.get("item_ids")))


@purchase_orders_bp.post("/<int:order_id>/reject")
@require_auth
@require_capability(Capability.REJECT_PURCHASE_ORDER)
def reject_route(order_id: int):
    """Body: {"reason": "...", "item_ids": [..] (optional)}."""
    data = _body()
    return _run(
        "reject",
        lambda: purchase_service.reject(order_id, reason=data.get("reason"), item_ids=data.get("item_ids")),
    )


@purchase_orders_bp.post("/<int:order_id>/cancel")
@require_auth
@require_capability(Capability.CANCEL_PURCHASE_ORDER)
def cancel_route(order_id: int):
    data = _body()
    return _run("cancel", lambda: purchase_service.cancel(order_id, reason=data.get("reason")))


@purchase_orders_bp.post("/<int:order_id>/items")
@require_auth
@require_capability(Capability.EDIT_REQUESTED_QUANTITIES)
def add_items_route(order_id: int):
    data = _body()
    return _run("add items to", lambda: purchase_service.add_items(order_id, data.get("items")))


@purchase_orders_bp.delete("/<int:order_id>/items/<int:item_id>")
@require_auth
@require_capability(Capability.EDIT_REQUESTED_QUANTITIES)
def remove_item_route(order_id: int, item_id: int):
    return _run("remove an item from", lambda: purchase_service.remove_item(order_id, item_id))


@purchase_orders_bp.patch("/<int:order_id>/requested-quantities")
@require_auth
@require_capability(Capability.EDIT_REQUESTED_QUANTITIES)
def edit_requested_route(order_id: int):
    data = _body()
    return _run("edit", lambda: purchase_service.edit_requested_quantities(order_id, data.get("items")))


@purchase_orders_bp.patch("/<int:order_id>/accepted-quantities")
@require_auth
@require_capability(Capability.EDIT_ACCEPTED_QUANTITIES)
def edit_accepted_route(order_id: int):
    data = _body()
    return _run("edit", lambda: purchase_service.edit_accepted_quantities(order_id, data.get("items")))


@purchase_orders_bp.patch("/<int:order_id>/registered-quantities")
@require_auth
@require_capability(Capability.EDIT_REGISTERED_QUANTITIES)
def edit_registered_route(order_id: int):
    """Quantities are absolute corrected totals, not increments."""
    data = _body()
    return _run("edit", lambda: purchase_service.edit_registered_quantities(order_id, data.get("items")))


@purchase_orders_bp.patch("/<int:order_id>/prices")
@require_auth
@require_capability(Capability.EDIT_PRICES)
def edit_prices_route(order_id: int):
    data = _body()
    return _run("edit prices of", lambda: purchase_service.edit_prices(order_id, data.get("items")))
