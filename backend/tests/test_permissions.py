"""
Capability tests.

Verifies:
- each workflow step is refused for roles without the capability
- creator-only rules for sales users
- inactive and unknown actors are refused
"""

import pytest

from stockflow.errors import AuthorizationError
from stockflow.models import PurchaseOrder
from stockflow.permissions import Capability, Role, capabilities_for
from stockflow.services import permission_service, purchase_service

from conftest import item_ids


class TestCapabilityTable:

    @pytest.mark.parametrize("role,capability,expected", [
        (Role.SALES, Capability.CREATE_PURCHASE_ORDER, True),
        (Role.SALES, Capability.ACCEPT_PURCHASE_ORDER, False),
        (Role.SALES, Capability.APPROVE_PURCHASE_ORDER, False),
        (Role.SALES, Capability.ADJUST_STOCK, False),
        (Role.FINANCE, Capability.VERIFY_FINANCE, True),
        (Role.FINANCE, Capability.CREATE_PURCHASE_ORDER, False),
        (Role.FINANCE, Capability.REGISTER_RECEIPT, False),
        (Role.MANAGER, Capability.APPROVE_PURCHASE_ORDER, True),
        (Role.MANAGER, Capability.ADJUST_STOCK, True),
    ])
    def test_table(self, role, capability, expected):
        assert (capability in capabilities_for(role)) is expected

    def test_unknown_role_has_nothing(self):
        assert capabilities_for("JANITOR") == set()


class TestServiceChecks:

    def test_finance_cannot_create(self, db_session, branch, product, finance):
        with pytest.raises(AuthorizationError):
            purchase_service.create_order(
                branch_id=branch.id, items=[{"product_id": product.id, "quantity": 1}], actor_id=finance.id
            )
        assert db_session.query(PurchaseOrder).count() == 0

    def test_sales_cannot_accept(self, two_line_order, sales):
        with pytest.raises(AuthorizationError):
            purchase_service.accept_all(two_line_order.id, actor_id=sales.id)

    def test_sales_cannot_verify(self, accepted_order, sales, manager):
        first, _ = item_ids(accepted_order)
        purchase_service.register_received(
            accepted_order.id, [{"item_id": first, "quantity": 5}], actor_id=manager.id
        )
        with pytest.raises(AuthorizationError):
            purchase_service.verify_finance(
                accepted_order.id, [{"item_id": first, "buying_price": 10}], actor_id=sales.id
            )

    def test_finance_cannot_approve(self, accepted_order, finance):
        with pytest.raises(AuthorizationError):
            purchase_service.approve_final(accepted_order.id, actor_id=finance.id)

    def test_sales_can_only_cancel_own_orders(self, two_line_order, other_sales):
        with pytest.raises(AuthorizationError):
            purchase_service.cancel(two_line_order.id, reason="Not mine", actor_id=other_sales.id)

    def test_manager_can_cancel_any_order(self, two_line_order, manager):
        order = purchase_service.cancel(two_line_order.id, reason="Consolidated", actor_id=manager.id)
        assert order.is_active is False

    def test_sales_can_only_edit_own_requests(self, two_line_order, other_sales):
        first, _ = item_ids(two_line_order)
        with pytest.raises(AuthorizationError):
            purchase_service.edit_requested_quantities(
                two_line_order.id, [{"item_id": first, "quantity": 1}], actor_id=other_sales.id
            )

    def test_inactive_actor_refused(self, db_session, two_line_order, manager):
        manager.is_active = False
        db_session.commit()
        with pytest.raises(AuthorizationError):
            purchase_service.accept_all(two_line_order.id, actor_id=manager.id)

    def test_unknown_actor_refused(self, two_line_order):
        with pytest.raises(AuthorizationError):
            purchase_service.accept_all(two_line_order.id, actor_id=987654)

    def test_missing_actor_refused(self, app, two_line_order):
        with app.test_request_context():
            with pytest.raises(AuthorizationError):
                permission_service.current_actor_id()
