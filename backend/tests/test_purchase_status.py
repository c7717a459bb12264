"""
Status derivation tests.

derive_status is a pure function over the items, so these tests build
transient items without touching the database.
"""

from decimal import Decimal

import pytest

from stockflow.models import PurchaseOrderItem, PurchaseOrderStatus as S
from stockflow.services.purchase_status import derive_status
from stockflow.time_utils import utcnow


def make_item(requested=5, accepted=None, registered=None, verified=None, approved=False, active=True):
    item = PurchaseOrderItem(
        product_id=1,
        quantity_requested=requested,
        quantity_accepted=accepted,
        quantity_registered=registered,
        finance_verified=verified,
        is_active=active,
    )
    if verified:
        item.buying_price = Decimal("10.00")
        item.selling_price = Decimal("13.00")
    if approved:
        item.approved_at = utcnow()
    return item


class TestRulePriority:

    def test_fresh_order_is_pending(self):
        assert derive_status([make_item(), make_item()]) == S.PENDING_ADMIN_ACCEPTANCE

    def test_partially_accepted_is_still_pending(self):
        assert derive_status([make_item(accepted=5), make_item()]) == S.PENDING_ADMIN_ACCEPTANCE

    def test_all_inactive_is_cancelled(self):
        assert derive_status([make_item(active=False), make_item(active=False)]) == S.CANCELLED

    def test_all_accepted_zero_is_rejected(self):
        assert derive_status([make_item(accepted=0), make_item(accepted=0)]) == S.REJECTED

    def test_all_accepted(self):
        assert derive_status([make_item(accepted=5), make_item(accepted=3)]) == S.ACCEPTED_BY_ADMIN

    def test_any_registered(self):
        items = [make_item(accepted=5, registered=3), make_item(accepted=3)]
        assert derive_status(items) == S.PARTIALLY_REGISTERED

    def test_all_fully_registered(self):
        items = [make_item(accepted=5, registered=5), make_item(accepted=3, registered=3)]
        assert derive_status(items) == S.COMPLETELY_REGISTERED

    def test_any_verified(self):
        items = [make_item(accepted=5, registered=5, verified=True), make_item(accepted=3)]
        assert derive_status(items) == S.PARTIALLY_FINANCE_PROCESSED

    def test_all_verified_but_not_fully_registered(self):
        items = [
            make_item(accepted=5, registered=2, verified=True),
            make_item(accepted=3, registered=3, verified=True),
        ]
        assert derive_status(items) == S.PARTIALLY_FINANCE_PROCESSED

    def test_all_verified_and_fully_registered(self):
        items = [
            make_item(accepted=5, registered=5, verified=True),
            make_item(accepted=3, registered=3, verified=True),
        ]
        assert derive_status(items) == S.FULLY_FINANCE_PROCESSED

    def test_reviewed_not_verified_does_not_count_as_verified(self):
        items = [make_item(accepted=5, registered=5, verified=False), make_item(accepted=3, registered=3)]
        assert derive_status(items) == S.COMPLETELY_REGISTERED

    def test_any_approved(self):
        items = [make_item(accepted=5, registered=5, verified=True, approved=True), make_item(accepted=3)]
        assert derive_status(items) == S.PARTIALLY_APPROVED

    def test_all_approved(self):
        items = [
            make_item(accepted=5, registered=5, verified=True, approved=True),
            make_item(accepted=3, registered=3, verified=True, approved=True),
        ]
        assert derive_status(items) == S.FULLY_APPROVED


class TestDroppedLines:

    def test_zero_accepted_line_does_not_block_full_registration(self):
        items = [make_item(accepted=5, registered=5), make_item(accepted=0)]
        assert derive_status(items) == S.COMPLETELY_REGISTERED

    def test_zero_accepted_line_does_not_block_full_approval(self):
        items = [make_item(accepted=5, registered=5, verified=True, approved=True), make_item(accepted=0)]
        assert derive_status(items) == S.FULLY_APPROVED

    def test_inactive_line_is_ignored(self):
        items = [make_item(accepted=5), make_item(active=False)]
        assert derive_status(items) == S.ACCEPTED_BY_ADMIN


class TestPurity:

    @pytest.mark.parametrize("items_factory", [
        lambda: [make_item(), make_item(accepted=3)],
        lambda: [make_item(accepted=5, registered=2), make_item(accepted=3)],
        lambda: [make_item(accepted=5, registered=5, verified=True, approved=True), make_item(accepted=3)],
    ])
    def test_idempotent_and_side_effect_free(self, items_factory):
        items = items_factory()
        before = [(i.quantity_accepted, i.quantity_registered, i.finance_verified, i.approved_at) for i in items]

        first = derive_status(items)
        second = derive_status(items)

        assert first == second
        assert derive_status(reversed(items)) == first
        assert [(i.quantity_accepted, i.quantity_registered, i.finance_verified, i.approved_at) for i in items] == before

    def test_approval_dominates_lower_progress(self):
        # One approved line outranks registration/finance progress on the others
        items = [
            make_item(accepted=5, registered=5, verified=True, approved=True),
            make_item(accepted=3, registered=1),
            make_item(accepted=2),
        ]
        assert derive_status(items) == S.PARTIALLY_APPROVED
