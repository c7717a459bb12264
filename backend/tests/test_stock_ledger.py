"""
Stock ledger tests.

Verifies:
- effect() signs per movement kind
- append keeps the snapshot chain and the cache in step
- replay-from-zero and the snapshot lookup agree at every point in time
- refused appends leave no movement and no cache change
- chain verification spots a drifted cache
- daily history, current stock listing, manual movements and transfers
"""

import random
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from stockflow.errors import AuthorizationError, RangeError, StateError, ValidationError
from stockflow.models import MovementKind, Stock, StockMovement
from stockflow.services import stock_ledger_service as ledger
from stockflow.time_utils import utcnow


def append(db_session, product, branch, kind, quantity, when=None, **kwargs):
    movement = ledger.append_movement(
        product_id=product.id,
        branch_id=branch.id,
        kind=kind,
        quantity=quantity,
        movement_date=when,
        **kwargs,
    )
    db_session.commit()
    return movement


def movement_count(db_session):
    return db_session.query(StockMovement).count()


class TestEffect:

    @pytest.mark.parametrize("kind,magnitude,expected", [
        (MovementKind.PURCHASE, 4, 4),
        (MovementKind.RETURN, 4, 4),
        (MovementKind.SALE, 4, -4),
        (MovementKind.DAMAGE, 4, -4),
        (MovementKind.ADJUSTMENT, 4, 4),
        (MovementKind.ADJUSTMENT, -4, -4),
        (MovementKind.TRANSFER, 4, 4),
        (MovementKind.TRANSFER, -4, -4),
    ])
    def test_effect(self, kind, magnitude, expected):
        assert ledger.effect(kind, magnitude) == expected

    def test_unknown_kind(self):
        with pytest.raises(ValidationError):
            ledger.effect("Theft", 1)


class TestAppend:

    def test_chain_and_cache(self, db_session, product, branch):
        day = datetime(2024, 1, 10, 9, 0)
        m1 = append(db_session, product, branch, MovementKind.PURCHASE, 10, day)
        m2 = append(db_session, product, branch, MovementKind.SALE, 3, day + timedelta(hours=1))
        m3 = append(db_session, product, branch, MovementKind.ADJUSTMENT, -2, day + timedelta(hours=2))
        m4 = append(db_session, product, branch, MovementKind.RETURN, 1, day + timedelta(hours=3))

        assert [(m.previous_quantity, m.new_quantity) for m in (m1, m2, m3, m4)] == [
            (0, 10), (10, 7), (7, 5), (5, 6),
        ]
        assert ledger.current_quantity(product.id, branch.id) == 6
        assert ledger.verify_chain(product.id, branch.id).ok

    def test_pairs_are_independent(self, db_session, product, product2, branch, other_branch):
        append(db_session, product, branch, MovementKind.PURCHASE, 10)
        append(db_session, product, other_branch, MovementKind.PURCHASE, 4)
        append(db_session, product2, branch, MovementKind.PURCHASE, 7)

        assert ledger.current_quantity(product.id, branch.id) == 10
        assert ledger.current_quantity(product.id, other_branch.id) == 4
        assert ledger.current_quantity(product2.id, branch.id) == 7
        assert ledger.current_quantity(product2.id, other_branch.id) == 0

    def test_negative_result_refused_without_trace(self, db_session, manager, product, branch):
        ledger.record_movement(
            product_id=product.id, branch_id=branch.id, kind=MovementKind.RETURN,
            quantity=2, reason="Customer return", actor_id=manager.id,
        )
        before = movement_count(db_session)

        with pytest.raises(RangeError):
            ledger.record_movement(
                product_id=product.id, branch_id=branch.id, kind=MovementKind.SALE,
                quantity=3, reason="Walk-in sale", actor_id=manager.id,
            )

        assert movement_count(db_session) == before
        assert ledger.current_quantity(product.id, branch.id) == 2

    def test_failed_first_movement_leaves_no_stock_row(self, db_session, manager, product, branch):
        with pytest.raises(RangeError):
            ledger.record_movement(
                product_id=product.id, branch_id=branch.id, kind=MovementKind.SALE,
                quantity=3, reason="Walk-in sale", actor_id=manager.id,
            )

        db_session.expire_all()
        assert db_session.query(Stock).all() == []
        assert ledger.list_current_stock()["items"] == []

    @pytest.mark.parametrize("kind,quantity,error", [
        (MovementKind.PURCHASE, 0, RangeError),
        (MovementKind.ADJUSTMENT, 0, RangeError),
        (MovementKind.PURCHASE, -5, RangeError),
        (MovementKind.SALE, -1, RangeError),
        ("Theft", 1, ValidationError),
        (MovementKind.PURCHASE, 1.5, ValidationError),
    ])
    def test_invalid_movements(self, db_session, product, branch, kind, quantity, error):
        with pytest.raises(error):
            ledger.append_movement(product_id=product.id, branch_id=branch.id, kind=kind, quantity=quantity)
        db_session.rollback()
        assert movement_count(db_session) == 0

    def test_both_source_refs_refused(self, db_session, product, branch):
        with pytest.raises(ValidationError):
            ledger.append_movement(
                product_id=product.id, branch_id=branch.id, kind=MovementKind.RETURN,
                quantity=1, sale_id="S-1", purchase_order_id=1,
            )

    def test_back_dated_movement_refused(self, db_session, product, branch):
        append(db_session, product, branch, MovementKind.PURCHASE, 5, datetime(2024, 2, 2, 12, 0))

        with pytest.raises(StateError):
            ledger.append_movement(
                product_id=product.id, branch_id=branch.id, kind=MovementKind.RETURN,
                quantity=1, movement_date=datetime(2024, 2, 1, 12, 0),
            )
        db_session.rollback()
        assert ledger.current_quantity(product.id, branch.id) == 5

    def test_future_movement_refused(self, db_session, product, branch):
        with pytest.raises(ValidationError):
            ledger.append_movement(
                product_id=product.id, branch_id=branch.id, kind=MovementKind.RETURN,
                quantity=1, movement_date=utcnow() + timedelta(days=1),
            )

    def test_unknown_product_refused(self, db_session, branch):
        with pytest.raises(ValidationError):
            ledger.append_movement(product_id=99999, branch_id=branch.id, kind=MovementKind.RETURN, quantity=1)


class TestPointInTime:

    def test_replay_matches_snapshot_over_random_histories(self, db_session, product, branch):
        rng = random.Random(20240301)
        start = datetime(2024, 3, 1, 8, 0)
        expected_by_day = {}
        running = 0

        for i in range(60):
            when = start + timedelta(hours=5 * i)
            kind = rng.choice(MovementKind.ALL)
            if kind in MovementKind.INBOUND:
                magnitude = rng.randint(1, 20)
            elif kind in MovementKind.OUTBOUND:
                if running == 0:
                    kind, magnitude = MovementKind.PURCHASE, rng.randint(1, 20)
                else:
                    magnitude = rng.randint(1, running)
            else:
                magnitude = rng.randint(-running, 20) if running else rng.randint(1, 20)
                if magnitude == 0:
                    magnitude = 1
            append(db_session, product, branch, kind, magnitude, when)
            running += ledger.effect(kind, magnitude)
            expected_by_day[when.date()] = running

        last_known = 0
        day = date(2024, 2, 28)
        while day <= date(2024, 3, 15):
            last_known = expected_by_day.get(day, last_known)
            replayed = ledger.quantity_as_of(product.id, branch.id, day)
            snapshot = ledger.snapshot_quantity_as_of(product.id, branch.id, day)
            assert replayed == snapshot == last_known, day
            day += timedelta(days=1)

        assert ledger.current_quantity(product.id, branch.id) == running
        assert ledger.verify_chain(product.id, branch.id).ok

    def test_as_of_before_first_movement_is_zero(self, db_session, product, branch):
        append(db_session, product, branch, MovementKind.PURCHASE, 8, datetime(2024, 5, 5, 10, 0))
        assert ledger.quantity_as_of(product.id, branch.id, date(2024, 5, 4)) == 0
        assert ledger.snapshot_quantity_as_of(product.id, branch.id, date(2024, 5, 4)) == 0

    def test_as_of_date_includes_whole_day(self, db_session, product, branch):
        append(db_session, product, branch, MovementKind.PURCHASE, 8, datetime(2024, 5, 5, 23, 59, 30))
        assert ledger.quantity_as_of(product.id, branch.id, date(2024, 5, 5)) == 8

    def test_as_of_datetime_is_inclusive(self, db_session, product, branch):
        when = datetime(2024, 5, 5, 10, 0)
        append(db_session, product, branch, MovementKind.PURCHASE, 8, when)
        assert ledger.quantity_as_of(product.id, branch.id, when) == 8
        assert ledger.quantity_as_of(product.id, branch.id, when - timedelta(seconds=1)) == 0


class TestVerifyChain:

    def test_detects_cache_drift(self, db_session, product, branch):
        append(db_session, product, branch, MovementKind.PURCHASE, 10)
        db_session.query(Stock).filter_by(product_id=product.id, branch_id=branch.id).update(
            {Stock.quantity: 11}, synchronize_session=False
        )
        db_session.commit()

        report = ledger.verify_chain(product.id, branch.id)
        assert not report.ok
        assert report.replayed_quantity == 10
        assert report.cached_quantity == 11

    def test_detects_broken_snapshot(self, db_session, product, branch):
        append(db_session, product, branch, MovementKind.PURCHASE, 10, datetime(2024, 1, 1, 9, 0))
        second = append(db_session, product, branch, MovementKind.SALE, 4, datetime(2024, 1, 2, 9, 0))
        db_session.query(StockMovement).filter_by(id=second.id).update(
            {StockMovement.previous_quantity: 9}, synchronize_session=False
        )
        db_session.commit()

        report = ledger.verify_chain(product.id, branch.id)
        assert not report.ok
        assert any(f"movement {second.id}" in p for p in report.problems)

    def test_verify_all_chains(self, db_session, product, product2, branch):
        append(db_session, product, branch, MovementKind.PURCHASE, 3)
        append(db_session, product2, branch, MovementKind.PURCHASE, 4)
        reports = ledger.verify_all_chains()
        assert len(reports) == 2
        assert all(r.ok for r in reports)


class TestHistoryAndListing:

    def test_daily_history(self, db_session, product, branch):
        append(db_session, product, branch, MovementKind.PURCHASE, 10, datetime(2024, 6, 1, 9, 0))
        append(db_session, product, branch, MovementKind.SALE, 4, datetime(2024, 6, 3, 15, 0))
        append(db_session, product, branch, MovementKind.RETURN, 1, datetime(2024, 6, 3, 16, 0))

        history = ledger.stock_history(product.id, branch.id, date(2024, 6, 1), date(2024, 6, 4))

        assert [(h["date"], h["quantity"], h["change"], h["change_type"]) for h in history] == [
            ("2024-06-01", 10, 10, "Increase"),
            ("2024-06-02", 10, 0, "No Change"),
            ("2024-06-03", 7, -3, "Decrease"),
            ("2024-06-04", 7, 0, "No Change"),
        ]

    def test_history_rejects_inverted_range(self, db_session, product, branch):
        with pytest.raises(ValidationError):
            ledger.stock_history(product.id, branch.id, date(2024, 6, 4), date(2024, 6, 1))

    def test_current_stock_listing(self, db_session, product, branch):
        product.buying_price = Decimal("2.50")
        db_session.commit()
        append(db_session, product, branch, MovementKind.PURCHASE, 4)

        listing = ledger.list_current_stock(branch_id=branch.id)

        assert listing["total_items"] == 1
        row = listing["items"][0]
        assert row["product_name"] == "Interior Paint 4L"
        assert row["branch_name"] == "Main Branch"
        assert row["quantity"] == 4
        assert Decimal(row["total_value"]) == Decimal("10.00")

    def test_list_movements_newest_first(self, db_session, product, branch):
        first = append(db_session, product, branch, MovementKind.PURCHASE, 4, datetime(2024, 1, 1))
        second = append(db_session, product, branch, MovementKind.SALE, 1, datetime(2024, 1, 2))
        assert [m.id for m in ledger.list_movements(product.id, branch.id)] == [second.id, first.id]


class TestManualMovements:

    def test_adjustment_requires_manager(self, db_session, sales, product, branch):
        with pytest.raises(AuthorizationError):
            ledger.record_movement(
                product_id=product.id, branch_id=branch.id, kind=MovementKind.ADJUSTMENT,
                quantity=5, reason="Count", actor_id=sales.id,
            )

    @pytest.mark.parametrize("reason", [None, "  ", 42])
    def test_reason_required(self, db_session, manager, product, branch, reason):
        with pytest.raises(ValidationError):
            ledger.record_movement(
                product_id=product.id, branch_id=branch.id, kind=MovementKind.ADJUSTMENT,
                quantity=5, reason=reason, actor_id=manager.id,
            )

    def test_purchase_kind_not_allowed_manually(self, db_session, manager, product, branch):
        with pytest.raises(ValidationError):
            ledger.record_movement(
                product_id=product.id, branch_id=branch.id, kind=MovementKind.PURCHASE,
                quantity=5, reason="Found stock", actor_id=manager.id,
            )

    def test_damage_and_adjustment(self, db_session, manager, product, branch):
        ledger.record_movement(
            product_id=product.id, branch_id=branch.id, kind=MovementKind.ADJUSTMENT,
            quantity=12, reason="Opening count", actor_id=manager.id,
        )
        movement = ledger.record_movement(
            product_id=product.id, branch_id=branch.id, kind=MovementKind.DAMAGE,
            quantity=2, reason="Dented cans", actor_id=manager.id,
        )
        assert movement.created_by_user_id == manager.id
        assert ledger.current_quantity(product.id, branch.id) == 10

    def test_transfer_moves_stock_between_branches(self, db_session, manager, product, branch, other_branch):
        ledger.record_movement(
            product_id=product.id, branch_id=branch.id, kind=MovementKind.ADJUSTMENT,
            quantity=10, reason="Opening count", actor_id=manager.id,
        )

        outbound, inbound = ledger.transfer_stock(
            product_id=product.id, from_branch_id=branch.id, to_branch_id=other_branch.id,
            quantity=4, actor_id=manager.id,
        )

        assert outbound.quantity == -4 and outbound.branch_id == branch.id
        assert inbound.quantity == 4 and inbound.branch_id == other_branch.id
        assert ledger.current_quantity(product.id, branch.id) == 6
        assert ledger.current_quantity(product.id, other_branch.id) == 4

    def test_transfer_beyond_on_hand_writes_nothing(self, db_session, manager, product, branch, other_branch):
        ledger.record_movement(
            product_id=product.id, branch_id=branch.id, kind=MovementKind.ADJUSTMENT,
            quantity=3, reason="Opening count", actor_id=manager.id,
        )
        before = movement_count(db_session)

        with pytest.raises(RangeError):
            ledger.transfer_stock(
                product_id=product.id, from_branch_id=branch.id, to_branch_id=other_branch.id,
                quantity=5, actor_id=manager.id,
            )

        assert movement_count(db_session) == before
        assert ledger.current_quantity(product.id, branch.id) == 3
        assert ledger.current_quantity(product.id, other_branch.id) == 0
        assert db_session.query(Stock).filter_by(branch_id=other_branch.id).count() == 0

    def test_transfer_to_same_branch_refused(self, db_session, manager, product, branch):
        with pytest.raises(ValidationError):
            ledger.transfer_stock(
                product_id=product.id, from_branch_id=branch.id, to_branch_id=branch.id,
                quantity=1, actor_id=manager.id,
            )
