from datetime import datetime, timedelta

import pytest

from digimarket.extensions import db
from digimarket.models import AuditLog, GiftCardCode, Order, Product, SellerProfile
from digimarket.utils.enums import InventoryStatus, OrderStatus, PaymentStatus
from digimarket.utils.errors import ConflictError, ValidationError
from digimarket.utils.fulfillment import fulfill_order
from digimarket.utils.review import apply_review_action, approve_order, reject_order, review_queue
from digimarket.utils.wallets import wallet_balance


@pytest.fixture
def held_order(buyer, gift_card, make_order):
    """Paid and allocated, waiting on an admin."""
    order = make_order(buyer, [(gift_card, 1)], requires_review=True)
    fulfill_order(order.id, buyer.id, "ext-held")
    return db.session.get(Order, order.id, populate_existing=True)


@pytest.fixture
def parked_order(buyer, gift_card, make_order):
    """Paid, flagged and still inside its delivery delay."""
    order = make_order(
        buyer, [(gift_card, 1)], requires_review=True, scheduled_at=datetime.utcnow() + timedelta(hours=1)
    )
    fulfill_order(order.id, buyer.id, "ext-parked")
    return db.session.get(Order, order.id, populate_existing=True)


def _codes(product, status):
    return GiftCardCode.query.filter_by(product_id=product.id, status=status.value).count()


class TestQueue:
    def test_lists_held_and_parked_orders(self, held_order, parked_order, buyer, gift_card, make_order):
        make_order(buyer, [(gift_card, 1)])
        ids = [o.id for o in review_queue()]
        assert sorted(ids) == sorted([held_order.id, parked_order.id])


class TestApprove:
    def test_releases_fulfilled_order(self, held_order, admin, seller, gift_card):
        order = approve_order(held_order.id, admin, reason="looks fine")

        assert order.status == OrderStatus.COMPLETED.value
        assert order.completed_at is not None
        assert order.reviewed_by == admin.id
        assert order.requires_manual_review is False
        assert _codes(gift_card, InventoryStatus.SOLD) == 1
        # Credit was applied at fulfillment, not again here
        s = db.session.get(SellerProfile, seller.id, populate_existing=True)
        assert s.available_balance == pytest.approx(22.5)
        [entry] = AuditLog.query.filter_by(action="order_approved").all()
        assert entry.meta_dict()["action"] == "released"

    def test_fulfills_parked_order(self, parked_order, admin, gift_card):
        assert parked_order.status == OrderStatus.PROCESSING.value
        order = approve_order(parked_order.id, admin)

        assert order.status == OrderStatus.COMPLETED.value
        assert order.fulfilled_at is not None
        assert order.delivery_scheduled_at is None
        assert _codes(gift_card, InventoryStatus.SOLD) == 1

    def test_cannot_review_twice(self, held_order, admin):
        approve_order(held_order.id, admin)
        with pytest.raises(ConflictError):
            approve_order(held_order.id, admin)
        with pytest.raises(ConflictError):
            reject_order(held_order.id, admin)


class TestReject:
    def test_undoes_fulfillment(self, held_order, admin, buyer, seller, gift_card):
        order = reject_order(held_order.id, admin, reason="stolen card")

        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == PaymentStatus.REFUNDED.value
        assert order.refunded_amount == 25.0
        assert wallet_balance(buyer.id) == 25.0

        s = db.session.get(SellerProfile, seller.id, populate_existing=True)
        assert s.available_balance == pytest.approx(0.0)
        assert s.total_sales == 0
        assert _codes(gift_card, InventoryStatus.SUSPENDED) == 1
        assert db.session.get(Product, gift_card.id, populate_existing=True).sold_count == 0

        [entry] = AuditLog.query.filter_by(action="order_rejected").all()
        meta = entry.meta_dict()
        assert meta["seller_debit"] == 22.5
        assert meta["units_suspended"] == 1
        assert entry.actor_user_id == admin.id

    def test_parked_order_refunds_without_seller_debit(self, parked_order, admin, buyer, seller, gift_card):
        reject_order(parked_order.id, admin)

        assert wallet_balance(buyer.id) == 25.0
        s = db.session.get(SellerProfile, seller.id, populate_existing=True)
        assert s.available_balance == 0.0
        assert _codes(gift_card, InventoryStatus.AVAILABLE) == 5

    def test_unpaid_order_is_just_cancelled(self, buyer, gift_card, make_order, admin):
        order = make_order(buyer, [(gift_card, 1)])
        order = reject_order(order.id, admin)

        assert order.status == OrderStatus.CANCELLED.value
        assert order.payment_status == PaymentStatus.FAILED.value
        assert wallet_balance(buyer.id) == 0.0


def test_unknown_action(held_order, admin):
    with pytest.raises(ValidationError):
        apply_review_action(held_order.id, admin, "escalate")
