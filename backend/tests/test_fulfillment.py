from datetime import datetime, timedelta

import pytest

from digimarket.extensions import db
from digimarket.models import ChatMessage, GiftCardCode, Notification, Order, SellerProfile
from digimarket.utils.enums import DeliveryType, InventoryStatus, OrderStatus, PaymentStatus
from digimarket.utils.errors import FulfillmentError
from digimarket.utils.fulfillment import fulfill_order


def _sold_codes(product):
    return GiftCardCode.query.filter_by(product_id=product.id, status=InventoryStatus.SOLD.value).count()


class TestFulfillOrder:
    def test_completes_and_credits_seller(self, buyer, seller, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 2)])
        res = fulfill_order(order.id, buyer.id, "ext-1")

        assert res.outcome == "completed"
        order = db.session.get(Order, order.id, populate_existing=True)
        assert order.status == OrderStatus.COMPLETED.value
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert order.fulfilled_at is not None
        assert order.completed_at is not None
        assert order.payment.status == PaymentStatus.COMPLETED.value
        assert order.payment.external_payment_id == "ext-1"
        assert all(i.is_delivered for i in order.items)
        assert _sold_codes(gift_card) == 2

        s = db.session.get(SellerProfile, seller.id, populate_existing=True)
        assert s.available_balance == pytest.approx(45.0)
        assert s.total_earnings == pytest.approx(45.0)
        assert s.total_sales == 1

    def test_second_call_is_a_noop(self, buyer, seller, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 1)])
        first = fulfill_order(order.id, buyer.id, "ext-1")
        second = fulfill_order(order.id, buyer.id, "ext-2")

        assert first.changed
        assert not second.changed
        assert second.status == OrderStatus.COMPLETED.value
        assert _sold_codes(gift_card) == 1
        s = db.session.get(SellerProfile, seller.id, populate_existing=True)
        assert s.available_balance == pytest.approx(22.5)
        assert s.total_sales == 1

    def test_other_buyer_is_refused(self, buyer, make_user, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 1)])
        stranger = make_user("buyer")
        with pytest.raises(FulfillmentError):
            fulfill_order(order.id, stranger.id, None)

    def test_shortfall_leaves_order_untouched(self, buyer, seller, make_product, add_codes, make_order):
        product = make_product(seller)
        add_codes(product, 1)
        order = make_order(buyer, [(product, 2)])

        with pytest.raises(FulfillmentError):
            fulfill_order(order.id, buyer.id, None)

        order = db.session.get(Order, order.id, populate_existing=True)
        assert order.status == OrderStatus.PENDING.value
        assert order.fulfilled_at is None
        assert _sold_codes(product) == 0
        s = db.session.get(SellerProfile, seller.id, populate_existing=True)
        assert s.available_balance == 0.0


class TestRiskHolds:
    def test_delayed_order_is_parked_then_released(self, buyer, gift_card, make_order):
        now = datetime.utcnow()
        order = make_order(buyer, [(gift_card, 1)], scheduled_at=now + timedelta(minutes=30))

        parked = fulfill_order(order.id, buyer.id, "ext-1", now=now)
        assert parked.outcome == "deferred"
        assert parked.status == OrderStatus.PROCESSING.value
        order = db.session.get(Order, order.id, populate_existing=True)
        assert order.payment_status == PaymentStatus.COMPLETED.value
        assert order.fulfilled_at is None
        assert _sold_codes(gift_card) == 0

        # Asking again before the delay elapses changes nothing
        assert fulfill_order(order.id, buyer.id, "ext-1", now=now + timedelta(minutes=5)).outcome == "noop"

        done = fulfill_order(order.id, buyer.id, "ext-1", now=now + timedelta(minutes=31))
        assert done.outcome == "completed"
        assert _sold_codes(gift_card) == 1

    def test_flagged_order_goes_under_review(self, buyer, seller, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 1)], requires_review=True)
        res = fulfill_order(order.id, buyer.id, "ext-1")

        assert res.outcome == "under_review"
        order = db.session.get(Order, order.id, populate_existing=True)
        assert order.status == OrderStatus.UNDER_REVIEW.value
        assert order.fulfilled_at is not None
        assert order.completed_at is None
        assert _sold_codes(gift_card) == 1
        s = db.session.get(SellerProfile, seller.id, populate_existing=True)
        assert s.available_balance == pytest.approx(22.5)


class TestManualDelivery:
    def test_posts_purchase_message(self, buyer, seller, make_product, make_order):
        product = make_product(seller, delivery_type=DeliveryType.MANUAL, name="Custom Top-Up")
        order = make_order(buyer, [(product, 1)])

        res = fulfill_order(order.id, buyer.id, None)
        assert res.outcome == "completed"

        [msg] = ChatMessage.query.all()
        assert msg.is_system
        assert msg.sender_id == buyer.id
        assert "Custom Top-Up" in msg.content
        assert order.order_number in msg.content

    def test_queues_notifications(self, buyer, seller, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 1)])
        fulfill_order(order.id, buyer.id, None)

        channels = {(n.user_id, n.channel) for n in Notification.query.all()}
        assert (buyer.id, "in_app") in channels
        assert (buyer.id, "email") in channels
        assert (seller.user_id, "in_app") in channels
