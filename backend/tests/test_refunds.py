from datetime import datetime, timedelta

import pytest

from digimarket.extensions import db
from digimarket.models import Order, RefundRequest, SellerProfile, WalletTxn
from digimarket.utils.enums import OrderStatus, RefundType, WalletTxnType
from digimarket.utils.errors import ForbiddenError, RefundIneligibleError
from digimarket.utils.fulfillment import fulfill_order
from digimarket.utils.refunds import calculate_proration, request_refund
from digimarket.utils.wallets import wallet_balance


class TestProration:
    START = datetime(2024, 3, 1, 12, 0, 0)

    def test_same_day_is_full(self):
        p = calculate_proration(30.0, 30, self.START, self.START + timedelta(hours=5))
        assert p.refund_amount == 30.0
        assert p.refund_type is RefundType.FULL
        assert p.remaining_days == 30

    def test_partial(self):
        p = calculate_proration(30.0, 30, self.START, self.START + timedelta(days=10, hours=3))
        assert p.refund_amount == 20.0
        assert p.used_days == 10
        assert p.remaining_days == 20
        assert p.refund_type is RefundType.PARTIAL_PRORATED

    def test_rounds_to_cents(self):
        p = calculate_proration(10.0, 30, self.START, self.START + timedelta(days=1))
        assert p.refund_amount == 9.67

    @pytest.mark.parametrize("days", [30, 45])
    def test_nothing_left(self, days):
        p = calculate_proration(30.0, 30, self.START, self.START + timedelta(days=days))
        assert p.refund_amount == 0.0
        assert p.remaining_days == 0
        assert p.used_days == 30


@pytest.fixture
def delivered_order(buyer, make_order):
    """A completed streaming order, delivered ``age`` ago."""

    def _make(product, age):
        then = datetime.utcnow() - age
        order = make_order(buyer, [(product, 1)], now=then)
        fulfill_order(order.id, buyer.id, "ext", now=then)
        return db.session.get(Order, order.id, populate_existing=True)

    return _make


class TestRequestRefund:
    def test_prorated_refund_moves_money(self, buyer, seller, streaming_product, delivered_order, config):
        order = delivered_order(streaming_product, timedelta(days=10))
        refund = request_refund(order.id, buyer.id, config=config, reason="stopped working")

        assert refund.refund_amount == 20.0
        assert refund.seller_debit == 18.0
        assert refund.used_days == 10
        assert refund.refund_type == RefundType.PARTIAL_PRORATED.value
        assert wallet_balance(buyer.id) == 20.0

        order = db.session.get(Order, order.id, populate_existing=True)
        assert order.status == OrderStatus.REFUNDED.value
        assert order.refunded_amount == 20.0
        s = db.session.get(SellerProfile, seller.id, populate_existing=True)
        assert s.available_balance == pytest.approx(27.0 - 18.0)

        [txn] = WalletTxn.query.filter_by(user_id=buyer.id).all()
        assert txn.txn_type == WalletTxnType.REFUND_CREDIT.value
        assert txn.refund_id == refund.id

    def test_same_day_refund_is_full(self, buyer, streaming_product, delivered_order, config):
        order = delivered_order(streaming_product, timedelta(hours=2))
        refund = request_refund(order.id, buyer.id, config=config)
        assert refund.refund_type == RefundType.FULL.value
        assert refund.refund_amount == 30.0

    def test_only_once(self, buyer, streaming_product, delivered_order, config):
        order = delivered_order(streaming_product, timedelta(days=3))
        request_refund(order.id, buyer.id, config=config)
        with pytest.raises(RefundIneligibleError):
            request_refund(order.id, buyer.id, config=config)
        assert RefundRequest.query.count() == 1
        assert WalletTxn.query.filter_by(user_id=buyer.id).count() == 1

    def test_gift_cards_are_not_refundable(self, buyer, gift_card, delivered_order, config):
        order = delivered_order(gift_card, timedelta(days=1))
        with pytest.raises(RefundIneligibleError):
            request_refund(order.id, buyer.id, config=config)

    def test_window_expired(self, buyer, streaming_product, delivered_order, config):
        order = delivered_order(streaming_product, timedelta(days=31))
        with pytest.raises(RefundIneligibleError):
            request_refund(order.id, buyer.id, config=config)

    def test_no_days_left(self, buyer, streaming_product, delivered_order, config):
        order = delivered_order(streaming_product, timedelta(days=30, hours=1))
        with pytest.raises(RefundIneligibleError):
            request_refund(order.id, buyer.id, config=config.with_overrides(refund_window_days=60))

    def test_not_your_order(self, buyer, make_user, streaming_product, delivered_order, config):
        order = delivered_order(streaming_product, timedelta(days=1))
        with pytest.raises(ForbiddenError):
            request_refund(order.id, make_user("buyer").id, config=config)

    def test_pending_order_is_refused(self, buyer, streaming_product, make_order, config):
        order = make_order(buyer, [(streaming_product, 1)])
        with pytest.raises(RefundIneligibleError):
            request_refund(order.id, buyer.id, config=config)
