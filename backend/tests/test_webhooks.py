import hashlib
import hmac
import json
import time

import pytest

from digimarket.extensions import db
from digimarket.models import Order, WebhookEvent
from digimarket.payments.qr_adapter import QrAdapter, verify_qr_signature
from digimarket.payments.stripe_adapter import verify_stripe_signature
from digimarket.utils.checkout import CartLine, checkout
from digimarket.utils.enums import OrderStatus, PaymentMethod

STRIPE_SECRET = "whsec_test_secret"
QR_SECRET = "qr-test-secret"


def _stripe_header(body: bytes, secret: str = STRIPE_SECRET, ts: int | None = None) -> str:
    ts = int(time.time()) if ts is None else ts
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def _qr_signature(body: bytes, secret: str = QR_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _statuses():
    return {o.status for o in Order.query.populate_existing().all()}


class TestSignatures:
    def test_stripe_accepts_valid_header(self):
        body = b'{"id": "evt_1"}'
        assert verify_stripe_signature(body, _stripe_header(body), STRIPE_SECRET)

    def test_stripe_rejects_tampered_body(self):
        header = _stripe_header(b'{"id": "evt_1"}')
        assert not verify_stripe_signature(b'{"id": "evt_2"}', header, STRIPE_SECRET)

    def test_stripe_rejects_stale_timestamp(self):
        body = b"{}"
        header = _stripe_header(body, ts=1_000_000)
        assert not verify_stripe_signature(body, header, STRIPE_SECRET, now=1_000_000 + 301)
        assert verify_stripe_signature(body, header, STRIPE_SECRET, now=1_000_000 + 299)

    @pytest.mark.parametrize("header", [None, "", "t=abc,v1=00", "v1=00", "t=123"])
    def test_stripe_rejects_malformed_headers(self, header):
        assert not verify_stripe_signature(b"{}", header, STRIPE_SECRET)

    def test_qr(self):
        body = b'{"reference": "QR-1"}'
        assert verify_qr_signature(body, _qr_signature(body), QR_SECRET)
        assert not verify_qr_signature(body, _qr_signature(body, "other"), QR_SECRET)
        assert not verify_qr_signature(body, None, QR_SECRET)


@pytest.fixture
def qr_checkout(buyer, gift_card, config):
    return checkout(
        buyer=buyer,
        lines=[CartLine(gift_card.id, 1)],
        method=PaymentMethod.QR,
        adapter=QrAdapter(),
        config=config,
    )


@pytest.fixture
def qr_secret(app, monkeypatch):
    monkeypatch.setitem(app.config, "QR_WEBHOOK_SECRET", QR_SECRET)


@pytest.fixture
def stripe_secret(app, monkeypatch):
    monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", STRIPE_SECRET)


def _post_qr(api, payload, signature=None):
    body = json.dumps(payload).encode()
    return api(
        "post",
        "/api/webhooks/qr",
        data=body,
        content_type="application/json",
        headers={"X-Signature": signature or _qr_signature(body)},
    )


class TestQrWebhook:
    def test_local_payload_is_pending(self, qr_checkout):
        assert qr_checkout["type"] == "qr"
        assert qr_checkout["reference"].startswith("QR-")
        assert qr_checkout["qr_content"].startswith(f"DIGIMARKET|{qr_checkout['reference']}|25.00|USD|")
        assert _statuses() == {OrderStatus.PENDING.value}

    def test_paid_event_fulfills(self, api, qr_checkout, qr_secret):
        r = _post_qr(api, {"event_id": "e1", "reference": qr_checkout["reference"], "status": "PAID", "transaction_id": "bank-77"})

        assert r.status_code == 200
        assert r.get_json()["orders"] == qr_checkout["order_ids"]
        assert _statuses() == {OrderStatus.COMPLETED.value}
        order = Order.query.first()
        assert order.payment.external_payment_id == "bank-77"

    def test_replay_is_acknowledged_once(self, api, qr_checkout, qr_secret):
        payload = {"event_id": "e1", "reference": qr_checkout["reference"], "status": "PAID"}
        _post_qr(api, payload)
        r = _post_qr(api, payload)

        assert r.get_json() == {"ok": True, "duplicate": True}
        assert WebhookEvent.query.count() == 1

    def test_failed_event_cancels(self, api, qr_checkout, qr_secret):
        r = _post_qr(api, {"event_id": "e2", "reference": qr_checkout["reference"], "status": "EXPIRED"})
        assert r.get_json()["failed"] == 1
        assert _statuses() == {OrderStatus.CANCELLED.value}

    def test_bad_signature(self, api, qr_checkout, qr_secret):
        r = _post_qr(api, {"event_id": "e3", "reference": qr_checkout["reference"], "status": "PAID"}, signature="00")
        assert r.status_code == 400
        assert _statuses() == {OrderStatus.PENDING.value}

    def test_unconfigured(self, api, qr_checkout):
        r = _post_qr(api, {"event_id": "e4", "reference": qr_checkout["reference"], "status": "PAID"})
        assert r.status_code == 503


class TestStripeWebhook:
    @pytest.fixture
    def card_order(self, buyer, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 1)], method=PaymentMethod.CARD)
        order.payment.provider_reference = "cs_test_123"
        db.session.commit()
        return order

    def _post(self, api, event):
        body = json.dumps(event).encode()
        return api(
            "post",
            "/api/webhooks/stripe",
            data=body,
            content_type="application/json",
            headers={"Stripe-Signature": _stripe_header(body)},
        )

    def test_completed_session(self, api, card_order, stripe_secret):
        event = {
            "id": "evt_1",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_test_123", "payment_intent": "pi_42"}},
        }
        r = self._post(api, event)

        assert r.status_code == 200
        assert r.get_json()["orders"] == [card_order.id]
        order = db.session.get(Order, card_order.id, populate_existing=True)
        assert order.status == OrderStatus.COMPLETED.value
        assert order.payment.external_payment_id == "pi_42"

        again = self._post(api, event)
        assert again.get_json()["duplicate"] is True

    def test_expired_session(self, api, card_order, stripe_secret):
        event = {"id": "evt_2", "type": "checkout.session.expired", "data": {"object": {"id": "cs_test_123"}}}
        r = self._post(api, event)
        assert r.get_json()["failed"] == 1
        assert _statuses() == {OrderStatus.CANCELLED.value}

    def test_unsigned(self, api, card_order, stripe_secret):
        r = api("post", "/api/webhooks/stripe", data=b"{}", content_type="application/json")
        assert r.status_code == 400
