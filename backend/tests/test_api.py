from datetime import datetime, timedelta

import pytest

from digimarket.extensions import db
from digimarket.jwt_utils import create_access_token, decode_token, get_bearer_token
from digimarket.models import IdempotencyKey, Order, User
from digimarket.utils.enums import OrderStatus, ProductType, StreamingMode
from digimarket.utils.fulfillment import fulfill_order


def _owner(seller):
    return db.session.get(User, seller.user_id)


def _cart(product, qty=1, method="wallet"):
    return {"paymentMethod": method, "items": [{"product_id": product.id, "quantity": qty}]}


class TestHealth:
    def test_ok(self, api):
        r = api("get", "/api/health")
        assert r.status_code == 200
        assert r.get_json()["db"] == "ok"


class TestTokens:
    def test_expired_token_is_rejected(self, api, buyer):
        stale = create_access_token(buyer.id, ttl_seconds=-60)
        assert decode_token(stale) is None
        r = api("get", "/api/wallet", headers={"Authorization": f"Bearer {stale}"})
        assert r.status_code == 401

    def test_wrong_token_type(self, buyer):
        assert decode_token(create_access_token(buyer.id), expected_type="refresh") is None

    @pytest.mark.parametrize("header", ["", "Bearer", "Basic abc", "Bearer   "])
    def test_bearer_parsing(self, header):
        assert get_bearer_token(header) is None

    def test_bearer_value(self):
        assert get_bearer_token("bearer tok-1") == "tok-1"


class TestCheckoutRoutes:
    def test_requires_login(self, api, gift_card):
        r = api("post", "/api/checkout", json=_cart(gift_card))
        assert r.status_code == 401
        assert r.get_json()["ok"] is False

    def test_wallet_checkout(self, api, buyer, gift_card, fund):
        fund(buyer, 60)
        r = api("post", "/api/checkout", user=buyer, json=_cart(gift_card, 2))

        assert r.status_code == 200
        body = r.get_json()
        assert body["ok"] is True
        assert body["type"] == "wallet_complete"
        assert body["total"] == 50.0

        r = api("get", f"/api/buyer/orders/{body['order_ids'][0]}", user=buyer)
        [item] = r.get_json()["order"]["items"]
        assert len(item["units"]) == 2
        assert all(u["kind"] == "code" for u in item["units"])

    def test_invalid_method(self, api, buyer, gift_card):
        r = api("post", "/api/checkout", user=buyer, json=_cart(gift_card, method="paypal"))
        assert r.status_code == 400

    def test_stock_error_reports_availability(self, api, buyer, gift_card, fund):
        fund(buyer, 500)
        r = api("post", "/api/checkout", user=buyer, json=_cart(gift_card, 9))
        assert r.status_code == 400
        assert r.get_json()["available"] == 5

    def test_idempotent_replay(self, api, buyer, gift_card, fund):
        fund(buyer, 100)
        headers = {"Idempotency-Key": "cart-1"}
        first = api("post", "/api/checkout", user=buyer, json=_cart(gift_card), headers=headers)
        second = api("post", "/api/checkout", user=buyer, json=_cart(gift_card), headers=headers)

        assert first.status_code == second.status_code == 200
        assert second.get_json() == first.get_json()
        assert Order.query.count() == 1

    def test_key_reuse_with_other_payload(self, api, buyer, gift_card, fund):
        fund(buyer, 100)
        headers = {"Idempotency-Key": "cart-2"}
        api("post", "/api/checkout", user=buyer, json=_cart(gift_card), headers=headers)
        r = api("post", "/api/checkout", user=buyer, json=_cart(gift_card, 2), headers=headers)
        assert r.status_code == 409

    def test_failed_checkout_frees_the_key(self, api, buyer, gift_card, fund):
        headers = {"Idempotency-Key": "cart-3"}
        r = api("post", "/api/checkout", user=buyer, json=_cart(gift_card), headers=headers)
        assert r.status_code == 400
        assert IdempotencyKey.query.count() == 0

        fund(buyer, 30)
        r = api("post", "/api/checkout", user=buyer, json=_cart(gift_card), headers=headers)
        assert r.status_code == 200

    def test_status_and_fees(self, api, buyer, gift_card, fund):
        fund(buyer, 30)
        body = api("post", "/api/checkout", user=buyer, json=_cart(gift_card)).get_json()

        r = api("post", "/api/checkout/status", user=buyer, json={"orderIds": body["order_ids"]})
        assert r.get_json()["status"] == "completed"

        r = api("get", "/api/checkout/fees")
        assert r.get_json() == {"ok": True, "service_fee_fixed": 0.0, "service_fee_percent": 0.0}


class TestBuyerOrders:
    def test_list_and_forbidden(self, api, buyer, make_user, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 1)])
        r = api("get", "/api/buyer/orders?status=pending", user=buyer)
        assert [o["id"] for o in r.get_json()["items"]] == [order.id]

        r = api("get", f"/api/buyer/orders/{order.id}", user=make_user("buyer"))
        assert r.status_code == 403
        assert api("get", "/api/buyer/orders/9999", user=buyer).status_code == 404

    def test_refund_route(self, api, buyer, streaming_product, make_order):
        then = datetime.utcnow() - timedelta(days=10)
        order = make_order(buyer, [(streaming_product, 1)], now=then)
        fulfill_order(order.id, buyer.id, "ext", now=then)

        r = api("post", f"/api/buyer/orders/{order.id}/refund", user=buyer, json={"reason": "no longer needed"})
        assert r.status_code == 201
        assert r.get_json()["refund"]["refund_amount"] == 20.0

        r = api("get", f"/api/buyer/orders/{order.id}/refund", user=buyer)
        assert r.get_json()["refund"]["order_id"] == order.id

        r = api("post", f"/api/buyer/orders/{order.id}/refund", user=buyer)
        assert r.status_code == 400


class TestWalletRoutes:
    def test_ledger_is_paginated(self, api, buyer, fund):
        for amount in (5, 6, 7):
            fund(buyer, amount)
        r = api("get", "/api/wallet/ledger?page=1&per_page=2", user=buyer)
        body = r.get_json()
        assert body["total"] == 3
        assert [t["amount"] for t in body["items"]] == [7.0, 6.0]

        body = api("get", "/api/wallet/ledger?page=2&per_page=2", user=buyer).get_json()
        assert [t["amount"] for t in body["items"]] == [5.0]


class TestSellerInventoryRoutes:
    def test_upload_and_summary(self, api, seller, make_product):
        product = make_product(seller)
        owner = _owner(seller)
        r = api("post", f"/api/seller/products/{product.id}/codes", user=owner, json={"codes": ["A1", "A2", "A1"]})
        assert r.status_code == 201
        assert r.get_json()["added"] == 2

        r = api("get", f"/api/seller/products/{product.id}/inventory", user=owner)
        assert r.get_json()["inventory"]["available"] == 2

    def test_profile_accounts(self, api, seller, make_product):
        product = make_product(
            seller, product_type=ProductType.STREAMING, streaming_mode=StreamingMode.PROFILE, profile_count=3
        )
        r = api(
            "post",
            f"/api/seller/products/{product.id}/accounts",
            user=_owner(seller),
            json={"account": {"email": "fam@example.com", "password": "pw"}},
        )
        assert r.status_code == 201
        assert r.get_json() == {"ok": True, "added": 1, "units": 3}

    def test_other_seller_is_refused(self, api, make_seller, make_product):
        product = make_product(make_seller())
        intruder = make_seller()
        r = api("post", f"/api/seller/products/{product.id}/codes", user=_owner(intruder), json={"codes": ["X"]})
        assert r.status_code == 403

    def test_buyers_are_refused(self, api, buyer, gift_card):
        r = api("get", f"/api/seller/products/{gift_card.id}/inventory", user=buyer)
        assert r.status_code == 403


class TestAdminRoutes:
    @pytest.fixture
    def held(self, buyer, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 1)], requires_review=True)
        fulfill_order(order.id, buyer.id, "ext")
        return order

    def test_review_queue_and_approve(self, api, admin, held):
        r = api("get", "/api/admin/review-queue", user=admin)
        assert r.get_json()["count"] == 1

        r = api("patch", f"/api/admin/review-queue/{held.id}", user=admin, json={"action": "approve"})
        assert r.status_code == 200
        assert r.get_json()["message"].endswith("approved")
        assert r.get_json()["order"]["status"] == OrderStatus.COMPLETED.value

    def test_reject(self, api, admin, held):
        r = api("patch", f"/api/admin/review-queue/{held.id}", user=admin, json={"action": "reject", "reason": "fraud"})
        assert r.get_json()["order"]["status"] == OrderStatus.CANCELLED.value

    def test_bad_action(self, api, admin, held):
        r = api("patch", f"/api/admin/review-queue/{held.id}", user=admin, json={"action": "maybe"})
        assert r.status_code == 400

    def test_buyers_cannot_review(self, api, buyer, held):
        assert api("get", "/api/admin/review-queue", user=buyer).status_code == 403

    def test_settings_round_trip(self, api, admin):
        r = api("put", "/api/admin/settings", user=admin, json={"service_fee_fixed": 0.5, "velocity_limit": 5})
        assert r.status_code == 200
        settings = api("get", "/api/admin/settings", user=admin).get_json()["settings"]
        assert settings["service_fee_fixed"] == 0.5
        assert settings["velocity_limit"] == 5

    def test_settings_validation(self, api, admin):
        r = api("put", "/api/admin/settings", user=admin, json={"service_fee_percent": 150})
        assert r.status_code == 400

    def test_audit_log_listing(self, api, admin, held):
        api("patch", f"/api/admin/review-queue/{held.id}", user=admin, json={"action": "reject", "reason": "fraud"})
        r = api("get", "/api/admin/audit-logs?action=order_rejected", user=admin)
        [row] = r.get_json()["items"]
        assert row["target"] == f"order:{held.id}"
        assert row["actor_user_id"] == admin.id
        assert row["meta"]["reason"] == "fraud"

    def test_wallet_audit(self, api, admin, buyer, fund):
        fund(buyer, 10)
        body = api("post", "/api/admin/wallets/audit", user=admin).get_json()
        assert body["checked"] == 1
        assert body["anomalies"] == 0


class TestCronRoutes:
    def test_local_caller_without_secret(self, api):
        r = api("post", "/api/cron/reconcile")
        assert r.status_code == 200
        assert r.get_json()["ok"] is True

    def test_remote_caller_without_secret(self, api):
        r = api("get", "/api/cron/process-delayed", environ_base={"REMOTE_ADDR": "203.0.113.9"})
        assert r.status_code == 401

    def test_secret(self, api, app, monkeypatch):
        monkeypatch.setitem(app.config, "CRON_SECRET", "cron-s3cret")
        remote = {"REMOTE_ADDR": "203.0.113.9"}
        assert api("post", "/api/cron/process-delayed", environ_base=remote).status_code == 401
        r = api(
            "post",
            "/api/cron/process-delayed",
            environ_base=remote,
            headers={"Authorization": "Bearer cron-s3cret"},
        )
        assert r.status_code == 200
        assert r.get_json()["processed"] == 0


class TestNotificationRoutes:
    def test_inbox_and_mark_read(self, api, buyer, make_user, gift_card, fund):
        fund(buyer, 30)
        api("post", "/api/checkout", user=buyer, json=_cart(gift_card))

        body = api("get", "/api/notifications", user=buyer).get_json()
        assert [n["title"] for n in body["items"]] == ["Order delivered"]
        assert body["unread"] == 1
        assert all(n["channel"] == "in_app" for n in body["items"])
        note_id = body["items"][0]["id"]

        assert api("post", f"/api/notifications/{note_id}/read", user=make_user("buyer")).status_code == 404
        r = api("post", f"/api/notifications/{note_id}/read", user=buyer)
        assert r.get_json()["notification"]["status"] == "read"
        assert api("get", "/api/notifications", user=buyer).get_json()["unread"] == 0
