from __future__ import annotations

from flask import Blueprint, jsonify, request

from digimarket.auth import require_user
from digimarket.payments.registry import get_adapter
from digimarket.utils.checkout import checkout, checkout_status, confirm_qr_orders, fee_preview, parse_cart
from digimarket.utils.enums import PaymentMethod
from digimarket.utils.errors import MarketError
from digimarket.utils.idempotency import lookup_response, release_key, store_response
from digimarket.utils.platform import load_platform_config

checkout_bp = Blueprint("checkout_bp", __name__, url_prefix="/api/checkout")


@checkout_bp.post("")
def create_checkout():
    buyer = require_user()
    payload = request.get_json(silent=True) or {}

    state, stored, code = lookup_response(buyer.id, "checkout", payload)
    if state in ("hit", "conflict"):
        return jsonify(stored), code

    try:
        method = PaymentMethod.from_wire(payload.get("paymentMethod") or payload.get("payment_method"))
        lines = parse_cart(payload.get("items"))
        body = checkout(
            buyer=buyer,
            lines=lines,
            method=method,
            adapter=get_adapter(method),
            config=load_platform_config(),
        )
    except MarketError:
        if state == "miss":
            release_key(stored)
        raise

    body = {"ok": True, **body}
    if state == "miss":
        store_response(stored, body, 200)
    return jsonify(body), 200


@checkout_bp.get("/fees")
def fees():
    return jsonify({"ok": True, **fee_preview(load_platform_config())}), 200


@checkout_bp.post("/status")
def status():
    buyer = require_user()
    payload = request.get_json(silent=True) or {}
    res = checkout_status(payload.get("order_ids") or payload.get("orderIds"), buyer)
    return jsonify({"ok": True, **res}), 200


@checkout_bp.post("/confirm")
def confirm():
    buyer = require_user()
    payload = request.get_json(silent=True) or {}
    return jsonify(confirm_qr_orders(payload.get("order_ids") or payload.get("orderIds"), buyer)), 200
