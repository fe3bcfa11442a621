from __future__ import annotations

import json
from datetime import datetime

from flask import Blueprint, current_app, jsonify, request
from sqlalchemy.exc import IntegrityError

from digimarket.extensions import db
from digimarket.models import Payment, WebhookEvent
from digimarket.payments.qr_adapter import verify_qr_signature
from digimarket.payments.stripe_adapter import verify_stripe_signature
from digimarket.utils.checkout import fail_pending_payment, settle_by_reference
from digimarket.utils.errors import MarketError

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")


def _seen(provider: str, event_id: str) -> bool:
    return WebhookEvent.query.filter_by(provider=provider, event_id=event_id).first() is not None


def _remember(provider: str, event_id: str, event_type: str, reference: str | None) -> None:
    db.session.add(
        WebhookEvent(
            provider=provider,
            event_id=event_id[:128],
            event_type=event_type[:64] or None,
            reference=(reference or "")[:128] or None,
        )
    )
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()


def _cancel_reference(reference: str) -> int:
    now = datetime.utcnow()
    failed = 0
    for payment in Payment.query.filter_by(provider_reference=reference).all():
        if fail_pending_payment(payment, now):
            failed += 1
    db.session.commit()
    return failed


def _parse(raw: bytes) -> dict:
    try:
        payload = json.loads(raw or b"{}")
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


@webhooks_bp.post("/stripe")
def stripe_webhook():
    secret = (current_app.config.get("STRIPE_WEBHOOK_SECRET") or "").strip()
    if not secret:
        return jsonify({"ok": False, "message": "Card webhooks are not configured"}), 503

    raw = request.get_data() or b""
    if not verify_stripe_signature(raw, request.headers.get("Stripe-Signature"), secret):
        current_app.logger.warning("stripe webhook rejected: bad signature")
        return jsonify({"ok": False, "message": "Invalid signature"}), 400

    event = _parse(raw)
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    session = ((event.get("data") or {}).get("object") or {}) if isinstance(event.get("data"), dict) else {}
    session_id = str(session.get("id") or "")
    if not event_id or not session_id:
        return jsonify({"ok": True, "ignored": True}), 200
    if _seen("stripe", event_id):
        return jsonify({"ok": True, "duplicate": True}), 200

    if event_type == "checkout.session.completed":
        external_id = str(session.get("payment_intent") or session_id)
        try:
            results = settle_by_reference(session_id, external_id)
        except MarketError as e:
            current_app.logger.error("stripe session %s not fulfilled: %s", session_id, e.message)
            return jsonify({"ok": False, "message": e.message}), 500
        _remember("stripe", event_id, event_type, session_id)
        return jsonify({"ok": True, "orders": [r.order_id for r in results]}), 200

    if event_type == "checkout.session.expired":
        failed = _cancel_reference(session_id)
        _remember("stripe", event_id, event_type, session_id)
        current_app.logger.warning("stripe session %s expired (%s payments failed)", session_id, failed)
        return jsonify({"ok": True, "failed": failed}), 200

    _remember("stripe", event_id, event_type, session_id)
    return jsonify({"ok": True, "ignored": True}), 200


@webhooks_bp.post("/qr")
def qr_webhook():
    secret = (current_app.config.get("QR_WEBHOOK_SECRET") or "").strip()
    if not secret:
        return jsonify({"ok": False, "message": "QR webhooks are not configured"}), 503

    raw = request.get_data() or b""
    if not verify_qr_signature(raw, request.headers.get("X-Signature"), secret):
        current_app.logger.warning("qr webhook rejected: bad signature")
        return jsonify({"ok": False, "message": "Invalid signature"}), 400

    payload = _parse(raw)
    event_id = str(payload.get("event_id") or "")
    reference = str(payload.get("reference") or "")
    status = str(payload.get("status") or "").upper()
    if not event_id or not reference:
        return jsonify({"ok": True, "ignored": True}), 200
    if _seen("qr", event_id):
        return jsonify({"ok": True, "duplicate": True}), 200

    if status == "PAID":
        external_id = str(payload.get("transaction_id") or reference)
        try:
            results = settle_by_reference(reference, external_id)
        except MarketError as e:
            current_app.logger.error("qr reference %s not fulfilled: %s", reference, e.message)
            return jsonify({"ok": False, "message": e.message}), 500
        _remember("qr", event_id, status, reference)
        return jsonify({"ok": True, "orders": [r.order_id for r in results]}), 200

    if status in ("FAILED", "EXPIRED"):
        failed = _cancel_reference(reference)
        _remember("qr", event_id, status, reference)
        return jsonify({"ok": True, "failed": failed}), 200

    _remember("qr", event_id, status, reference)
    return jsonify({"ok": True, "ignored": True}), 200
