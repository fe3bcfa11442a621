from __future__ import annotations

from flask import Blueprint, jsonify, request

from digimarket.auth import require_admin
from digimarket.jobs.wallet_reconciler import audit_wallet_ledgers
from digimarket.models import AuditLog, RefundRequest, Withdrawal
from digimarket.utils.platform import load_platform_config, update_platform_settings
from digimarket.utils.review import apply_review_action, review_queue
from digimarket.utils.withdrawals import review_withdrawal, withdrawal_stats

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/admin")


@admin_bp.get("/review-queue")
def list_review_queue():
    require_admin()
    rows = review_queue()
    return jsonify({"ok": True, "items": [o.to_dict() for o in rows], "count": len(rows)}), 200


@admin_bp.patch("/review-queue/<int:order_id>")
def review_action(order_id: int):
    admin = require_admin()
    payload = request.get_json(silent=True) or {}
    action = str(payload.get("action") or "").strip().lower()
    order = apply_review_action(order_id, admin, action, payload.get("reason"))
    verb = "approved" if action == "approve" else "rejected"
    return jsonify({
        "ok": True,
        "message": f"Order {order.order_number} {verb}",
        "order": order.to_dict(include_items=False),
    }), 200


@admin_bp.get("/refunds")
def list_refunds():
    require_admin()
    q = RefundRequest.query
    status = (request.args.get("status") or "").strip().upper()
    if status:
        q = q.filter(RefundRequest.status == status)
    rows = q.order_by(RefundRequest.created_at.desc()).limit(200).all()
    return jsonify({"ok": True, "items": [r.to_dict() for r in rows]}), 200


@admin_bp.get("/settings")
def get_settings():
    require_admin()
    return jsonify({"ok": True, "settings": load_platform_config().to_dict()}), 200


@admin_bp.put("/settings")
def put_settings():
    admin = require_admin()
    payload = request.get_json(silent=True) or {}
    cfg = update_platform_settings(payload, actor_id=admin.id)
    return jsonify({"ok": True, "settings": cfg.to_dict()}), 200


@admin_bp.post("/wallets/audit")
def wallets_audit():
    require_admin()
    return jsonify(audit_wallet_ledgers()), 200


@admin_bp.get("/audit-logs")
def list_audit_logs():
    require_admin()
    q = AuditLog.query
    action = (request.args.get("action") or "").strip()
    if action:
        q = q.filter(AuditLog.action == action)
    rows = q.order_by(AuditLog.id.desc()).limit(200).all()
    return jsonify({"ok": True, "items": [a.to_dict() for a in rows]}), 200


@admin_bp.get("/withdrawals")
def list_withdrawals():
    require_admin()
    q = Withdrawal.query
    status = (request.args.get("status") or "").strip().upper()
    if status:
        q = q.filter(Withdrawal.status == status)
    rows = q.order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc()).limit(200).all()
    return jsonify({
        "ok": True,
        "items": [w.to_dict(include_seller=True) for w in rows],
        "stats": withdrawal_stats(),
    }), 200


@admin_bp.patch("/withdrawals/<int:withdrawal_id>")
def withdrawal_action(withdrawal_id: int):
    admin = require_admin()
    payload = request.get_json(silent=True) or {}
    w = review_withdrawal(withdrawal_id, admin, str(payload.get("action") or ""), payload.get("note"))
    return jsonify({"ok": True, "withdrawal": w.to_dict(include_seller=True)}), 200
