from __future__ import annotations

from flask import Blueprint, jsonify, request

from digimarket.auth import require_seller
from digimarket.models import Withdrawal
from digimarket.utils.withdrawals import request_withdrawal

seller_withdrawals_bp = Blueprint("seller_withdrawals_bp", __name__, url_prefix="/api/seller/withdrawals")

MAX_PAGE_SIZE = 50


@seller_withdrawals_bp.post("")
def create_withdrawal():
    seller = require_seller()
    payload = request.get_json(silent=True) or {}
    w = request_withdrawal(seller, payload.get("amount"), payload.get("method"), payload.get("account_info"))
    return jsonify({
        "ok": True,
        "withdrawal": w.to_dict(),
        "available_balance": round(float(seller.available_balance or 0.0), 2),
    }), 201


@seller_withdrawals_bp.get("")
def list_withdrawals():
    seller = require_seller()
    try:
        page = max(1, int(request.args.get("page", 1)))
        per_page = min(MAX_PAGE_SIZE, max(1, int(request.args.get("per_page", 10))))
    except (TypeError, ValueError):
        page, per_page = 1, 10
    q = Withdrawal.query.filter_by(seller_id=seller.id).order_by(Withdrawal.created_at.desc(), Withdrawal.id.desc())
    total = q.count()
    rows = q.offset((page - 1) * per_page).limit(per_page).all()
    return jsonify({
        "ok": True,
        "items": [w.to_dict() for w in rows],
        "page": page,
        "per_page": per_page,
        "total": total,
    }), 200
