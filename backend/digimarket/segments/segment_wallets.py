from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from digimarket.auth import require_user
from digimarket.extensions import db
from digimarket.models import WalletTxn
from digimarket.payments.binance import client_from_config
from digimarket.utils.deposits import confirm_sandbox_deposit, create_deposit, deposit_status
from digimarket.utils.platform import load_platform_config
from digimarket.utils.wallets import get_or_create_wallet

wallets_bp = Blueprint("wallets_bp", __name__, url_prefix="/api/wallet")

MAX_PAGE_SIZE = 100


def _page_args():
    try:
        page = max(1, int(request.args.get("page", 1)))
        per_page = min(MAX_PAGE_SIZE, max(1, int(request.args.get("per_page", 20))))
    except (TypeError, ValueError):
        page, per_page = 1, 20
    return page, per_page


@wallets_bp.get("")
def my_wallet():
    u = require_user()
    w = get_or_create_wallet(int(u.id))
    db.session.commit()
    return jsonify({"ok": True, "wallet": w.to_dict()}), 200


@wallets_bp.get("/ledger")
def my_ledger():
    u = require_user()
    page, per_page = _page_args()
    q = WalletTxn.query.filter_by(user_id=int(u.id)).order_by(WalletTxn.created_at.desc(), WalletTxn.id.desc())
    total = q.count()
    rows = q.offset((page - 1) * per_page).limit(per_page).all()
    return jsonify({
        "ok": True,
        "items": [t.to_dict() for t in rows],
        "page": page,
        "per_page": per_page,
        "total": total,
    }), 200


@wallets_bp.post("/deposit")
def start_deposit():
    u = require_user()
    payload = request.get_json(silent=True) or {}
    dep = create_deposit(u, payload.get("amount"), config=load_platform_config())
    return jsonify({"ok": True, "deposit": dep.to_dict()}), 201


@wallets_bp.get("/deposit")
def poll_deposit():
    u = require_user()
    deposit_id = request.args.get("depositId") or request.args.get("deposit_id")
    res = deposit_status(
        u,
        deposit_id,
        config=load_platform_config(),
        client=client_from_config(current_app.config),
    )
    return jsonify({"ok": True, **res}), 200


@wallets_bp.put("/deposit")
def confirm_deposit():
    u = require_user()
    payload = request.get_json(silent=True) or {}
    res = confirm_sandbox_deposit(u, payload.get("depositId") or payload.get("deposit_id"))
    return jsonify({"ok": True, **res}), 200
