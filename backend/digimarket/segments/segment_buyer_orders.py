from __future__ import annotations

from flask import Blueprint, jsonify, request

from digimarket.auth import require_user
from digimarket.extensions import db
from digimarket.models import Order, RefundRequest
from digimarket.utils.errors import ForbiddenError, NotFoundError
from digimarket.utils.inventory import delivered_units
from digimarket.utils.platform import load_platform_config
from digimarket.utils.refunds import request_refund

buyer_orders_bp = Blueprint("buyer_orders_bp", __name__, url_prefix="/api/buyer/orders")


def _own_order(order_id: int, user_id: int) -> Order:
    order = db.session.get(Order, int(order_id))
    if order is None:
        raise NotFoundError("Order not found")
    if int(order.buyer_id) != int(user_id):
        raise ForbiddenError("Not your order")
    return order


@buyer_orders_bp.get("")
def my_orders():
    u = require_user()
    q = Order.query.filter_by(buyer_id=int(u.id))
    status = (request.args.get("status") or "").strip().upper()
    if status:
        q = q.filter(Order.status == status)
    rows = q.order_by(Order.created_at.desc()).limit(200).all()
    return jsonify({"ok": True, "items": [o.to_dict(include_items=False) for o in rows]}), 200


@buyer_orders_bp.get("/<int:order_id>")
def order_detail(order_id: int):
    u = require_user()
    order = _own_order(order_id, u.id)
    data = order.to_dict()
    units = {i.id: delivered_units(i) for i in order.items if i.is_delivered}
    for item in data.get("items", []):
        item["units"] = units.get(item["id"], [])
    return jsonify({"ok": True, "order": data}), 200


@buyer_orders_bp.post("/<int:order_id>/refund")
def create_refund(order_id: int):
    u = require_user()
    payload = request.get_json(silent=True) or {}
    refund = request_refund(order_id, u.id, config=load_platform_config(), reason=payload.get("reason"))
    return jsonify({"ok": True, "message": "Refund processed", "refund": refund.to_dict()}), 201


@buyer_orders_bp.get("/<int:order_id>/refund")
def get_refund(order_id: int):
    u = require_user()
    _own_order(order_id, u.id)
    refund = RefundRequest.query.filter_by(order_id=int(order_id)).first()
    return jsonify({"ok": True, "refund": refund.to_dict() if refund else None}), 200
