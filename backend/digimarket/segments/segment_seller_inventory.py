from __future__ import annotations

from flask import Blueprint, jsonify, request

from digimarket.auth import require_seller
from digimarket.extensions import db
from digimarket.models import Product
from digimarket.utils.errors import ForbiddenError, NotFoundError
from digimarket.utils.inventory import inventory_summary, upload_accounts, upload_codes

seller_inventory_bp = Blueprint("seller_inventory_bp", __name__, url_prefix="/api/seller/products")


def _own_product(product_id: int) -> Product:
    seller = require_seller()
    product = db.session.get(Product, int(product_id))
    if product is None or product.is_deleted:
        raise NotFoundError("Product not found")
    if int(product.seller_id) != int(seller.id):
        raise ForbiddenError("Not your product")
    return product


@seller_inventory_bp.post("/<int:product_id>/codes")
def add_codes(product_id: int):
    product = _own_product(product_id)
    payload = request.get_json(silent=True) or {}
    res = upload_codes(product, payload.get("codes"))
    return jsonify({"ok": True, **res}), 201


@seller_inventory_bp.post("/<int:product_id>/accounts")
def add_accounts(product_id: int):
    product = _own_product(product_id)
    payload = request.get_json(silent=True) or {}
    accounts = payload.get("accounts") if "accounts" in payload else payload.get("account")
    res = upload_accounts(product, accounts)
    return jsonify({"ok": True, **res}), 201


@seller_inventory_bp.get("/<int:product_id>/inventory")
def summary(product_id: int):
    product = _own_product(product_id)
    return jsonify({"ok": True, "product_id": product.id, "inventory": inventory_summary(product)}), 200
