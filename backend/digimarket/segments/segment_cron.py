from __future__ import annotations

import hmac

from flask import Blueprint, current_app, jsonify, request

from digimarket.jobs.delayed_delivery import process_delayed_deliveries
from digimarket.jobs.reconciliation import run_reconciliation
from digimarket.jwt_utils import get_bearer_token
from digimarket.payments.binance import client_from_config
from digimarket.utils.errors import AuthError
from digimarket.utils.platform import load_platform_config

cron_bp = Blueprint("cron_bp", __name__, url_prefix="/api/cron")

_LOCAL_ADDRS = ("127.0.0.1", "::1", "localhost")


def _require_cron_caller() -> None:
    secret = (current_app.config.get("CRON_SECRET") or "").strip()
    if secret:
        token = get_bearer_token(request.headers.get("Authorization", "")) or ""
        if not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
            raise AuthError("Invalid cron secret")
        return
    if (request.remote_addr or "") not in _LOCAL_ADDRS:
        raise AuthError("Cron endpoints are local-only without CRON_SECRET")


@cron_bp.route("/reconcile", methods=["GET", "POST"])
def reconcile():
    _require_cron_caller()
    summary = run_reconciliation(
        config=load_platform_config(),
        client=client_from_config(current_app.config),
    )
    return jsonify(summary), 200


@cron_bp.route("/process-delayed", methods=["GET", "POST"])
def process_delayed():
    _require_cron_caller()
    return jsonify(process_delayed_deliveries()), 200
