from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any

from flask import request
from sqlalchemy.exc import IntegrityError

from digimarket.extensions import db
from digimarket.models import IdempotencyKey


def _hash_request(payload: Any) -> str:
    raw = json.dumps(payload, sort_keys=True, default=str).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()


def get_idempotency_key() -> str | None:
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key")
    if not k or not k.strip():
        return None
    return k.strip()[:128]


def lookup_response(user_id: int | None, route: str, payload: Any):
    """Returns ``(state, body_or_row, status)``; state is hit, miss, conflict or None without a key.

    Keys are scoped per user so two buyers cannot read each other's replies.
    """
    k = get_idempotency_key()
    if not k:
        return (None, None, 0)
    scoped = f"{int(user_id) if user_id is not None else 0}:{k}"

    rh = _hash_request(payload)
    row = IdempotencyKey.query.filter_by(key=scoped).first()
    if row is None:
        row = IdempotencyKey(key=scoped, user_id=user_id, route=route, request_hash=rh)
        db.session.add(row)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            row = IdempotencyKey.query.filter_by(key=scoped).first()
        else:
            return ("miss", row, 0)

    if row.request_hash and row.request_hash != rh:
        return ("conflict", {"ok": False, "message": "Idempotency key reuse with different payload"}, 409)
    if row.in_progress:
        return ("conflict", {"ok": False, "message": "A request with this idempotency key is still in progress"}, 409)
    return ("hit", json.loads(row.response_json), int(row.status_code or 200))


def store_response(row: IdempotencyKey, response_json: Any, status_code: int) -> None:
    row.response_json = json.dumps(response_json, default=str)
    row.status_code = int(status_code)
    row.completed_at = datetime.utcnow()
    db.session.commit()


def release_key(row: IdempotencyKey) -> None:
    """Drop a key whose request failed so the client may retry with it."""
    db.session.delete(row)
    db.session.commit()
