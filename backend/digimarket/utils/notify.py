from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional

from digimarket.extensions import db
from digimarket.models import Notification, User
from digimarket.models.notification import CHANNEL_EMAIL, CHANNEL_IN_APP, STATUS_FAILED, STATUS_SENT


def _queue(user_id: int, channel: str, title: str, message: str, meta: Dict[str, Any]) -> Notification:
    n = Notification(
        user_id=int(user_id),
        channel=channel,
        title=(title or "")[:160],
        message=message or "",
        meta=json.dumps(meta),
    )
    db.session.add(n)
    return n


def queue_in_app(user_id: int, title: str, message: str, meta: Optional[Dict[str, Any]] = None) -> Notification:
    return _queue(user_id, CHANNEL_IN_APP, title, message, dict(meta or {}))


def queue_email(user_id: int, subject: str, body: str, meta: Optional[Dict[str, Any]] = None) -> Notification | None:
    """Queue an email for the dispatcher job. Users without an address are skipped."""
    user = db.session.get(User, int(user_id))
    address = (user.email or "").strip() if user is not None else ""
    if not address:
        return None
    return _queue(user_id, CHANNEL_EMAIL, subject, body, {**(meta or {}), "to": address})


def mark_sent(n: Notification, provider_ref: str = "") -> None:
    n.status = STATUS_SENT
    n.provider_ref = (provider_ref or "")[:120] or None
    n.last_error = None
    n.sent_at = datetime.utcnow()


def mark_failed(n: Notification, error: str = "") -> None:
    n.status = STATUS_FAILED
    n.last_error = (error or "")[:240] or None
