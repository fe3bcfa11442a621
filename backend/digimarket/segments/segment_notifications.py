from __future__ import annotations

from flask import Blueprint, jsonify

from digimarket.auth import require_user
from digimarket.extensions import db
from digimarket.models import Notification
from digimarket.models.notification import CHANNEL_IN_APP, STATUS_READ
from digimarket.utils.errors import NotFoundError

notifications_bp = Blueprint("notifications_bp", __name__, url_prefix="/api/notifications")


@notifications_bp.get("")
def list_notifications():
    user = require_user()
    rows = (
        Notification.query.filter_by(user_id=user.id, channel=CHANNEL_IN_APP)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .limit(80)
        .all()
    )
    unread = sum(1 for n in rows if n.status != STATUS_READ)
    return jsonify({"ok": True, "items": [n.to_dict() for n in rows], "unread": unread}), 200


@notifications_bp.post("/<int:notification_id>/read")
def mark_read(notification_id: int):
    user = require_user()
    n = Notification.query.filter_by(id=notification_id, user_id=user.id, channel=CHANNEL_IN_APP).first()
    if n is None:
        raise NotFoundError("Notification not found")
    n.status = STATUS_READ
    db.session.commit()
    return jsonify({"ok": True, "notification": n.to_dict()}), 200
