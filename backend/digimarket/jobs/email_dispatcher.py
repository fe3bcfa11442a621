from __future__ import annotations

from datetime import datetime

from flask import current_app

from digimarket.extensions import db
from digimarket.models import Notification
from digimarket.models.notification import CHANNEL_EMAIL, STATUS_FAILED, STATUS_QUEUED
from digimarket.utils.mailer import send_email
from digimarket.utils.notify import mark_failed, mark_sent

MAX_ATTEMPTS = 5


def dispatch_emails(*, limit: int = 50) -> dict:
    """Deliver queued email notifications. Failures stay on the row, never raise."""
    rows = (
        Notification.query.filter(
            Notification.channel == CHANNEL_EMAIL,
            Notification.status.in_([STATUS_QUEUED, STATUS_FAILED]),
            Notification.attempts < MAX_ATTEMPTS,
        )
        .order_by(Notification.id.asc())
        .limit(int(limit))
        .all()
    )
    sent = 0
    failed = 0
    for n in rows:
        n.attempts = int(n.attempts or 0) + 1
        ok, ref = send_email(to=n.recipient, subject=n.title or "", text=n.message or "")
        if ok:
            mark_sent(n, ref)
            sent += 1
        else:
            mark_failed(n, ref)
            failed += 1
        db.session.commit()

    if failed:
        current_app.logger.warning("email dispatch sent=%s failed=%s", sent, failed)
    return {"ok": True, "sent": sent, "failed": failed, "ts": datetime.utcnow().isoformat()}
