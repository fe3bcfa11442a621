import json
from datetime import datetime

from digimarket.extensions import db

CHANNEL_IN_APP = "in_app"
CHANNEL_EMAIL = "email"

STATUS_QUEUED = "queued"
STATUS_SENT = "sent"
STATUS_FAILED = "failed"
STATUS_READ = "read"


class Notification(db.Model):
    """Buyer/seller message. Email rows carry their recipient in ``meta['to']``."""

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    channel = db.Column(db.String(32), nullable=False, default=CHANNEL_IN_APP)
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False)

    status = db.Column(db.String(24), nullable=False, default=STATUS_QUEUED, index=True)
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(240), nullable=True)
    provider_ref = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    sent_at = db.Column(db.DateTime, nullable=True)

    meta = db.Column(db.Text, nullable=True)

    @property
    def recipient(self) -> str:
        return str(self.meta_dict().get("to") or "")

    def meta_dict(self):
        try:
            d = json.loads(self.meta or "{}")
        except ValueError:
            return {}
        return d if isinstance(d, dict) else {}

    def to_dict(self):
        meta = self.meta_dict()
        meta.pop("to", None)
        return {
            "id": self.id,
            "channel": self.channel,
            "title": self.title or "",
            "message": self.message,
            "status": self.status,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "meta": meta,
        }
