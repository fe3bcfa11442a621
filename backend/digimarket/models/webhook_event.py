from datetime import datetime

from digimarket.extensions import db


class WebhookEvent(db.Model):
    """Provider event already processed; a second delivery of the same id is acknowledged only."""

    __tablename__ = "webhook_events"

    id = db.Column(db.Integer, primary_key=True)
    provider = db.Column(db.String(32), nullable=False)
    event_id = db.Column(db.String(128), nullable=False)
    event_type = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),)
