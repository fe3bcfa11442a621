from datetime import datetime

from digimarket.extensions import db


class IdempotencyKey(db.Model):
    """Stored reply for a client-supplied request key, scoped ``<user_id>:<key>``.

    A row without ``completed_at`` marks a request that is still running.
    """

    __tablename__ = "idempotency_keys"

    id = db.Column(db.Integer, primary_key=True)

    key = db.Column(db.String(160), nullable=False, unique=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    route = db.Column(db.String(128), nullable=False)
    request_hash = db.Column(db.String(64), nullable=False)

    response_json = db.Column(db.Text, nullable=True)
    status_code = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)

    @property
    def in_progress(self) -> bool:
        return self.completed_at is None
