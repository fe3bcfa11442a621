import json
from datetime import datetime

from digimarket.extensions import db


class AuditLog(db.Model):
    """Append-only trail of admin decisions and ledger anomalies."""

    __tablename__ = "audit_logs"

    id = db.Column(db.Integer, primary_key=True)
    action = db.Column(db.String(64), nullable=False, index=True)
    actor_user_id = db.Column(db.Integer, nullable=True)  # None for scheduled jobs
    target_type = db.Column(db.String(64), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)
    meta = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def meta_dict(self) -> dict:
        try:
            data = json.loads(self.meta or "{}")
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def to_dict(self) -> dict:
        target = f"{self.target_type}:{self.target_id}" if self.target_type else None
        return {
            "id": self.id,
            "action": self.action,
            "actor_user_id": self.actor_user_id,
            "target": target,
            "meta": self.meta_dict(),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
