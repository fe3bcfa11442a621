import json
from datetime import datetime

from digimarket.extensions import db
from digimarket.utils.enums import PaymentStatus


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)

    payment_method = db.Column(db.String(24), nullable=False)
    amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="USD")
    status = db.Column(db.String(16), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    external_payment_id = db.Column(db.String(128), nullable=True, index=True)
    # QR reference or crypto memo token, shared by every order of one checkout
    provider_reference = db.Column(db.String(64), nullable=True, index=True)

    details_json = db.Column(db.Text, nullable=True)

    expires_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def details(self):
        from digimarket.payments.details import parse_details

        raw = (self.details_json or "").strip()
        if not raw:
            return None
        return parse_details(json.loads(raw))

    @details.setter
    def details(self, value) -> None:
        self.details_json = json.dumps(value.to_dict()) if value is not None else None

    def to_dict(self):
        details = self.details
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "payment_method": self.payment_method,
            "amount": float(self.amount or 0.0),
            "currency": self.currency or "USD",
            "status": self.status,
            "external_payment_id": self.external_payment_id or "",
            "details": details.to_dict() if details is not None else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
