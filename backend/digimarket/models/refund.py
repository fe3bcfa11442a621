from datetime import datetime

from digimarket.extensions import db
from digimarket.utils.enums import RefundStatus


class RefundRequest(db.Model):
    __tablename__ = "refund_requests"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)

    refund_type = db.Column(db.String(24), nullable=False)
    original_amount = db.Column(db.Float, nullable=False, default=0.0)
    refund_amount = db.Column(db.Float, nullable=False, default=0.0)
    seller_debit = db.Column(db.Float, nullable=False, default=0.0)

    # Proration inputs, summed over the refunded items
    total_days = db.Column(db.Integer, nullable=False, default=0)
    used_days = db.Column(db.Integer, nullable=False, default=0)
    remaining_days = db.Column(db.Integer, nullable=False, default=0)

    reason = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(16), nullable=False, default=RefundStatus.PENDING.value)

    processed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    order = db.relationship("Order", lazy=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "refund_type": self.refund_type,
            "original_amount": round(float(self.original_amount or 0.0), 2),
            "refund_amount": round(float(self.refund_amount or 0.0), 2),
            "seller_debit": round(float(self.seller_debit or 0.0), 2),
            "total_days": int(self.total_days or 0),
            "used_days": int(self.used_days or 0),
            "remaining_days": int(self.remaining_days or 0),
            "reason": self.reason or "",
            "status": self.status,
            "processed_at": self.processed_at.isoformat() if self.processed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
