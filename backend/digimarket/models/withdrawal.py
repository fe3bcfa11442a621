import json
from datetime import datetime

from digimarket.extensions import db
from digimarket.utils.enums import WithdrawalStatus


class Withdrawal(db.Model):
    __tablename__ = "withdrawals"

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)

    amount = db.Column(db.Float, nullable=False, default=0.0)
    method = db.Column(db.String(24), nullable=False)
    account_info = db.Column(db.Text, nullable=False, default="{}")
    status = db.Column(db.String(16), nullable=False, default=WithdrawalStatus.PENDING.value, index=True)

    review_note = db.Column(db.String(500), nullable=True)
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    seller = db.relationship("SellerProfile", lazy=True)

    def to_dict(self, include_seller=False):
        try:
            info = json.loads(self.account_info or "{}")
        except ValueError:
            info = {}
        data = {
            "id": int(self.id),
            "seller_id": int(self.seller_id),
            "amount": round(float(self.amount or 0.0), 2),
            "method": self.method,
            "account_info": info,
            "status": self.status,
            "review_note": self.review_note or "",
            "reviewed_by": int(self.reviewed_by) if self.reviewed_by else None,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_seller and self.seller is not None:
            data["store_name"] = self.seller.store_name or ""
        return data
