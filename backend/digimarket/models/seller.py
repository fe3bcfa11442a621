from datetime import datetime

from digimarket.extensions import db


class SellerProfile(db.Model):
    __tablename__ = "seller_profiles"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    store_name = db.Column(db.String(160), nullable=False, default="")
    status = db.Column(db.String(24), nullable=False, default="ACTIVE")  # ACTIVE | SUSPENDED

    # Percent of the order subtotal retained by the platform
    commission_rate = db.Column(db.Float, nullable=False, default=10.0)

    # Earnings move with fulfillment, refunds and review rejection; withdrawals move available and withdrawn
    total_earnings = db.Column(db.Float, nullable=False, default=0.0)
    available_balance = db.Column(db.Float, nullable=False, default=0.0)
    total_withdrawn = db.Column(db.Float, nullable=False, default=0.0)
    total_sales = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "user_id": int(self.user_id),
            "store_name": self.store_name or "",
            "status": self.status,
            "commission_rate": float(self.commission_rate or 0.0),
            "total_earnings": round(float(self.total_earnings or 0.0), 2),
            "available_balance": round(float(self.available_balance or 0.0), 2),
            "total_withdrawn": round(float(self.total_withdrawn or 0.0), 2),
            "total_sales": int(self.total_sales or 0),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
