from datetime import datetime

from digimarket.extensions import db


class Wallet(db.Model):
    """Balance snapshot per user. The wallet_txns ledger is the source of truth."""

    __tablename__ = "wallets"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)
    balance = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="USD")
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    # bumped by every balance update
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "balance": round(self.balance or 0.0, 2),
            "currency": self.currency,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
