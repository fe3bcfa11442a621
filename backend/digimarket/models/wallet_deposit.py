from datetime import datetime

from digimarket.extensions import db
from digimarket.utils.enums import DepositStatus


class WalletDeposit(db.Model):
    __tablename__ = "wallet_deposits"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Float, nullable=False)
    memo_token = db.Column(db.String(32), nullable=False, unique=True, index=True)
    coin = db.Column(db.String(16), nullable=False, default="USDT")
    network = db.Column(db.String(16), nullable=False, default="TRC20")
    address = db.Column(db.String(128), nullable=True)
    sandbox = db.Column(db.Boolean, nullable=False, default=False)

    status = db.Column(db.String(16), nullable=False, default=DepositStatus.PENDING.value, index=True)
    tx_id = db.Column(db.String(128), nullable=True, unique=True)
    credited_amount = db.Column(db.Float, nullable=True)

    expires_at = db.Column(db.DateTime, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "deposit_id": self.id,
            "address": self.address or "",
            "coin": self.coin,
            "network": self.network,
            "memo_token": self.memo_token,
            "amount": round(float(self.amount or 0.0), 2),
            "status": self.status,
            "sandbox": bool(self.sandbox),
            "tx_id": self.tx_id or "",
            "credited_amount": round(float(self.credited_amount), 2) if self.credited_amount is not None else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
