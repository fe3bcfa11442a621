from datetime import datetime

from digimarket.extensions import db


class WalletTxn(db.Model):
    """Append-only ledger row. ``amount`` is signed: credits positive, debits negative."""

    __tablename__ = "wallet_txns"

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    txn_type = db.Column(db.String(24), nullable=False)
    amount = db.Column(db.Float, nullable=False)
    balance_before = db.Column(db.Float, nullable=False, default=0.0)
    balance_after = db.Column(db.Float, nullable=False, default=0.0)
    description = db.Column(db.String(240), nullable=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    refund_id = db.Column(db.Integer, db.ForeignKey("refund_requests.id"), nullable=True, index=True)
    deposit_id = db.Column(db.Integer, db.ForeignKey("wallet_deposits.id"), nullable=True, index=True)

    idempotency_key = db.Column(db.String(160), nullable=True, unique=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "user_id": self.user_id,
            "type": self.txn_type,
            "amount": round(float(self.amount or 0.0), 2),
            "balance_before": round(float(self.balance_before or 0.0), 2),
            "balance_after": round(float(self.balance_after or 0.0), 2),
            "description": self.description or "",
            "order_id": self.order_id,
            "refund_id": self.refund_id,
            "deposit_id": self.deposit_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
