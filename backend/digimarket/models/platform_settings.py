from datetime import datetime

from digimarket.extensions import db


class PlatformSettings(db.Model):
    """Single admin-editable row. Read through ``utils.platform.load_platform_config``."""

    __tablename__ = "platform_settings"

    id = db.Column(db.Integer, primary_key=True)

    service_fee_fixed = db.Column(db.Float, nullable=False, default=0.0)
    service_fee_percent = db.Column(db.Float, nullable=False, default=0.0)
    default_commission_rate = db.Column(db.Float, nullable=False, default=10.0)

    high_value_threshold = db.Column(db.Float, nullable=False, default=100.0)
    manual_review_threshold = db.Column(db.Float, nullable=False, default=500.0)
    delivery_delay_minutes = db.Column(db.Integer, nullable=False, default=0)
    velocity_window_minutes = db.Column(db.Integer, nullable=False, default=60)
    velocity_limit = db.Column(db.Integer, nullable=False, default=3)

    deposit_expiry_minutes = db.Column(db.Integer, nullable=False, default=60)
    crypto_payment_expiry_minutes = db.Column(db.Integer, nullable=False, default=60)
    amount_tolerance = db.Column(db.Float, nullable=False, default=0.01)
    lookback_minutes = db.Column(db.Integer, nullable=False, default=180)

    refund_window_days = db.Column(db.Integer, nullable=False, default=30)

    updated_by = db.Column(db.Integer, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "service_fee_fixed": float(self.service_fee_fixed or 0.0),
            "service_fee_percent": float(self.service_fee_percent or 0.0),
            "default_commission_rate": float(self.default_commission_rate or 0.0),
            "high_value_threshold": float(self.high_value_threshold or 0.0),
            "manual_review_threshold": float(self.manual_review_threshold or 0.0),
            "delivery_delay_minutes": int(self.delivery_delay_minutes or 0),
            "velocity_window_minutes": int(self.velocity_window_minutes or 0),
            "velocity_limit": int(self.velocity_limit or 0),
            "deposit_expiry_minutes": int(self.deposit_expiry_minutes or 0),
            "crypto_payment_expiry_minutes": int(self.crypto_payment_expiry_minutes or 0),
            "amount_tolerance": float(self.amount_tolerance or 0.0),
            "lookback_minutes": int(self.lookback_minutes or 0),
            "refund_window_days": int(self.refund_window_days or 0),
            "updated_by": self.updated_by,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
