from datetime import datetime

from digimarket.extensions import db
from digimarket.utils.enums import OrderStatus, PaymentMethod, PaymentStatus


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)

    # Money breakdown, frozen at checkout
    subtotal = db.Column(db.Float, nullable=False, default=0.0)
    service_fee_fixed = db.Column(db.Float, nullable=False, default=0.0)
    service_fee_percent = db.Column(db.Float, nullable=False, default=0.0)
    service_fee_amount = db.Column(db.Float, nullable=False, default=0.0)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    commission_rate = db.Column(db.Float, nullable=False, default=0.0)
    commission_amount = db.Column(db.Float, nullable=False, default=0.0)
    seller_earnings = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="USD")

    payment_method = db.Column(db.String(24), nullable=False)
    payment_status = db.Column(db.String(16), nullable=False, default=PaymentStatus.PENDING.value, index=True)

    status = db.Column(db.String(16), nullable=False, default=OrderStatus.PENDING.value, index=True)
    # PENDING -> PROCESSING -> COMPLETED | UNDER_REVIEW
    # UNDER_REVIEW -> COMPLETED (approve) | CANCELLED (reject)
    # COMPLETED -> REFUNDED

    # Fraud flags
    is_high_value = db.Column(db.Boolean, nullable=False, default=False)
    requires_manual_review = db.Column(db.Boolean, nullable=False, default=False)
    risk_score = db.Column(db.Integer, nullable=False, default=0)
    delivery_scheduled_at = db.Column(db.DateTime, nullable=True, index=True)

    # Set exactly once, when inventory is allocated and the seller credited
    fulfilled_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)

    refunded_amount = db.Column(db.Float, nullable=False, default=0.0)

    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    review_note = db.Column(db.String(500), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    items = db.relationship("OrderItem", backref="order", lazy=True, cascade="all, delete-orphan", order_by="OrderItem.id")
    payment = db.relationship("Payment", backref="order", uselist=False, lazy=True, cascade="all, delete-orphan")
    seller = db.relationship("SellerProfile", lazy=True)

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def method(self) -> PaymentMethod:
        return PaymentMethod(self.payment_method)

    def to_dict(self, include_items: bool = True):
        data = {
            "id": int(self.id),
            "order_number": self.order_number,
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "subtotal": float(self.subtotal or 0.0),
            "service_fee_fixed": float(self.service_fee_fixed or 0.0),
            "service_fee_percent": float(self.service_fee_percent or 0.0),
            "service_fee_amount": float(self.service_fee_amount or 0.0),
            "total_amount": float(self.total_amount or 0.0),
            "commission_rate": float(self.commission_rate or 0.0),
            "commission_amount": float(self.commission_amount or 0.0),
            "seller_earnings": float(self.seller_earnings or 0.0),
            "currency": self.currency or "USD",
            "payment_method": PaymentMethod(self.payment_method).to_wire(),
            "payment_status": self.payment_status,
            "status": self.status,
            "is_high_value": bool(self.is_high_value),
            "requires_manual_review": bool(self.requires_manual_review),
            "risk_score": int(self.risk_score or 0),
            "delivery_scheduled_at": self.delivery_scheduled_at.isoformat() if self.delivery_scheduled_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "refunded_amount": float(self.refunded_amount or 0.0),
            "reviewed_by": int(self.reviewed_by) if self.reviewed_by else None,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_items:
            data["items"] = [i.to_dict() for i in (self.items or [])]
        return data


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # Snapshot of the catalog at purchase time
    product_name = db.Column(db.String(200), nullable=False)
    product_type = db.Column(db.String(24), nullable=False)
    delivery_type = db.Column(db.String(16), nullable=False)
    streaming_mode = db.Column(db.String(24), nullable=True)
    duration_days = db.Column(db.Integer, nullable=True)
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Float, nullable=False, default=0.0)
    total_price = db.Column(db.Float, nullable=False, default=0.0)

    is_delivered = db.Column(db.Boolean, nullable=False, default=False)
    delivered_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "product_id": int(self.product_id),
            "product_name": self.product_name,
            "product_type": self.product_type,
            "delivery_type": self.delivery_type,
            "duration_days": self.duration_days,
            "quantity": int(self.quantity or 0),
            "unit_price": float(self.unit_price or 0.0),
            "total_price": float(self.total_price or 0.0),
            "is_delivered": bool(self.is_delivered),
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
        }
