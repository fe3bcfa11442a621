from datetime import datetime

from digimarket.extensions import db
from digimarket.utils.enums import DeliveryType, ProductType, StreamingMode


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)

    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Float, nullable=False, default=0.0)

    product_type = db.Column(db.String(24), nullable=False, default=ProductType.GIFT_CARD.value)
    delivery_type = db.Column(db.String(16), nullable=False, default=DeliveryType.INSTANT.value)

    # Streaming products only
    streaming_mode = db.Column(db.String(24), nullable=True)
    profile_count = db.Column(db.Integer, nullable=True)
    duration_days = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)
    sold_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    seller = db.relationship("SellerProfile", lazy="joined")

    @property
    def type(self) -> ProductType:
        return ProductType(self.product_type)

    @property
    def delivery(self) -> DeliveryType:
        return DeliveryType(self.delivery_type)

    @property
    def mode(self) -> StreamingMode:
        return StreamingMode(self.streaming_mode or StreamingMode.COMPLETE_ACCOUNT.value)

    def to_dict(self):
        return {
            "id": int(self.id),
            "seller_id": int(self.seller_id),
            "name": self.name,
            "description": self.description or "",
            "price": float(self.price or 0.0),
            "product_type": self.product_type,
            "delivery_type": self.delivery_type,
            "streaming_mode": self.streaming_mode,
            "profile_count": self.profile_count,
            "duration_days": self.duration_days,
            "is_active": bool(self.is_active),
            "sold_count": int(self.sold_count or 0),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
