from datetime import datetime

from digimarket.extensions import db
from digimarket.utils.enums import InventoryStatus


class GiftCardCode(db.Model):
    """Single-use code for GIFT_CARD / TOP_UP products. Stored encrypted."""

    __tablename__ = "gift_card_codes"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    code_encrypted = db.Column(db.Text, nullable=False)
    # sha256 of the normalized plaintext, used for de-duplication
    code_hash = db.Column(db.String(64), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=InventoryStatus.AVAILABLE.value, index=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True, index=True)
    sold_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (db.UniqueConstraint("product_id", "code_hash", name="uq_gift_card_codes_product_hash"),)

    def to_dict(self):
        return {
            "id": int(self.id),
            "product_id": int(self.product_id),
            "status": self.status,
            "buyer_id": int(self.buyer_id) if self.buyer_id else None,
            "order_item_id": int(self.order_item_id) if self.order_item_id else None,
            "sold_at": self.sold_at.isoformat() if self.sold_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class StreamingAccount(db.Model):
    __tablename__ = "streaming_accounts"

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    # JSON {"email", "password", "notes"} encrypted as one blob
    credentials_encrypted = db.Column(db.Text, nullable=False)
    credential_hash = db.Column(db.String(64), nullable=False, index=True)

    max_profiles = db.Column(db.Integer, nullable=False, default=1)
    sold_profiles = db.Column(db.Integer, nullable=False, default=0)

    # Whole-account sales only; PROFILE products sell the slots below
    status = db.Column(db.String(16), nullable=False, default=InventoryStatus.AVAILABLE.value, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True, index=True)
    sold_at = db.Column(db.DateTime, nullable=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    profiles = db.relationship("StreamingProfile", backref="account", lazy=True, order_by="StreamingProfile.id")

    def to_dict(self):
        return {
            "id": int(self.id),
            "product_id": int(self.product_id),
            "status": self.status,
            "max_profiles": int(self.max_profiles or 1),
            "sold_profiles": int(self.sold_profiles or 0),
            "buyer_id": int(self.buyer_id) if self.buyer_id else None,
            "sold_at": self.sold_at.isoformat() if self.sold_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class StreamingProfile(db.Model):
    """One sellable slot of a shared account."""

    __tablename__ = "streaming_profiles"

    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.Integer, db.ForeignKey("streaming_accounts.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    profile_name = db.Column(db.String(80), nullable=False)
    pin = db.Column(db.String(16), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=InventoryStatus.AVAILABLE.value, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True, index=True)
    sold_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "account_id": int(self.account_id),
            "product_id": int(self.product_id),
            "profile_name": self.profile_name,
            "status": self.status,
            "buyer_id": int(self.buyer_id) if self.buyer_id else None,
            "sold_at": self.sold_at.isoformat() if self.sold_at else None,
        }
