from datetime import datetime

from digimarket.extensions import db


class ChatConversation(db.Model):
    __tablename__ = "chat_conversations"

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("seller_profiles.id"), nullable=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    last_message_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (db.UniqueConstraint("buyer_id", "seller_id", name="uq_chat_conversations_pair"),)

    messages = db.relationship("ChatMessage", backref="conversation", lazy=True, order_by="ChatMessage.id")

    def to_dict(self):
        return {
            "id": int(self.id),
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
        }


class ChatMessage(db.Model):
    __tablename__ = "chat_messages"

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("chat_conversations.id"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    content = db.Column(db.Text, nullable=False)
    is_system = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "conversation_id": int(self.conversation_id),
            "sender_id": int(self.sender_id),
            "content": self.content,
            "is_system": bool(self.is_system),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
