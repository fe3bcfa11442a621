from .user import User  # noqa: F401
from .seller import SellerProfile  # noqa: F401
from .product import Product  # noqa: F401
from .inventory import GiftCardCode, StreamingAccount, StreamingProfile  # noqa: F401
from .order import Order, OrderItem  # noqa: F401
from .payment import Payment  # noqa: F401

from .wallet import Wallet  # noqa: F401
from .wallet_txn import WalletTxn  # noqa: F401
from .wallet_deposit import WalletDeposit  # noqa: F401
from .refund import RefundRequest  # noqa: F401
from .withdrawal import Withdrawal  # noqa: F401

from .chat import ChatConversation, ChatMessage  # noqa: F401
from .notification import Notification  # noqa: F401
from .audit_log import AuditLog  # noqa: F401
from .platform_settings import PlatformSettings  # noqa: F401

from .idempotency_key import IdempotencyKey  # noqa: F401
from .webhook_event import WebhookEvent  # noqa: F401
