"""Status and type codes shared by models, services and API payloads.

Columns persist the enum ``value``; business code compares enum members, never
raw strings. Request payloads that use different spellings go through an
explicit mapping (see ``PaymentMethod.from_wire``).
"""

from __future__ import annotations

from enum import Enum

from digimarket.utils.errors import ValidationError


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    UNDER_REVIEW = "UNDER_REVIEW"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED, OrderStatus.REFUNDED)


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


_METHOD_WIRE = {
    "stripe": "CARD",
    "qr": "QR",
    "crypto": "CRYPTO_TRANSFER",
    "wallet": "WALLET",
}


class PaymentMethod(str, Enum):
    CARD = "CARD"
    QR = "QR"
    CRYPTO_TRANSFER = "CRYPTO_TRANSFER"
    WALLET = "WALLET"

    @classmethod
    def from_wire(cls, raw) -> "PaymentMethod":
        key = (str(raw or "")).strip().lower()
        if key not in _METHOD_WIRE:
            raise ValidationError("Invalid payment method")
        return cls(_METHOD_WIRE[key])

    def to_wire(self) -> str:
        for wire, code in _METHOD_WIRE.items():
            if code == self.value:
                return wire
        raise KeyError(self.value)

    @property
    def needs_external_confirmation(self) -> bool:
        return self in (PaymentMethod.CARD, PaymentMethod.QR, PaymentMethod.CRYPTO_TRANSFER)


class ProductType(str, Enum):
    GIFT_CARD = "GIFT_CARD"
    TOP_UP = "TOP_UP"
    STREAMING = "STREAMING"
    OTHER = "OTHER"

    @property
    def uses_codes(self) -> bool:
        return self in (ProductType.GIFT_CARD, ProductType.TOP_UP)

    @property
    def is_time_boxed(self) -> bool:
        return self is ProductType.STREAMING


class DeliveryType(str, Enum):
    INSTANT = "INSTANT"
    MANUAL = "MANUAL"


class StreamingMode(str, Enum):
    COMPLETE_ACCOUNT = "COMPLETE_ACCOUNT"
    PROFILE = "PROFILE"


class InventoryStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    SOLD = "SOLD"
    SUSPENDED = "SUSPENDED"
    EXPIRED = "EXPIRED"


class WalletTxnType(str, Enum):
    DEPOSIT_CREDIT = "DEPOSIT_CREDIT"
    REFUND_CREDIT = "REFUND_CREDIT"
    PURCHASE_DEBIT = "PURCHASE_DEBIT"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"


class DepositStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


class RefundType(str, Enum):
    FULL = "FULL"
    PARTIAL_PRORATED = "PARTIAL_PRORATED"


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    REJECTED = "REJECTED"


class WithdrawalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"


class WithdrawalMethod(str, Enum):
    QR_BOLIVIA = "qr_bolivia"
    BANK_TRANSFER = "bank_transfer"
    BINANCE_PAY = "binance_pay"

    @property
    def required_fields(self) -> tuple:
        return _WITHDRAWAL_FIELDS[self]


_WITHDRAWAL_FIELDS = {
    WithdrawalMethod.QR_BOLIVIA: ("phone_number", "bank_name"),
    WithdrawalMethod.BANK_TRANSFER: ("bank_name", "account_number", "account_holder"),
    WithdrawalMethod.BINANCE_PAY: ("binance_id",),
}
