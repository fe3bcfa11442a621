from __future__ import annotations

from datetime import datetime, timedelta
from typing import List

from digimarket.extensions import db
from digimarket.models import Order, Payment, User, WalletDeposit
from digimarket.payments.base import PaymentAdapter, PaymentOutcome, grand_total
from digimarket.payments.binance import generate_memo_token
from digimarket.payments.details import CryptoTransferDetails
from digimarket.utils.enums import PaymentMethod
from digimarket.utils.platform import PlatformConfig


def unused_memo_token(attempts: int = 5) -> str:
    """A memo that no payment or deposit carries yet."""
    for _ in range(attempts):
        token = generate_memo_token()
        taken = (
            db.session.query(Payment.id).filter(Payment.provider_reference == token).first()
            or db.session.query(WalletDeposit.id).filter(WalletDeposit.memo_token == token).first()
        )
        if not taken:
            return token
    raise RuntimeError("could not allocate a unique memo token")


class CryptoTransferAdapter(PaymentAdapter):

    name = "crypto"
    method = PaymentMethod.CRYPTO_TRANSFER

    def __init__(self, address: str, coin: str = "USDT", network: str = "TRC20"):
        self.address = address
        self.coin = coin
        self.network = network

    def initiate(self, orders: List[Order], buyer: User, config: PlatformConfig) -> PaymentOutcome:
        memo = unused_memo_token()
        amount = grand_total(orders)
        expires_at = datetime.utcnow() + timedelta(minutes=config.crypto_payment_expiry_minutes)

        details = CryptoTransferDetails(
            memo_token=memo,
            expected_amount=amount,
            coin=self.coin,
            network=self.network,
            address=self.address,
            expires_at=expires_at,
        )
        for order in orders:
            order.payment.details = details
            order.payment.provider_reference = memo
            order.payment.expires_at = expires_at
        return PaymentOutcome.pending(
            {
                "type": "crypto",
                "address": self.address,
                "coin": self.coin,
                "network": self.network,
                "memo_token": memo,
                "amount": amount,
                "expires_at": expires_at.isoformat(),
            }
        )
