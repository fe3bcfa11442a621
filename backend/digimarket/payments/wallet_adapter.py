from __future__ import annotations

from typing import List

from digimarket.models import Order, User
from digimarket.payments.base import PaymentAdapter, PaymentOutcome
from digimarket.payments.details import WalletDetails
from digimarket.utils.enums import PaymentMethod, WalletTxnType
from digimarket.utils.platform import PlatformConfig
from digimarket.utils.wallets import debit_wallet


class WalletAdapter(PaymentAdapter):
    """Pays from the buyer's balance, one debit per order.

    An ``InsufficientFundsError`` propagates so the checkout can roll back the
    orders it created in the same transaction.
    """

    name = "wallet"
    method = PaymentMethod.WALLET

    def initiate(self, orders: List[Order], buyer: User, config: PlatformConfig) -> PaymentOutcome:
        external_ids = {}
        for order in orders:
            txn = debit_wallet(
                buyer.id,
                order.total_amount,
                txn_type=WalletTxnType.PURCHASE_DEBIT,
                description=f"Purchase {order.order_number}",
                order_id=order.id,
                idempotency_key=f"purchase:{order.id}",
                commit=False,
            )
            order.payment.details = WalletDetails(transaction_ids=(txn.id,))
            external_ids[order.id] = f"wallet_{txn.id}"
        return PaymentOutcome.settled_now(external_ids, {"type": "wallet_complete"})
