from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List

from digimarket.models import Order, User
from digimarket.utils.enums import PaymentMethod
from digimarket.utils.platform import PlatformConfig


# =====================================================
# OUTCOME
# =====================================================

@dataclass
class PaymentOutcome:
    """Either settled now (one external id per order) or pending on the provider."""

    response: dict
    settled: bool = False
    external_ids: Dict[int, str] = field(default_factory=dict)

    @classmethod
    def pending(cls, response: dict) -> "PaymentOutcome":
        return cls(response=dict(response), settled=False)

    @classmethod
    def settled_now(cls, external_ids: Dict[int, str], response: dict) -> "PaymentOutcome":
        return cls(response=dict(response), settled=True, external_ids=dict(external_ids))


# =====================================================
# ADAPTER INTERFACE
# =====================================================

class PaymentAdapter(ABC):

    name = ""
    method: PaymentMethod
    demo = False

    @abstractmethod
    def initiate(self, orders: List[Order], buyer: User, config: PlatformConfig) -> PaymentOutcome:
        """Start payment for freshly created orders.

        Adapters may write ``payment.details`` and flush, but never commit;
        the checkout owns the transaction.
        """


def grand_total(orders: List[Order]) -> float:
    return round(sum(float(o.total_amount or 0.0) for o in orders), 2)
