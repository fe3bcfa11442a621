from __future__ import annotations

import time
from typing import List

from digimarket.models import Order, User
from digimarket.payments.base import PaymentAdapter, PaymentOutcome
from digimarket.payments.details import SandboxDetails
from digimarket.utils.enums import PaymentMethod
from digimarket.utils.platform import PlatformConfig


class SandboxAdapter(PaymentAdapter):
    """Stands in for a provider that has no credentials: settles immediately."""

    demo = True

    def __init__(self, provider: str, method: PaymentMethod):
        self.name = provider
        self.method = method

    def initiate(self, orders: List[Order], buyer: User, config: PlatformConfig) -> PaymentOutcome:
        reference = f"mock_{self.name}_{int(time.time() * 1000)}"
        details = SandboxDetails(provider=self.name, reference=reference)
        for order in orders:
            order.payment.details = details
            order.payment.provider_reference = reference
        return PaymentOutcome.settled_now(
            {o.id: reference for o in orders},
            {
                "type": "mock_complete",
                "demo": True,
                "message": f"{self.name} is not configured. Order completed in demo mode.",
            },
        )
