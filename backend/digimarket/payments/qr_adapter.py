from __future__ import annotations

import hashlib
import hmac
import secrets
import string
import time
from datetime import datetime, timedelta
from typing import List

import requests

from digimarket.models import Order, User
from digimarket.payments.base import PaymentAdapter, PaymentOutcome, grand_total
from digimarket.payments.details import QrDetails
from digimarket.utils.enums import PaymentMethod
from digimarket.utils.errors import ProviderError
from digimarket.utils.platform import PlatformConfig

QR_EXPIRY_MINUTES = 15


def generate_qr_reference() -> str:
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(6))
    return f"QR-{int(time.time() * 1000)}-{suffix}"


class QrAdapter(PaymentAdapter):
    """Local bank QR. Without a provider URL the payload is rendered locally
    and confirmation comes from the signed webhook or the sandbox confirm call."""

    name = "qr"
    method = PaymentMethod.QR

    def __init__(self, api_url: str = "", api_key: str = ""):
        self.api_url = (api_url or "").rstrip("/")
        self.api_key = api_key or ""

    def _remote_payload(self, reference: str, amount: float, expires_at: datetime) -> str:
        try:
            r = requests.post(
                f"{self.api_url}/qr",
                json={"reference": reference, "amount": amount, "currency": "USD", "expires_at": expires_at.isoformat()},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=15,
            )
            j = r.json() if r.content else {}
        except (requests.RequestException, ValueError) as e:
            raise ProviderError(f"QR provider unreachable: {e}")
        if not (200 <= r.status_code < 300) or not j.get("qr_content"):
            raise ProviderError(f"QR provider error: HTTP {r.status_code}")
        return str(j["qr_content"])

    def initiate(self, orders: List[Order], buyer: User, config: PlatformConfig) -> PaymentOutcome:
        reference = generate_qr_reference()
        amount = grand_total(orders)
        expires_at = datetime.utcnow() + timedelta(minutes=QR_EXPIRY_MINUTES)
        if self.api_url:
            qr_content = self._remote_payload(reference, amount, expires_at)
        else:
            qr_content = f"DIGIMARKET|{reference}|{amount:.2f}|USD|{expires_at.strftime('%Y%m%d%H%M%S')}"

        details = QrDetails(reference=reference, qr_content=qr_content, expires_at=expires_at)
        for order in orders:
            order.payment.details = details
            order.payment.provider_reference = reference
            order.payment.expires_at = expires_at
        return PaymentOutcome.pending(
            {
                "type": "qr",
                "reference": reference,
                "qr_content": qr_content,
                "amount": amount,
                "expires_at": expires_at.isoformat(),
            }
        )


def verify_qr_signature(raw_body: bytes, signature_header: str | None, secret: str) -> bool:
    if not secret or not signature_header:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, signature_header.strip())
