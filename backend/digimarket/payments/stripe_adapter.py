from __future__ import annotations

import hashlib
import hmac
import time
from typing import List

import requests

from digimarket.models import Order, User
from digimarket.payments.base import PaymentAdapter, PaymentOutcome
from digimarket.payments.details import CardRedirectDetails
from digimarket.utils.enums import PaymentMethod
from digimarket.utils.errors import ProviderError
from digimarket.utils.platform import PlatformConfig

STRIPE_API = "https://api.stripe.com/v1"
SIGNATURE_TOLERANCE_SECONDS = 300


def _cents(amount: float) -> int:
    return int(round(float(amount or 0.0) * 100))


class StripeAdapter(PaymentAdapter):

    name = "stripe"
    method = PaymentMethod.CARD

    def __init__(self, secret_key: str, public_url: str):
        self.secret_key = secret_key
        self.public_url = (public_url or "").rstrip("/")

    def _session_form(self, orders: List[Order], buyer: User) -> dict:
        form = {
            "mode": "payment",
            "payment_method_types[0]": "card",
            "success_url": f"{self.public_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.public_url}/checkout?cancelled=true",
            "metadata[order_ids]": ",".join(str(o.id) for o in orders),
            "metadata[buyer_id]": str(buyer.id),
        }
        if buyer.email:
            form["customer_email"] = buyer.email
        n = 0
        fees = 0.0
        for order in orders:
            fees += float(order.service_fee_amount or 0.0)
            for item in order.items:
                form[f"line_items[{n}][price_data][currency]"] = "usd"
                form[f"line_items[{n}][price_data][product_data][name]"] = item.product_name
                form[f"line_items[{n}][price_data][unit_amount]"] = _cents(item.unit_price)
                form[f"line_items[{n}][quantity]"] = int(item.quantity)
                n += 1
        if _cents(fees) > 0:
            form[f"line_items[{n}][price_data][currency]"] = "usd"
            form[f"line_items[{n}][price_data][product_data][name]"] = "Service fee"
            form[f"line_items[{n}][price_data][unit_amount]"] = _cents(fees)
            form[f"line_items[{n}][quantity]"] = 1
        return form

    def initiate(self, orders: List[Order], buyer: User, config: PlatformConfig) -> PaymentOutcome:
        try:
            r = requests.post(
                f"{STRIPE_API}/checkout/sessions",
                data=self._session_form(orders, buyer),
                auth=(self.secret_key, ""),
                timeout=20,
            )
        except requests.RequestException as e:
            raise ProviderError(f"Card provider unreachable: {e}")
        try:
            j = r.json() if r.content else {}
        except ValueError:
            j = {}
        if not (200 <= r.status_code < 300) or not j.get("id"):
            err = (j.get("error") or {}).get("message") if isinstance(j.get("error"), dict) else None
            raise ProviderError(err or f"Card provider error: HTTP {r.status_code}")

        details = CardRedirectDetails(session_id=str(j["id"]), url=str(j.get("url") or ""))
        for order in orders:
            order.payment.details = details
            order.payment.provider_reference = details.session_id
        return PaymentOutcome.pending({"type": "redirect", "url": details.url})


def verify_stripe_signature(payload: bytes, header: str | None, secret: str, *, now: float | None = None) -> bool:
    """Check a ``Stripe-Signature`` header (``t=...,v1=...``) against the raw body."""
    if not secret or not header:
        return False
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if not timestamp or not signatures:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False
    if abs((now if now is not None else time.time()) - ts) > SIGNATURE_TOLERANCE_SECONDS:
        return False
    signed = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, s) for s in signatures)
