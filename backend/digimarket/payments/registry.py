"""Adapter per payment method, chosen once at startup from configuration."""

from __future__ import annotations

from typing import Dict, Mapping

from flask import current_app

from digimarket.payments.base import PaymentAdapter
from digimarket.payments.crypto_adapter import CryptoTransferAdapter
from digimarket.payments.qr_adapter import QrAdapter
from digimarket.payments.sandbox import SandboxAdapter
from digimarket.payments.stripe_adapter import StripeAdapter
from digimarket.payments.wallet_adapter import WalletAdapter
from digimarket.utils.enums import PaymentMethod

EXTENSION_KEY = "digimarket.payments"


def crypto_configured(config: Mapping) -> bool:
    return all(
        (config.get(k) or "").strip()
        for k in ("BINANCE_SPOT_API_KEY", "BINANCE_SPOT_SECRET_KEY", "BINANCE_DEPOSIT_ADDRESS")
    )


def build_registry(config: Mapping) -> Dict[PaymentMethod, PaymentAdapter]:
    registry: Dict[PaymentMethod, PaymentAdapter] = {}

    secret = (config.get("STRIPE_SECRET_KEY") or "").strip()
    if secret:
        registry[PaymentMethod.CARD] = StripeAdapter(secret, config.get("PUBLIC_APP_URL") or "")
    else:
        registry[PaymentMethod.CARD] = SandboxAdapter("stripe", PaymentMethod.CARD)

    registry[PaymentMethod.QR] = QrAdapter(config.get("QR_API_URL") or "", config.get("QR_API_KEY") or "")

    if crypto_configured(config):
        registry[PaymentMethod.CRYPTO_TRANSFER] = CryptoTransferAdapter(
            config["BINANCE_DEPOSIT_ADDRESS"],
            config.get("BINANCE_DEPOSIT_COIN") or "USDT",
            config.get("BINANCE_DEPOSIT_NETWORK") or "TRC20",
        )
    else:
        registry[PaymentMethod.CRYPTO_TRANSFER] = SandboxAdapter("crypto", PaymentMethod.CRYPTO_TRANSFER)

    registry[PaymentMethod.WALLET] = WalletAdapter()
    return registry


def init_payments(app) -> None:
    registry = build_registry(app.config)
    for method, adapter in registry.items():
        if adapter.demo:
            app.logger.warning("payment method %s has no provider credentials; using sandbox", method.value)
    app.extensions[EXTENSION_KEY] = registry


def get_adapter(method: PaymentMethod) -> PaymentAdapter:
    return current_app.extensions[EXTENSION_KEY][method]
