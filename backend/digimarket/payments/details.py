"""Provider-specific payment data, one tagged variant per settlement method.

``Payment.details_json`` holds ``variant.to_dict()``; ``parse_details`` is the
only way back, and it refuses tags it does not know.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Union


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


def _dt(raw) -> datetime | None:
    return datetime.fromisoformat(raw) if raw else None


@dataclass(frozen=True)
class CardRedirectDetails:
    session_id: str
    url: str
    kind: str = field(default="card_redirect", init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "session_id": self.session_id, "url": self.url}


@dataclass(frozen=True)
class QrDetails:
    reference: str
    qr_content: str
    expires_at: datetime
    kind: str = field(default="qr", init=False)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "reference": self.reference,
            "qr_content": self.qr_content,
            "expires_at": _iso(self.expires_at),
        }


@dataclass(frozen=True)
class CryptoTransferDetails:
    memo_token: str
    expected_amount: float
    coin: str
    network: str
    address: str
    expires_at: datetime
    kind: str = field(default="crypto_transfer", init=False)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "memo_token": self.memo_token,
            "expected_amount": self.expected_amount,
            "coin": self.coin,
            "network": self.network,
            "address": self.address,
            "expires_at": _iso(self.expires_at),
        }


@dataclass(frozen=True)
class WalletDetails:
    transaction_ids: tuple = ()
    kind: str = field(default="wallet", init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "transaction_ids": [int(t) for t in self.transaction_ids]}


@dataclass(frozen=True)
class SandboxDetails:
    provider: str
    reference: str
    kind: str = field(default="sandbox", init=False)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "provider": self.provider, "reference": self.reference}


PaymentDetails = Union[CardRedirectDetails, QrDetails, CryptoTransferDetails, WalletDetails, SandboxDetails]


def parse_details(data: dict) -> PaymentDetails:
    if not isinstance(data, dict):
        raise ValueError("payment details must be an object")
    kind = data.get("kind")
    if kind == "card_redirect":
        return CardRedirectDetails(session_id=str(data["session_id"]), url=str(data.get("url") or ""))
    if kind == "qr":
        return QrDetails(reference=str(data["reference"]), qr_content=str(data.get("qr_content") or ""), expires_at=_dt(data.get("expires_at")))
    if kind == "crypto_transfer":
        return CryptoTransferDetails(
            memo_token=str(data["memo_token"]),
            expected_amount=float(data["expected_amount"]),
            coin=str(data["coin"]),
            network=str(data["network"]),
            address=str(data.get("address") or ""),
            expires_at=_dt(data.get("expires_at")),
        )
    if kind == "wallet":
        return WalletDetails(transaction_ids=tuple(int(t) for t in data.get("transaction_ids") or ()))
    if kind == "sandbox":
        return SandboxDetails(provider=str(data["provider"]), reference=str(data["reference"]))
    raise ValueError(f"unknown payment details kind: {kind!r}")
