"""Binance spot deposit history: signed client, memo tokens and matching.

One history query per coin covers every pending memo of a reconciliation
cycle. A deposit matches when its memo equals the token (case-insensitive),
its amount is within tolerance of the expected amount and its status is
settled (1 = success, 6 = credited).
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional
from urllib.parse import urlencode

import requests

from digimarket.utils.errors import ProviderError

BINANCE_API_BASE = "https://api.binance.com"
DEPOSIT_HISTORY_PATH = "/sapi/v1/capital/deposit/hisrec"

MEMO_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O/1/I
MEMO_PREFIX = "DM-"
MEMO_LENGTH = 8

SETTLED_STATUSES = (1, 6)


def generate_memo_token() -> str:
    return MEMO_PREFIX + "".join(secrets.choice(MEMO_ALPHABET) for _ in range(MEMO_LENGTH))


@dataclass(frozen=True)
class DepositRecord:
    tx_id: str
    amount: float
    coin: str
    network: str
    memo: str
    status: int
    insert_time: int

    @classmethod
    def from_api(cls, row: dict) -> "DepositRecord":
        try:
            amount = float(row.get("amount") or 0.0)
        except (TypeError, ValueError):
            amount = 0.0
        try:
            status = int(row.get("status"))
        except (TypeError, ValueError):
            status = -1
        return cls(
            tx_id=str(row.get("txId") or row.get("id") or ""),
            amount=amount,
            coin=str(row.get("coin") or ""),
            network=str(row.get("network") or ""),
            memo=str(row.get("addressTag") or ""),
            status=status,
            insert_time=int(row.get("insertTime") or 0),
        )


@dataclass(frozen=True)
class DepositMatch:
    tx_id: str
    amount: float
    insert_time: int


class BinanceDepositClient:

    def __init__(self, api_key: str, secret_key: str, base_url: str = BINANCE_API_BASE, timeout: int = 15):
        self.api_key = api_key
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _sign(self, query: str) -> str:
        return hmac.new(self.secret_key.encode("utf-8"), query.encode("utf-8"), hashlib.sha256).hexdigest()

    def deposit_history(self, *, coin: str, start_time_ms: int, limit: int = 100) -> List[DepositRecord]:
        params = {
            "coin": coin,
            "startTime": int(start_time_ms),
            "limit": int(limit),
            "recvWindow": 10000,
            "timestamp": int(time.time() * 1000),
        }
        query = urlencode(params)
        url = f"{self.base_url}{DEPOSIT_HISTORY_PATH}?{query}&signature={self._sign(query)}"
        try:
            r = requests.get(url, headers={"X-MBX-APIKEY": self.api_key}, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderError(f"Binance unreachable: {e}")
        if not (200 <= r.status_code < 300):
            raise ProviderError(f"Binance deposit history failed: HTTP {r.status_code}", status=r.status_code)
        try:
            data = r.json()
        except ValueError:
            raise ProviderError("Binance returned a non-JSON body")
        if not isinstance(data, list):
            return []
        return [DepositRecord.from_api(row) for row in data if isinstance(row, dict)]


def client_from_config(config) -> Optional[BinanceDepositClient]:
    api_key = (config.get("BINANCE_SPOT_API_KEY") or "").strip()
    secret_key = (config.get("BINANCE_SPOT_SECRET_KEY") or "").strip()
    if not api_key or not secret_key:
        return None
    return BinanceDepositClient(api_key, secret_key)


def find_match(
    records: Iterable[DepositRecord],
    *,
    memo_token: str,
    expected_amount: float,
    tolerance: float,
    used_tx_ids: set,
) -> Optional[DepositMatch]:
    """First unused settled record carrying this memo at the expected amount."""
    token = (memo_token or "").strip().upper()
    for rec in records:
        if not rec.tx_id or rec.tx_id in used_tx_ids:
            continue
        if rec.memo.strip().upper() != token:
            continue
        if abs(rec.amount - float(expected_amount)) > tolerance + 1e-9:
            continue
        if rec.status not in SETTLED_STATUSES:
            continue
        return DepositMatch(tx_id=rec.tx_id, amount=rec.amount, insert_time=rec.insert_time)
    return None
