from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime

_BASE36 = string.digits + string.ascii_uppercase


def round2(amount: float) -> float:
    return round(float(amount or 0.0), 2)


@dataclass(frozen=True)
class FeeBreakdown:
    subtotal: float
    service_fee_fixed: float
    service_fee_percent: float
    service_fee_amount: float
    total_amount: float
    commission_rate: float
    commission_amount: float
    seller_earnings: float


def compute_breakdown(subtotal: float, *, fee_fixed: float, fee_percent: float, commission_rate: float) -> FeeBreakdown:
    """Money split for one seller group. Rates are percents (10 == 10%)."""
    sub = max(0.0, float(subtotal or 0.0))
    fixed = max(0.0, float(fee_fixed or 0.0))
    pct = max(0.0, float(fee_percent or 0.0))
    rate = max(0.0, float(commission_rate or 0.0))

    fee = round2(fixed + sub * pct / 100.0)
    commission = round2(sub * rate / 100.0)
    return FeeBreakdown(
        subtotal=round2(sub),
        service_fee_fixed=fixed,
        service_fee_percent=pct,
        service_fee_amount=fee,
        total_amount=round2(sub + fee),
        commission_rate=rate,
        commission_amount=commission,
        seller_earnings=round2(sub - commission),
    )


def generate_order_number(now: datetime | None = None) -> str:
    ts = now or datetime.utcnow()
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"DM-{ts.strftime('%Y%m%d')}-{suffix}"
