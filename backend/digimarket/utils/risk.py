"""Purchase risk scoring.

Points per signal, summed into a score:

    amount >= high_value_threshold        +30
    amount >= manual_review_threshold     +20
    account younger than 24h              +20
    no completed order yet                +10
    velocity_limit+ orders in the window  +15
    crypto transfer (irreversible rails)   +5

0-30 delivers instantly, 31+ waits ``delivery_delay_minutes`` (when set),
51+ or any amount over the review threshold is held for an admin.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from digimarket.extensions import db
from digimarket.models import Order, User
from digimarket.utils.enums import OrderStatus, PaymentMethod
from digimarket.utils.platform import PlatformConfig

DELAY_SCORE = 31
REVIEW_SCORE = 51


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    is_high_value: bool
    requires_manual_review: bool
    should_delay: bool
    delay_minutes: int
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "is_high_value": self.is_high_value,
            "requires_manual_review": self.requires_manual_review,
            "should_delay": self.should_delay,
            "delay_minutes": self.delay_minutes,
            "reasons": list(self.reasons),
        }


def _recent_order_count(buyer_id: int, since: datetime) -> int:
    cnt = (
        db.session.query(db.func.count(Order.id))
        .filter(Order.buyer_id == int(buyer_id))
        .filter(Order.created_at >= since)
        .filter(Order.status.in_([OrderStatus.PENDING.value, OrderStatus.PROCESSING.value, OrderStatus.COMPLETED.value]))
        .scalar()
    )
    return int(cnt or 0)


def _completed_order_count(buyer_id: int) -> int:
    cnt = (
        db.session.query(db.func.count(Order.id))
        .filter(Order.buyer_id == int(buyer_id))
        .filter(Order.status == OrderStatus.COMPLETED.value)
        .scalar()
    )
    return int(cnt or 0)


def assess_fraud_risk(
    *,
    buyer_id: int,
    total_amount: float,
    payment_method: PaymentMethod,
    item_count: int,
    config: PlatformConfig,
    now: datetime | None = None,
) -> RiskAssessment:
    now = now or datetime.utcnow()
    amount = float(total_amount or 0.0)
    score = 0
    reasons: list[str] = []

    if amount >= config.high_value_threshold:
        score += 30
        reasons.append(f"High value order (${amount:.2f} >= ${config.high_value_threshold:.2f})")
    if amount >= config.manual_review_threshold:
        score += 20
        reasons.append(f"Above manual review threshold (${amount:.2f} >= ${config.manual_review_threshold:.2f})")

    buyer = db.session.get(User, int(buyer_id))
    if buyer is not None and buyer.is_new_account(now):
        score += 20
        reasons.append("Account created less than 24 hours ago")

    if _completed_order_count(buyer_id) == 0:
        score += 10
        reasons.append("First purchase")

    recent = _recent_order_count(buyer_id, now - timedelta(minutes=config.velocity_window_minutes))
    if config.velocity_limit > 0 and recent >= config.velocity_limit:
        score += 15
        reasons.append(f"{recent} orders in the last {config.velocity_window_minutes} minutes")

    if payment_method is PaymentMethod.CRYPTO_TRANSFER:
        score += 5
        reasons.append("Crypto payment")

    should_delay = score >= DELAY_SCORE and config.delivery_delay_minutes > 0
    return RiskAssessment(
        score=score,
        is_high_value=amount >= config.high_value_threshold,
        requires_manual_review=score >= REVIEW_SCORE or amount >= config.manual_review_threshold,
        should_delay=should_delay,
        delay_minutes=config.delivery_delay_minutes if should_delay else 0,
        reasons=reasons,
    )
