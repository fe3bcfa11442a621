"""Prorated refunds for time-boxed (streaming) purchases."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from digimarket.extensions import db
from digimarket.models import Order, RefundRequest
from digimarket.utils.commission import round2
from digimarket.utils.enums import (
    OrderStatus,
    PaymentStatus,
    ProductType,
    RefundStatus,
    RefundType,
    WalletTxnType,
)
from digimarket.utils.errors import ForbiddenError, NotFoundError, RefundIneligibleError
from digimarket.utils.notify import queue_email, queue_in_app
from digimarket.utils.platform import PlatformConfig
from digimarket.utils.sellers import adjust_seller_balances
from digimarket.utils.wallets import credit_wallet

DEFAULT_DURATION_DAYS = 30
SECONDS_PER_DAY = 24 * 60 * 60


@dataclass(frozen=True)
class Proration:
    refund_amount: float
    total_days: int
    used_days: int
    remaining_days: int
    refund_type: RefundType


def calculate_proration(amount: float, duration_days: int, delivered_at: datetime, now: datetime) -> Proration:
    """Refund the unused share of a subscription.

    Nothing left -> 0. Same-day cancel -> the full amount. Otherwise
    ``round2(remaining / duration * amount)``.
    """
    total = int(duration_days or 0)
    used = math.floor((now - delivered_at).total_seconds() / SECONDS_PER_DAY)
    remaining = max(0, total - used)

    if remaining <= 0:
        return Proration(0.0, total, min(max(used, 0), total), 0, RefundType.PARTIAL_PRORATED)
    if used <= 0:
        return Proration(round2(amount), total, 0, total, RefundType.FULL)
    return Proration(round2(remaining / total * float(amount)), total, used, remaining, RefundType.PARTIAL_PRORATED)


def _check_eligibility(order: Order, buyer_id: int, config: PlatformConfig, now: datetime) -> list:
    if int(order.buyer_id) != int(buyer_id):
        raise ForbiddenError("Not your order")
    if order.status != OrderStatus.COMPLETED.value:
        raise RefundIneligibleError("Only completed orders can be refunded")
    if RefundRequest.query.filter_by(order_id=order.id).first() is not None:
        raise RefundIneligibleError("A refund request already exists for this order")
    if order.created_at < now - timedelta(days=config.refund_window_days):
        raise RefundIneligibleError(f"The refund window has expired ({config.refund_window_days} days)")
    items = [i for i in order.items if ProductType(i.product_type).is_time_boxed]
    if not items:
        raise RefundIneligibleError("Only streaming products can be refunded")
    return items


def request_refund(
    order_id: int,
    buyer_id: int,
    *,
    config: PlatformConfig,
    reason: str | None = None,
    now: datetime | None = None,
) -> RefundRequest:
    now = now or datetime.utcnow()
    order = db.session.get(Order, int(order_id), populate_existing=True)
    if order is None:
        raise NotFoundError("Order not found")
    items = _check_eligibility(order, buyer_id, config, now)

    parts = []
    for item in items:
        delivered_at = item.delivered_at or order.completed_at or order.created_at
        parts.append(calculate_proration(item.total_price, item.duration_days or DEFAULT_DURATION_DAYS, delivered_at, now))

    refund_total = round2(sum(p.refund_amount for p in parts))
    if refund_total <= 0:
        raise RefundIneligibleError("No remaining days to refund")

    refund_type = RefundType.FULL if all(p.refund_type is RefundType.FULL for p in parts) else RefundType.PARTIAL_PRORATED
    rate = float(order.commission_rate or 0.0)
    seller_debit = round2(refund_total * (1 - rate / 100.0))

    try:
        swapped = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.COMPLETED.value)
            .values(
                status=OrderStatus.REFUNDED.value,
                payment_status=PaymentStatus.REFUNDED.value,
                refunded_amount=refund_total,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if swapped.rowcount != 1:
            raise RefundIneligibleError("Only completed orders can be refunded")

        refund = RefundRequest(
            order_id=order.id,
            buyer_id=order.buyer_id,
            seller_id=order.seller_id,
            refund_type=refund_type.value,
            original_amount=round2(order.subtotal),
            refund_amount=refund_total,
            seller_debit=seller_debit,
            total_days=sum(p.total_days for p in parts),
            used_days=sum(p.used_days for p in parts),
            remaining_days=sum(p.remaining_days for p in parts),
            reason=(reason or "")[:500] or None,
            status=RefundStatus.PROCESSED.value,
            processed_at=now,
        )
        db.session.add(refund)
        db.session.flush()

        credit_wallet(
            order.buyer_id,
            refund_total,
            txn_type=WalletTxnType.REFUND_CREDIT,
            description=f"Refund for order #{order.order_number}",
            order_id=order.id,
            refund_id=refund.id,
            idempotency_key=f"refund:{order.id}",
            commit=False,
        )
        adjust_seller_balances(order.seller_id, earnings=-seller_debit)
        if order.payment is not None:
            order.payment.status = PaymentStatus.REFUNDED.value
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise RefundIneligibleError("A refund request already exists for this order")
    except RefundIneligibleError:
        db.session.rollback()
        raise

    db.session.refresh(order)
    current_app.logger.info(
        "refund %s order=%s amount=%.2f seller_debit=%.2f type=%s",
        refund.id,
        order.order_number,
        refund_total,
        seller_debit,
        refund_type.value,
    )
    _notify_refund(order, refund)
    return refund


def _notify_refund(order: Order, refund: RefundRequest) -> None:
    try:
        msg = f"${refund.refund_amount:.2f} from order {order.order_number} was credited to your wallet."
        queue_in_app(order.buyer_id, "Refund processed", msg, meta={"order_id": order.id, "refund_id": refund.id})
        queue_email(order.buyer_id, "Your refund was processed", msg, meta={"order_id": order.id})
        if order.seller is not None:
            queue_in_app(
                order.seller.user_id,
                "Order refunded",
                f"Order {order.order_number} was refunded; ${refund.seller_debit:.2f} was deducted from your balance.",
                meta={"order_id": order.id, "refund_id": refund.id},
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("refund notifications failed for order %s", order.order_number)
