from __future__ import annotations

from datetime import datetime

from flask import current_app

from digimarket.models import Order
from digimarket.utils.enums import OrderStatus, PaymentStatus
from digimarket.utils.errors import MarketError
from digimarket.utils.fulfillment import fulfill_or_refund


def process_delayed_deliveries(now: datetime | None = None, *, limit: int = 200) -> dict:
    """Fulfill PROCESSING orders whose risk delay has elapsed."""
    now = now or datetime.utcnow()
    rows = (
        Order.query.filter(
            Order.status == OrderStatus.PROCESSING.value,
            Order.payment_status == PaymentStatus.COMPLETED.value,
            Order.delivery_scheduled_at.isnot(None),
            Order.delivery_scheduled_at <= now,
            Order.fulfilled_at.is_(None),
        )
        .order_by(Order.delivery_scheduled_at.asc())
        .limit(int(limit))
        .all()
    )

    processed = 0
    failed = 0
    for order in rows:
        external_id = (order.payment.external_payment_id if order.payment else None) or f"delayed_{order.id}"
        try:
            res = fulfill_or_refund(order.id, external_id, now=now)
        except MarketError as e:
            failed += 1
            current_app.logger.error("delayed delivery failed for order %s: %s", order.order_number, e.message)
            continue
        if res.outcome == "refunded":
            failed += 1
        elif res.changed:
            processed += 1

    if processed or failed:
        current_app.logger.info("delayed deliveries processed=%s failed=%s", processed, failed)
    return {"ok": True, "processed": processed, "failed": failed, "ts": now.isoformat()}
