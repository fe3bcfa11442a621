"""Order fulfillment: allocate inventory, credit the seller, complete the order.

``fulfill_order`` is safe to call from every path that learns about a
settled payment (checkout, provider webhooks, the reconciler, the delayed
delivery sweep, admin approval). It re-reads the order, then claims it with a
compare-and-swap on ``fulfilled_at`` inside the same transaction as the
allocation and the seller credit; whoever loses the swap does nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy import update

from digimarket.extensions import db
from digimarket.models import ChatConversation, ChatMessage, Order, Payment, Product
from digimarket.utils.audit import record_audit
from digimarket.utils.enums import DeliveryType, OrderStatus, PaymentStatus, WalletTxnType
from digimarket.utils.errors import FulfillmentError, NotFoundError
from digimarket.utils.inventory import claim_units
from digimarket.utils.notify import queue_email, queue_in_app
from digimarket.utils.sellers import adjust_seller_balances
from digimarket.utils.wallets import credit_wallet

FULFILLABLE = (OrderStatus.PENDING.value, OrderStatus.PROCESSING.value, OrderStatus.UNDER_REVIEW.value)


@dataclass(frozen=True)
class FulfillmentResult:
    order_id: int
    outcome: str  # completed | under_review | deferred | refunded | noop
    status: str

    @property
    def changed(self) -> bool:
        return self.outcome != "noop"


def _now():
    return datetime.utcnow()


def _settle_payment(order: Order, external_payment_id: str | None, now: datetime) -> None:
    values = {"status": PaymentStatus.COMPLETED.value, "completed_at": now}
    if external_payment_id:
        values["external_payment_id"] = external_payment_id[:128]
    db.session.execute(
        update(Payment)
        .where(Payment.order_id == order.id, Payment.status == PaymentStatus.PENDING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if order.payment is not None:
        db.session.expire(order.payment)


def _post_purchase_message(order: Order, buyer_id: int, manual_items) -> None:
    convo = ChatConversation.query.filter_by(buyer_id=buyer_id, seller_id=order.seller_id).first()
    if convo is None:
        convo = ChatConversation(buyer_id=buyer_id, seller_id=order.seller_id)
        db.session.add(convo)
        db.session.flush()
    names = ", ".join(i.product_name for i in manual_items)
    db.session.add(
        ChatMessage(
            conversation_id=convo.id,
            sender_id=buyer_id,
            is_system=True,
            content=f"[Automatic purchase] I bought: {names}. Order #{order.order_number}. Waiting for delivery.",
        )
    )
    convo.last_message_at = _now()


def _defer(order: Order, external_payment_id: str | None, now: datetime) -> FulfillmentResult:
    """Payment is in but the risk delay has not elapsed: park as PROCESSING."""
    db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == OrderStatus.PENDING.value, Order.fulfilled_at.is_(None))
        .values(
            status=OrderStatus.PROCESSING.value,
            payment_status=PaymentStatus.COMPLETED.value,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    _settle_payment(order, external_payment_id, now)
    db.session.commit()
    db.session.refresh(order)
    current_app.logger.info(
        "order %s deferred until %s", order.order_number, order.delivery_scheduled_at.isoformat()
    )
    return FulfillmentResult(order.id, "deferred", order.status)


def fulfill_order(
    order_id: int,
    buyer_id: int,
    external_payment_id: str | None,
    *,
    hold_for_review: bool = True,
    now: datetime | None = None,
) -> FulfillmentResult:
    now = now or _now()

    # Never trust a caller's copy: reload from the database
    order = db.session.get(Order, int(order_id), populate_existing=True)
    if order is None:
        raise NotFoundError("Order not found")
    if int(order.buyer_id) != int(buyer_id):
        raise FulfillmentError(f"Order {order.order_number} does not belong to buyer {buyer_id}")

    if OrderStatus(order.status).is_terminal or order.fulfilled_at is not None:
        current_app.logger.info("fulfill no-op: order %s already %s", order.order_number, order.status)
        return FulfillmentResult(order.id, "noop", order.status)

    if order.delivery_scheduled_at and order.delivery_scheduled_at > now:
        if order.status == OrderStatus.PENDING.value:
            return _defer(order, external_payment_id, now)
        return FulfillmentResult(order.id, "noop", order.status)

    held = bool(hold_for_review and order.requires_manual_review)
    final_status = OrderStatus.UNDER_REVIEW if held else OrderStatus.COMPLETED

    try:
        claimed = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.fulfilled_at.is_(None), Order.status.in_(FULFILLABLE))
            .values(fulfilled_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            db.session.rollback()
            current_app.logger.info("fulfill no-op: order %s claimed by another worker", order.order_number)
            fresh = db.session.get(Order, int(order_id), populate_existing=True)
            return FulfillmentResult(fresh.id, "noop", fresh.status)

        manual_items = []
        for item in order.items:
            if item.delivery_type == DeliveryType.INSTANT.value:
                claim_units(item, buyer_id=int(buyer_id), now=now)
            else:
                manual_items.append(item)
            item.is_delivered = True
            item.delivered_at = now
            db.session.execute(
                update(Product)
                .where(Product.id == item.product_id)
                .values(sold_count=Product.sold_count + int(item.quantity or 0))
                .execution_options(synchronize_session=False)
            )
        if manual_items:
            _post_purchase_message(order, int(buyer_id), manual_items)

        adjust_seller_balances(order.seller_id, earnings=float(order.seller_earnings or 0.0), sales=1)

        order.status = final_status.value
        order.payment_status = PaymentStatus.COMPLETED.value
        order.fulfilled_at = now
        order.updated_at = now
        if not held:
            order.completed_at = now
        _settle_payment(order, external_payment_id, now)
        db.session.commit()
    except FulfillmentError:
        db.session.rollback()
        current_app.logger.error("fulfillment aborted for order %s", order_id)
        raise
    except Exception:
        db.session.rollback()
        current_app.logger.exception("fulfillment failed for order %s", order_id)
        raise

    current_app.logger.info(
        "order %s fulfilled status=%s seller=%s earnings=%.2f",
        order.order_number,
        order.status,
        order.seller_id,
        float(order.seller_earnings or 0.0),
    )
    _notify_fulfilled(order, held)
    return FulfillmentResult(order.id, "under_review" if held else "completed", order.status)


def _notify_fulfilled(order: Order, held: bool) -> None:
    """Best effort. A failure here never touches the committed order."""
    try:
        if held:
            queue_in_app(
                order.buyer_id,
                "Order under review",
                f"Order {order.order_number} is being reviewed. You will be notified once it is approved.",
                meta={"order_id": order.id},
            )
        else:
            queue_in_app(
                order.buyer_id,
                "Order delivered",
                f"Order {order.order_number} is complete. Your items are available in your orders.",
                meta={"order_id": order.id},
            )
            queue_email(
                order.buyer_id,
                f"Your order {order.order_number} is ready",
                f"Thanks for your purchase. Order {order.order_number} totals ${float(order.total_amount or 0.0):.2f}.",
                meta={"order_id": order.id},
            )
        seller_user_id = order.seller.user_id if order.seller else None
        if seller_user_id:
            queue_in_app(
                seller_user_id,
                "New sale",
                f"Order {order.order_number}: ${float(order.seller_earnings or 0.0):.2f} credited to your balance.",
                meta={"order_id": order.id},
            )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("notifications failed for order %s", order.order_number)


def record_payment(order_id: int, external_payment_id: str | None, *, now: datetime | None = None, commit: bool = True) -> bool:
    """Mark a PENDING payment as received before any fulfillment work.

    Once recorded, expiry no longer applies to the payment and a failed
    fulfillment ends in a refund instead of a silent cancellation.
    """
    now = now or _now()
    values = {"status": PaymentStatus.COMPLETED.value, "completed_at": now}
    if external_payment_id:
        values["external_payment_id"] = external_payment_id[:128]
    swapped = db.session.execute(
        update(Payment)
        .where(Payment.order_id == int(order_id), Payment.status == PaymentStatus.PENDING.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount == 1:
        db.session.execute(
            update(Order)
            .where(Order.id == int(order_id), Order.payment_status == PaymentStatus.PENDING.value)
            .values(payment_status=PaymentStatus.COMPLETED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
    if commit:
        db.session.commit()
    return swapped.rowcount == 1


def refund_unfulfilled_order(order_id: int, *, reason: str, now: datetime | None = None) -> bool:
    """Paid order that cannot be delivered: cancel it and return the total to the buyer's wallet."""
    now = now or _now()
    order = db.session.get(Order, int(order_id), populate_existing=True)
    if order is None:
        raise NotFoundError("Order not found")
    amount = round(float(order.total_amount or 0.0), 2)

    swapped = db.session.execute(
        update(Order)
        .where(
            Order.id == order.id,
            Order.status.in_((OrderStatus.PENDING.value, OrderStatus.PROCESSING.value)),
            Order.payment_status == PaymentStatus.COMPLETED.value,
            Order.fulfilled_at.is_(None),
        )
        .values(
            status=OrderStatus.CANCELLED.value,
            payment_status=PaymentStatus.REFUNDED.value,
            refunded_amount=amount,
            cancelled_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount != 1:
        db.session.rollback()
        return False
    db.session.execute(
        update(Payment)
        .where(Payment.order_id == order.id)
        .values(status=PaymentStatus.REFUNDED.value)
        .execution_options(synchronize_session=False)
    )
    if amount > 0:
        credit_wallet(
            order.buyer_id,
            amount,
            txn_type=WalletTxnType.REFUND_CREDIT,
            description=f"Order #{order.order_number} could not be delivered",
            order_id=order.id,
            idempotency_key=f"fulfillment_failed:{order.id}",
            commit=False,
        )
    record_audit(
        "order_unfulfillable",
        target_type="order",
        target_id=order.id,
        meta={"order_number": order.order_number, "reason": reason, "refunded_amount": amount},
    )
    db.session.commit()
    db.session.refresh(order)
    current_app.logger.error("order %s refunded %.2f after failed fulfillment: %s", order.order_number, amount, reason)

    try:
        queue_in_app(
            order.buyer_id,
            "Order cancelled",
            f"Order {order.order_number} could not be delivered. ${amount:.2f} was credited to your wallet.",
            meta={"order_id": order.id},
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("notifications failed for order %s", order.order_number)
    return True


def fulfill_or_refund(order_id: int, external_payment_id: str | None, *, now: datetime | None = None) -> FulfillmentResult:
    """Record the payment, fulfill, and refund to the wallet when inventory has run out."""
    now = now or _now()
    order = db.session.get(Order, int(order_id))
    if order is None:
        raise NotFoundError("Order not found")
    record_payment(order.id, external_payment_id, now=now)
    try:
        return fulfill_order(order.id, order.buyer_id, external_payment_id, now=now)
    except FulfillmentError as e:
        refund_unfulfilled_order(order.id, reason=e.message, now=now)
        fresh = db.session.get(Order, int(order_id), populate_existing=True)
        return FulfillmentResult(fresh.id, "refunded", fresh.status)
