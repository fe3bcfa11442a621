"""Admin gate for orders held by the risk check.

Held orders were already fulfilled (units bound, seller credited) so an
approval is a status flip. A rejection must therefore undo the seller credit
and pull the bound units, besides refunding the buyer.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import or_, update

from digimarket.extensions import db
from digimarket.models import Order, Product, User
from digimarket.utils.audit import record_audit
from digimarket.utils.enums import OrderStatus, PaymentStatus, WalletTxnType
from digimarket.utils.errors import ConflictError, NotFoundError, ValidationError
from digimarket.utils.fulfillment import fulfill_order
from digimarket.utils.inventory import suspend_units_for_items
from digimarket.utils.notify import queue_email, queue_in_app
from digimarket.utils.sellers import adjust_seller_balances
from digimarket.utils.wallets import credit_wallet

REJECTABLE = (OrderStatus.PENDING.value, OrderStatus.PROCESSING.value, OrderStatus.UNDER_REVIEW.value)


def review_queue():
    return (
        Order.query.filter(
            or_(
                Order.status == OrderStatus.UNDER_REVIEW.value,
                (Order.status == OrderStatus.PROCESSING.value) & Order.requires_manual_review.is_(True),
            )
        )
        .order_by(Order.created_at.asc())
        .all()
    )


def _load(order_id: int) -> Order:
    order = db.session.get(Order, int(order_id), populate_existing=True)
    if order is None:
        raise NotFoundError("Order not found")
    return order


def approve_order(order_id: int, admin: User, *, reason: str | None = None, now: datetime | None = None) -> Order:
    now = now or datetime.utcnow()
    order = _load(order_id)
    previous = order.status
    review_fields = {"reviewed_by": admin.id, "reviewed_at": now, "review_note": (reason or "")[:500] or None, "updated_at": now}

    if previous == OrderStatus.UNDER_REVIEW.value and order.fulfilled_at is not None:
        # Already allocated and credited at payment time: only release the status
        swapped = db.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == OrderStatus.UNDER_REVIEW.value)
            .values(status=OrderStatus.COMPLETED.value, completed_at=now, requires_manual_review=False, **review_fields)
            .execution_options(synchronize_session=False)
        )
        if swapped.rowcount != 1:
            db.session.rollback()
            raise ConflictError("Order was already reviewed")
        action = "released"
    elif previous in REJECTABLE and order.fulfilled_at is None:
        for key, value in review_fields.items():
            setattr(order, key, value)
        order.requires_manual_review = False
        if order.payment_status == PaymentStatus.COMPLETED.value:
            order.delivery_scheduled_at = None
            action = "fulfilled"
        else:
            action = "cleared"
    else:
        raise ConflictError(f"Order is {previous} and cannot be approved")

    record_audit(
        "order_approved",
        actor_user_id=admin.id,
        target_type="order",
        target_id=order.id,
        meta={
            "order_number": order.order_number,
            "previous_status": previous,
            "reason": reason or "",
            "total_amount": float(order.total_amount or 0.0),
            "seller_earnings": float(order.seller_earnings or 0.0),
            "action": action,
        },
    )
    db.session.commit()

    if action == "fulfilled":
        fulfill_order(order.id, order.buyer_id, None, hold_for_review=False, now=now)

    db.session.refresh(order)
    current_app.logger.info("order %s approved by admin %s (%s)", order.order_number, admin.id, action)
    _notify(order, "Order approved", f"Order {order.order_number} was approved and is now {order.status.lower()}.")
    return order


def reject_order(order_id: int, admin: User, *, reason: str | None = None, now: datetime | None = None) -> Order:
    now = now or datetime.utcnow()
    order = _load(order_id)
    previous = order.status
    if previous not in REJECTABLE:
        raise ConflictError(f"Order is {previous} and cannot be rejected")

    paid = order.payment_status == PaymentStatus.COMPLETED.value
    refund = round(float(order.total_amount or 0.0), 2) if paid else 0.0

    swapped = db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == previous)
        .values(
            status=OrderStatus.CANCELLED.value,
            payment_status=PaymentStatus.REFUNDED.value if paid else PaymentStatus.FAILED.value,
            cancelled_at=now,
            refunded_amount=refund,
            reviewed_by=admin.id,
            reviewed_at=now,
            review_note=(reason or "")[:500] or None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount != 1:
        db.session.rollback()
        raise ConflictError("Order changed while it was being reviewed")

    if paid:
        credit_wallet(
            order.buyer_id,
            refund,
            txn_type=WalletTxnType.REFUND_CREDIT,
            description=f"Order #{order.order_number} rejected by review",
            order_id=order.id,
            idempotency_key=f"review_reject:{order.id}",
            commit=False,
        )
    if order.payment is not None:
        order.payment.status = PaymentStatus.REFUNDED.value if paid else PaymentStatus.FAILED.value

    seller_debit = 0.0
    suspended = 0
    if order.fulfilled_at is not None:
        # Undo exactly what fulfillment applied
        seller_debit = round(float(order.seller_earnings or 0.0), 2)
        adjust_seller_balances(order.seller_id, earnings=-seller_debit, sales=-1)
        suspended = suspend_units_for_items([i.id for i in order.items])
        for item in order.items:
            db.session.execute(
                update(Product)
                .where(Product.id == item.product_id)
                .values(sold_count=Product.sold_count - int(item.quantity or 0))
                .execution_options(synchronize_session=False)
            )

    record_audit(
        "order_rejected",
        actor_user_id=admin.id,
        target_type="order",
        target_id=order.id,
        meta={
            "order_number": order.order_number,
            "previous_status": previous,
            "reason": reason or "",
            "refunded_amount": refund,
            "seller_debit": seller_debit,
            "units_suspended": suspended,
        },
    )
    db.session.commit()
    db.session.refresh(order)

    current_app.logger.info(
        "order %s rejected by admin %s refund=%.2f seller_debit=%.2f", order.order_number, admin.id, refund, seller_debit
    )
    msg = f"Order {order.order_number} was cancelled after review."
    if refund > 0:
        msg += f" ${refund:.2f} was credited to your wallet."
    _notify(order, "Order cancelled", msg)
    return order


def apply_review_action(order_id: int, admin: User, action: str, reason: str | None = None) -> Order:
    act = (action or "").strip().lower()
    if act == "approve":
        return approve_order(order_id, admin, reason=reason)
    if act == "reject":
        return reject_order(order_id, admin, reason=reason)
    raise ValidationError("action must be approve or reject")


def _notify(order: Order, title: str, message: str) -> None:
    try:
        queue_in_app(order.buyer_id, title, message, meta={"order_id": order.id})
        queue_email(order.buyer_id, title, message, meta={"order_id": order.id})
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("review notifications failed for order %s", order.order_number)
