"""Cart to orders: validation, per-seller split, risk flags, payment dispatch."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List

from flask import current_app
from sqlalchemy import update

from digimarket.extensions import db
from digimarket.models import Order, OrderItem, Payment, Product, User
from digimarket.payments.base import PaymentAdapter, grand_total
from digimarket.utils.commission import compute_breakdown, generate_order_number, round2
from digimarket.utils.enums import DeliveryType, OrderStatus, PaymentMethod, PaymentStatus
from digimarket.utils.errors import ForbiddenError, InsufficientStockError, MarketError, NotFoundError, ValidationError
from digimarket.utils.fulfillment import fulfill_or_refund, record_payment
from digimarket.utils.inventory import count_available
from digimarket.utils.platform import PlatformConfig
from digimarket.utils.risk import assess_fraud_risk

MAX_LINE_QUANTITY = 100


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int


def parse_cart(raw_items) -> List[CartLine]:
    """Validate ``[{"product_id", "quantity"}]``; repeated products are merged."""
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Your cart is empty")
    merged: "OrderedDict[int, int]" = OrderedDict()
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise ValidationError("Invalid cart item")
        try:
            pid = int(raw.get("product_id", raw.get("productId")))
            qty = int(raw.get("quantity", 1))
        except (TypeError, ValueError):
            raise ValidationError("Invalid cart item")
        if qty <= 0:
            raise ValidationError("Quantity must be at least 1")
        merged[pid] = merged.get(pid, 0) + qty
        if merged[pid] > MAX_LINE_QUANTITY:
            raise ValidationError(f"Maximum {MAX_LINE_QUANTITY} units per product")
    return [CartLine(pid, qty) for pid, qty in merged.items()]


def _load_products(lines: List[CartLine]) -> dict:
    ids = [line.product_id for line in lines]
    products = (
        Product.query.filter(Product.id.in_(ids))
        .filter(Product.is_active.is_(True))
        .filter(Product.is_deleted.is_(False))
        .all()
    )
    by_id = {p.id: p for p in products}
    if len(by_id) != len(ids):
        raise ValidationError("One or more products are not available")
    for p in products:
        if p.seller is None or (p.seller.status or "") != "ACTIVE":
            raise ValidationError(f'"{p.name}" is not available right now')
    return by_id


def _check_stock(lines: List[CartLine], products: dict) -> None:
    for line in lines:
        product = products[line.product_id]
        if product.delivery_type != DeliveryType.INSTANT.value:
            continue
        available = count_available(product)
        if available < line.quantity:
            raise InsufficientStockError(product.name, available)


def _group_by_seller(lines: List[CartLine], products: dict) -> "OrderedDict[int, list]":
    groups: "OrderedDict[int, list]" = OrderedDict()
    for line in lines:
        product = products[line.product_id]
        groups.setdefault(product.seller_id, []).append((product, line.quantity))
    return groups


def _build_order(buyer: User, seller, lines, method: PaymentMethod, config: PlatformConfig, now: datetime) -> Order:
    subtotal = round2(sum(float(p.price) * qty for p, qty in lines))
    fees = compute_breakdown(
        subtotal,
        fee_fixed=config.service_fee_fixed,
        fee_percent=config.service_fee_percent,
        commission_rate=seller.commission_rate if seller.commission_rate is not None else config.default_commission_rate,
    )
    order = Order(
        order_number=generate_order_number(now),
        buyer_id=buyer.id,
        seller_id=seller.id,
        subtotal=fees.subtotal,
        service_fee_fixed=fees.service_fee_fixed,
        service_fee_percent=fees.service_fee_percent,
        service_fee_amount=fees.service_fee_amount,
        total_amount=fees.total_amount,
        commission_rate=fees.commission_rate,
        commission_amount=fees.commission_amount,
        seller_earnings=fees.seller_earnings,
        payment_method=method.value,
        payment_status=PaymentStatus.PENDING.value,
        status=OrderStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    for product, qty in lines:
        order.items.append(
            OrderItem(
                product_id=product.id,
                product_name=product.name,
                product_type=product.product_type,
                delivery_type=product.delivery_type,
                streaming_mode=product.streaming_mode,
                duration_days=product.duration_days,
                quantity=qty,
                unit_price=float(product.price),
                total_price=round2(float(product.price) * qty),
            )
        )
    order.payment = Payment(payment_method=method.value, amount=fees.total_amount, currency="USD")
    return order


def checkout(
    *,
    buyer: User,
    lines: List[CartLine],
    method: PaymentMethod,
    adapter: PaymentAdapter,
    config: PlatformConfig,
    now: datetime | None = None,
) -> dict:
    now = now or datetime.utcnow()
    products = _load_products(lines)
    _check_stock(lines, products)
    groups = _group_by_seller(lines, products)

    orders: List[Order] = []
    for _seller_id, group in groups.items():
        seller = group[0][0].seller
        orders.append(_build_order(buyer, seller, group, method, config, now))

    risk = assess_fraud_risk(
        buyer_id=buyer.id,
        total_amount=grand_total(orders),
        payment_method=method,
        item_count=sum(line.quantity for line in lines),
        config=config,
        now=now,
    )
    scheduled = now + timedelta(minutes=risk.delay_minutes) if risk.should_delay else None
    for order in orders:
        order.is_high_value = risk.is_high_value
        order.requires_manual_review = risk.requires_manual_review
        order.risk_score = risk.score
        order.delivery_scheduled_at = scheduled
        db.session.add(order)
    db.session.flush()

    if method.needs_external_confirmation and not adapter.demo:
        # Orders exist before the provider call so a failed call can be retried
        db.session.commit()

    try:
        outcome = adapter.initiate(orders, buyer, config)
    except MarketError as e:
        db.session.rollback()
        current_app.logger.warning("checkout payment %s failed for buyer %s: %s", method.value, buyer.id, e.message)
        raise

    if outcome.settled:
        for order in orders:
            order.payment_status = PaymentStatus.COMPLETED.value
            order.payment.status = PaymentStatus.COMPLETED.value
            order.payment.external_payment_id = outcome.external_ids.get(order.id)
            order.payment.completed_at = now
    db.session.commit()

    current_app.logger.info(
        "checkout buyer=%s method=%s orders=%s total=%.2f risk=%s",
        buyer.id,
        method.value,
        [o.order_number for o in orders],
        grand_total(orders),
        risk.score,
    )

    refunded = []
    if outcome.settled:
        # One seller running out of stock must not strand the other orders
        for order in orders:
            res = fulfill_or_refund(order.id, outcome.external_ids.get(order.id), now=now)
            if res.outcome == "refunded":
                refunded.append(order.id)
        for order in orders:
            db.session.refresh(order)

    body = dict(outcome.response)
    body["order_ids"] = [o.id for o in orders]
    body["orders"] = [
        {"id": o.id, "order_number": o.order_number, "total_amount": o.total_amount, "status": o.status}
        for o in orders
    ]
    body["total"] = grand_total(orders)
    body["requires_manual_review"] = risk.requires_manual_review
    if refunded:
        body["refunded_order_ids"] = refunded
    return body


def fee_preview(config: PlatformConfig) -> dict:
    return {
        "service_fee_fixed": config.service_fee_fixed,
        "service_fee_percent": config.service_fee_percent,
    }


def _buyer_orders(order_ids, buyer: User) -> List[Order]:
    try:
        ids = [int(i) for i in (order_ids or [])]
    except (TypeError, ValueError):
        raise ValidationError("Invalid order ids")
    if not ids:
        raise ValidationError("order_ids is required")
    orders = Order.query.filter(Order.id.in_(ids), Order.buyer_id == buyer.id).order_by(Order.id).all()
    if len(orders) != len(set(ids)):
        raise NotFoundError("Order not found")
    return orders


def checkout_status(order_ids, buyer: User, now: datetime | None = None) -> dict:
    """Read-only poll: pending | completed | expired across a checkout's orders."""
    now = now or datetime.utcnow()
    orders = _buyer_orders(order_ids, buyer)
    settled = (OrderStatus.PROCESSING.value, OrderStatus.UNDER_REVIEW.value, OrderStatus.COMPLETED.value)
    if all(o.status in settled for o in orders):
        state = "completed"
    elif any(
        o.status == OrderStatus.CANCELLED.value
        or o.payment_status == PaymentStatus.FAILED.value
        or (o.payment is not None and o.payment.expires_at is not None and o.payment.expires_at <= now
            and o.payment.status == PaymentStatus.PENDING.value)
        for o in orders
    ):
        state = "expired"
    else:
        state = "pending"
    return {"status": state, "orders": [o.to_dict(include_items=False) for o in orders]}


def confirm_qr_orders(order_ids, buyer: User) -> dict:
    """Sandbox confirmation for QR checkouts when no QR provider is configured."""
    if (current_app.config.get("QR_API_URL") or "").strip():
        raise ForbiddenError("QR payments are confirmed by the provider")
    orders = _buyer_orders(order_ids, buyer)
    results = []
    for order in orders:
        if order.payment_method != PaymentMethod.QR.value:
            raise ValidationError(f"Order {order.order_number} is not a QR payment")
        if order.status != OrderStatus.PENDING.value:
            results.append({"id": order.id, "status": order.status})
            continue
        details = order.payment.details if order.payment else None
        reference = getattr(details, "reference", None) or f"qr_confirm_{order.id}"
        res = fulfill_or_refund(order.id, reference)
        results.append({"id": order.id, "status": res.status})
    return {"ok": True, "orders": results}


def fail_pending_payment(payment: Payment, now: datetime) -> bool:
    """PENDING payment -> FAILED and its PENDING order -> CANCELLED. Caller commits."""
    swapped = db.session.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.PENDING.value)
        .values(status=PaymentStatus.FAILED.value)
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount != 1:
        return False
    db.session.execute(
        update(Order)
        .where(Order.id == payment.order_id, Order.status == OrderStatus.PENDING.value)
        .values(
            status=OrderStatus.CANCELLED.value,
            payment_status=PaymentStatus.FAILED.value,
            cancelled_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    return True


def settle_by_reference(reference: str, external_payment_id: str, now: datetime | None = None) -> list:
    """Fulfill every order of the checkout that shares ``reference``."""
    payments = Payment.query.filter_by(provider_reference=reference).order_by(Payment.id).all()
    results = []
    now = now or datetime.utcnow()
    for payment in payments:
        record_payment(payment.order_id, external_payment_id, now=now, commit=False)
    db.session.commit()
    for payment in payments:
        results.append(fulfill_or_refund(payment.order_id, external_payment_id, now=now))
    return results
