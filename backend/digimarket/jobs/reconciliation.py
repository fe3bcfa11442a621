"""Crypto transfer reconciliation.

Each cycle expires what is past its deadline, then pulls the provider's
deposit history once per coin and matches every pending memo against it:
checkout payments are recorded as paid and then go through
``fulfill_or_refund``, wallet top-ups through ``settle_deposit``. Both settle
with a compare-and-swap, so overlapping cycles (or a buyer polling at the
same moment) cannot settle anything twice. A recorded payment is never
expired: if its order cannot be delivered the buyer is refunded to the wallet.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from flask import current_app

from digimarket.extensions import db
from digimarket.models import Order, Payment, WalletDeposit
from digimarket.payments.binance import BinanceDepositClient, DepositRecord, find_match
from digimarket.utils.checkout import fail_pending_payment
from digimarket.utils.deposits import epoch_ms, expire_deposits, settle_deposit
from digimarket.utils.enums import DepositStatus, OrderStatus, PaymentMethod, PaymentStatus
from digimarket.utils.errors import MarketError, ProviderError
from digimarket.utils.fulfillment import fulfill_or_refund, record_payment
from digimarket.utils.platform import PlatformConfig


def _now():
    return datetime.utcnow()


def expire_pending_payments(now: datetime) -> int:
    """QR and crypto payments past their window fail and their orders are cancelled."""
    rows = (
        Payment.query.filter(
            Payment.payment_method.in_([PaymentMethod.CRYPTO_TRANSFER.value, PaymentMethod.QR.value]),
            Payment.status == PaymentStatus.PENDING.value,
            Payment.expires_at.isnot(None),
            Payment.expires_at <= now,
        )
        .order_by(Payment.id.asc())
        .all()
    )
    expired = 0
    for payment in rows:
        if fail_pending_payment(payment, now):
            expired += 1
    db.session.commit()
    if expired:
        current_app.logger.warning("expired %s pending payments", expired)
    return expired


class _PendingCheckout:
    """All payments of one checkout share a memo; the transfer covers their sum."""

    def __init__(self, memo: str, coin: str, buyer_id: int):
        self.memo = memo
        self.coin = coin
        self.buyer_id = buyer_id
        self.order_ids: List[int] = []
        self.expected = 0.0

    def add(self, payment: Payment) -> None:
        self.order_ids.append(int(payment.order_id))
        self.expected = round(self.expected + float(payment.amount or 0.0), 2)


def _pending_checkouts(now: datetime) -> List[_PendingCheckout]:
    rows = (
        Payment.query.join(Order, Order.id == Payment.order_id)
        .filter(
            Payment.payment_method == PaymentMethod.CRYPTO_TRANSFER.value,
            Payment.status == PaymentStatus.PENDING.value,
            Payment.provider_reference.isnot(None),
            Payment.expires_at > now,
        )
        .order_by(Payment.id.asc())
        .all()
    )
    groups: "OrderedDict[str, _PendingCheckout]" = OrderedDict()
    for payment in rows:
        details = payment.details
        coin = getattr(details, "coin", None) or current_app.config.get("BINANCE_DEPOSIT_COIN") or "USDT"
        group = groups.get(payment.provider_reference)
        if group is None:
            group = groups[payment.provider_reference] = _PendingCheckout(payment.provider_reference, coin, payment.order.buyer_id)
        group.add(payment)
    return list(groups.values())


def retry_paid_orders(now: datetime, *, limit: int = 100) -> dict:
    """Orders whose payment was recorded but whose fulfillment never finished."""
    rows = (
        Order.query.filter(
            Order.status == OrderStatus.PENDING.value,
            Order.payment_status == PaymentStatus.COMPLETED.value,
            Order.fulfilled_at.is_(None),
        )
        .order_by(Order.id.asc())
        .limit(int(limit))
        .all()
    )
    fulfilled = 0
    refunded = 0
    for order in rows:
        external_id = order.payment.external_payment_id if order.payment else None
        try:
            res = fulfill_or_refund(order.id, external_id, now=now)
        except MarketError as e:
            current_app.logger.error("reconciliation: paid order %s still pending: %s", order.order_number, e.message)
            continue
        if res.outcome == "refunded":
            refunded += 1
        elif res.changed:
            fulfilled += 1
    return {"fulfilled": fulfilled, "refunded": refunded}


def _pending_deposits(now: datetime) -> List[WalletDeposit]:
    return (
        WalletDeposit.query.filter(
            WalletDeposit.status == DepositStatus.PENDING.value,
            WalletDeposit.sandbox.is_(False),
            WalletDeposit.expires_at > now,
        )
        .order_by(WalletDeposit.id.asc())
        .all()
    )


def _fetch_history(client: BinanceDepositClient, coins, since: datetime) -> Dict[str, List[DepositRecord]]:
    history: Dict[str, List[DepositRecord]] = {}
    for coin in sorted(coins):
        try:
            history[coin] = client.deposit_history(coin=coin, start_time_ms=epoch_ms(since))
        except ProviderError as e:
            current_app.logger.warning("reconciliation: %s history unavailable: %s", coin, e.message)
    return history


def _already_used(records: Dict[str, List[DepositRecord]]) -> set:
    tx_ids = {r.tx_id for rows in records.values() for r in rows if r.tx_id}
    if not tx_ids:
        return set()
    used = {t for (t,) in db.session.query(WalletDeposit.tx_id).filter(WalletDeposit.tx_id.in_(tx_ids)).all()}
    used |= {t for (t,) in db.session.query(Payment.external_payment_id).filter(Payment.external_payment_id.in_(tx_ids)).all()}
    return used


def run_reconciliation(
    *,
    config: PlatformConfig,
    client: Optional[BinanceDepositClient],
    now: datetime | None = None,
) -> dict:
    now = now or _now()
    expired = expire_pending_payments(now) + expire_deposits(now)
    retried = retry_paid_orders(now)

    checkouts = _pending_checkouts(now)
    deposits = _pending_deposits(now)
    checked = len(checkouts) + len(deposits)
    verified = 0
    failed = 0

    if checked and client is None:
        current_app.logger.warning("reconciliation: %s pending items but no provider credentials", checked)
    if not checked or client is None:
        return {"ok": True, "checked": checked, "verified": 0, "expired": expired, "failed": 0, "retried": retried, "ts": now.isoformat()}

    coins = {c.coin for c in checkouts} | {d.coin for d in deposits}
    history = _fetch_history(client, coins, now - timedelta(minutes=config.lookback_minutes))
    used = _already_used(history)

    for pending in checkouts:
        match = find_match(
            history.get(pending.coin, []),
            memo_token=pending.memo,
            expected_amount=pending.expected,
            tolerance=config.amount_tolerance,
            used_tx_ids=used,
        )
        if match is None:
            continue
        used.add(match.tx_id)
        # The transfer covers the whole group: record it on every payment before delivering anything
        recorded = [record_payment(order_id, match.tx_id, now=now, commit=False) for order_id in pending.order_ids]
        db.session.commit()
        if any(recorded):
            verified += 1
        for order_id in pending.order_ids:
            try:
                res = fulfill_or_refund(order_id, match.tx_id, now=now)
            except MarketError as e:
                failed += 1
                current_app.logger.error("reconciliation: order %s not fulfilled: %s", order_id, e.message)
                continue
            if res.outcome == "refunded":
                failed += 1

    for dep in deposits:
        match = find_match(
            history.get(dep.coin, []),
            memo_token=dep.memo_token,
            expected_amount=dep.amount,
            tolerance=config.amount_tolerance,
            used_tx_ids=used,
        )
        if match is None:
            continue
        used.add(match.tx_id)
        if settle_deposit(dep.id, tx_id=match.tx_id, amount=match.amount, now=now):
            verified += 1

    current_app.logger.info("reconciliation checked=%s verified=%s expired=%s failed=%s", checked, verified, expired, failed)
    return {
        "ok": True,
        "checked": checked,
        "verified": verified,
        "expired": expired,
        "failed": failed,
        "retried": retried,
        "ts": now.isoformat(),
    }
