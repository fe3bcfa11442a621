"""Standalone wallet top-ups paid by crypto transfer with a memo token."""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from digimarket.extensions import db
from digimarket.models import User, WalletDeposit
from digimarket.payments.binance import BinanceDepositClient, find_match
from digimarket.payments.crypto_adapter import unused_memo_token
from digimarket.payments.registry import crypto_configured
from digimarket.utils.commission import round2
from digimarket.utils.enums import DepositStatus, WalletTxnType
from digimarket.utils.errors import ConflictError, ForbiddenError, NotFoundError, ProviderError, ValidationError
from digimarket.utils.notify import queue_in_app
from digimarket.utils.platform import PlatformConfig
from digimarket.utils.wallets import credit_wallet, wallet_balance

MIN_DEPOSIT = 1.0
MAX_DEPOSIT = 10_000.0
SANDBOX_ADDRESS = "SANDBOX-DEPOSIT-ADDRESS"

_PUBLIC_STATUS = {
    DepositStatus.PENDING.value: "pending",
    DepositStatus.COMPLETED.value: "completed",
    DepositStatus.EXPIRED.value: "expired",
    DepositStatus.FAILED.value: "expired",
}


def epoch_ms(dt: datetime) -> int:
    return calendar.timegm(dt.utctimetuple()) * 1000


def expire_deposits(now: datetime) -> int:
    res = db.session.execute(
        update(WalletDeposit)
        .where(WalletDeposit.status == DepositStatus.PENDING.value, WalletDeposit.expires_at <= now)
        .values(status=DepositStatus.EXPIRED.value)
        .execution_options(synchronize_session=False)
    )
    db.session.commit()
    return int(res.rowcount or 0)


def create_deposit(user: User, amount, *, config: PlatformConfig, now: datetime | None = None) -> WalletDeposit:
    now = now or datetime.utcnow()
    try:
        amt = round2(float(amount))
    except (TypeError, ValueError):
        raise ValidationError("Invalid amount")
    if amt < MIN_DEPOSIT or amt > MAX_DEPOSIT:
        raise ValidationError(f"Amount must be between ${MIN_DEPOSIT:.0f} and ${MAX_DEPOSIT:,.0f}")

    expire_deposits(now)
    live = WalletDeposit.query.filter_by(user_id=user.id, status=DepositStatus.PENDING.value).first()
    if live is not None:
        raise ConflictError("You already have a pending deposit", deposit=live.to_dict())

    app_config = current_app.config
    sandbox = not crypto_configured(app_config)
    dep = WalletDeposit(
        user_id=user.id,
        amount=amt,
        memo_token=unused_memo_token(),
        coin=app_config.get("BINANCE_DEPOSIT_COIN") or "USDT",
        network=app_config.get("BINANCE_DEPOSIT_NETWORK") or "TRC20",
        address=SANDBOX_ADDRESS if sandbox else app_config.get("BINANCE_DEPOSIT_ADDRESS"),
        sandbox=sandbox,
        status=DepositStatus.PENDING.value,
        expires_at=now + timedelta(minutes=config.deposit_expiry_minutes),
        created_at=now,
    )
    db.session.add(dep)
    db.session.commit()
    current_app.logger.info("deposit %s created user=%s amount=%.2f sandbox=%s", dep.id, user.id, amt, sandbox)
    return dep


def settle_deposit(deposit_id: int, *, tx_id: str, amount: float, now: datetime | None = None) -> bool:
    """Complete a pending deposit and credit the wallet, at most once.

    Returns False when another caller already moved the deposit out of PENDING.
    """
    now = now or datetime.utcnow()
    credited = round2(amount)
    swapped = db.session.execute(
        update(WalletDeposit)
        .where(WalletDeposit.id == int(deposit_id), WalletDeposit.status == DepositStatus.PENDING.value)
        .values(status=DepositStatus.COMPLETED.value, tx_id=tx_id[:128], credited_amount=credited, completed_at=now)
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount != 1:
        db.session.rollback()
        return False

    dep = db.session.get(WalletDeposit, int(deposit_id), populate_existing=True)
    try:
        credit_wallet(
            dep.user_id,
            credited,
            txn_type=WalletTxnType.DEPOSIT_CREDIT,
            description=f"Deposit {dep.memo_token}",
            deposit_id=dep.id,
            idempotency_key=f"deposit:{dep.id}",
            commit=False,
        )
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        current_app.logger.warning("deposit %s already settled (tx %s)", deposit_id, tx_id)
        return False

    current_app.logger.info("deposit %s completed user=%s amount=%.2f tx=%s", dep.id, dep.user_id, credited, tx_id)
    try:
        queue_in_app(dep.user_id, "Deposit received", f"${credited:.2f} was added to your wallet.", meta={"deposit_id": dep.id})
        db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("deposit notification failed for %s", dep.id)
    return True


def _owned(user: User, deposit_id) -> WalletDeposit:
    try:
        dep = db.session.get(WalletDeposit, int(deposit_id))
    except (TypeError, ValueError):
        raise ValidationError("depositId is required")
    if dep is None or dep.user_id != user.id:
        raise NotFoundError("Deposit not found")
    return dep


def verify_single_deposit(dep: WalletDeposit, client: BinanceDepositClient, config: PlatformConfig, now: datetime) -> bool:
    start = min(dep.created_at, now - timedelta(minutes=config.lookback_minutes))
    try:
        records = client.deposit_history(coin=dep.coin, start_time_ms=epoch_ms(start))
    except ProviderError as e:
        current_app.logger.warning("deposit %s verification skipped: %s", dep.id, e.message)
        return False
    match = find_match(
        records,
        memo_token=dep.memo_token,
        expected_amount=dep.amount,
        tolerance=config.amount_tolerance,
        used_tx_ids=set(),
    )
    if match is None:
        return False
    return settle_deposit(dep.id, tx_id=match.tx_id, amount=match.amount, now=now)


def deposit_status(
    user: User,
    deposit_id,
    *,
    config: PlatformConfig,
    client: BinanceDepositClient | None = None,
    now: datetime | None = None,
) -> dict:
    now = now or datetime.utcnow()
    dep = _owned(user, deposit_id)

    if dep.status == DepositStatus.PENDING.value:
        if dep.expires_at <= now:
            expire_deposits(now)
        elif client is not None and not dep.sandbox:
            verify_single_deposit(dep, client, config, now)
        db.session.refresh(dep)

    body = {"status": _PUBLIC_STATUS[dep.status], "deposit": dep.to_dict()}
    if dep.status == DepositStatus.COMPLETED.value:
        body["credited_amount"] = round2(dep.credited_amount)
        body["balance"] = wallet_balance(user.id)
    return body


def confirm_sandbox_deposit(user: User, deposit_id, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    dep = _owned(user, deposit_id)
    if not dep.sandbox:
        raise ForbiddenError("Only sandbox deposits can be confirmed manually")
    if dep.status != DepositStatus.PENDING.value:
        raise ConflictError(f"Deposit is already {_PUBLIC_STATUS[dep.status]}")
    if dep.expires_at <= now:
        expire_deposits(now)
        raise ConflictError("Deposit has expired")
    if not settle_deposit(dep.id, tx_id=f"sandbox_{dep.id}", amount=dep.amount, now=now):
        raise ConflictError("Deposit is no longer pending")
    db.session.refresh(dep)
    return {"status": "completed", "deposit": dep.to_dict(), "credited_amount": round2(dep.credited_amount), "balance": wallet_balance(user.id)}
