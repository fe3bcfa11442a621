from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from digimarket.extensions import db
from digimarket.models import Wallet, WalletTxn
from digimarket.utils.commission import round2
from digimarket.utils.enums import WalletTxnType
from digimarket.utils.errors import InsufficientFundsError, ValidationError


def get_or_create_wallet(user_id: int) -> Wallet:
    w = Wallet.query.filter_by(user_id=user_id).first()
    if w:
        return w
    w = Wallet(user_id=user_id, balance=0.0, currency="USD")
    try:
        db.session.add(w)
        db.session.flush()
        return w
    except IntegrityError:
        db.session.rollback()
        w = Wallet.query.filter_by(user_id=user_id).first()
        if w:
            return w
        raise


def wallet_balance(user_id: int) -> float:
    bal = db.session.scalar(select(Wallet.balance).where(Wallet.user_id == int(user_id)))
    return round2(bal or 0.0)


def _existing(idempotency_key: str | None) -> WalletTxn | None:
    if not idempotency_key:
        return None
    return WalletTxn.query.filter_by(idempotency_key=idempotency_key).first()


def _apply(
    *,
    user_id: int,
    delta: float,
    txn_type: WalletTxnType,
    description: str,
    order_id: int | None,
    refund_id: int | None,
    deposit_id: int | None,
    idempotency_key: str | None,
    commit: bool,
) -> WalletTxn:
    wallet = get_or_create_wallet(int(user_id))

    stmt = update(Wallet).where(Wallet.id == wallet.id)
    if delta < 0:
        # Guarded in the UPDATE itself so two debits can't both pass the check
        stmt = stmt.where(Wallet.balance >= -delta - 0.000001)
    stmt = stmt.values(balance=Wallet.balance + delta, updated_at=datetime.utcnow())
    res = db.session.execute(stmt.execution_options(synchronize_session=False))
    if res.rowcount != 1:
        available = wallet_balance(user_id)
        if commit:
            db.session.rollback()
        raise InsufficientFundsError(available)

    db.session.expire(wallet)
    after = round2(db.session.scalar(select(Wallet.balance).where(Wallet.id == wallet.id)))

    txn = WalletTxn(
        wallet_id=wallet.id,
        user_id=int(user_id),
        txn_type=txn_type.value,
        amount=delta,
        balance_before=round2(after - delta),
        balance_after=after,
        description=(description or "")[:240],
        order_id=order_id,
        refund_id=refund_id,
        deposit_id=deposit_id,
        idempotency_key=idempotency_key[:160] if idempotency_key else None,
    )
    db.session.add(txn)
    if not commit:
        db.session.flush()
        return txn
    try:
        db.session.commit()
    except IntegrityError:
        # Same idempotency key committed by a concurrent caller
        db.session.rollback()
        existing = _existing(idempotency_key)
        if existing:
            return existing
        raise
    return txn


def credit_wallet(
    user_id: int,
    amount: float,
    *,
    txn_type: WalletTxnType = WalletTxnType.DEPOSIT_CREDIT,
    description: str = "",
    order_id: int | None = None,
    refund_id: int | None = None,
    deposit_id: int | None = None,
    idempotency_key: str | None = None,
    commit: bool = True,
) -> WalletTxn:
    """Add funds and append the ledger row in the same transaction.

    With an ``idempotency_key`` a second call returns the first row untouched.
    """
    amt = round2(amount)
    if amt <= 0:
        raise ValidationError("Amount must be greater than zero")
    existing = _existing(idempotency_key)
    if existing:
        return existing
    return _apply(
        user_id=user_id,
        delta=amt,
        txn_type=txn_type,
        description=description,
        order_id=order_id,
        refund_id=refund_id,
        deposit_id=deposit_id,
        idempotency_key=idempotency_key,
        commit=commit,
    )


def debit_wallet(
    user_id: int,
    amount: float,
    *,
    txn_type: WalletTxnType = WalletTxnType.PURCHASE_DEBIT,
    description: str = "",
    order_id: int | None = None,
    idempotency_key: str | None = None,
    commit: bool = True,
) -> WalletTxn:
    """Remove funds or raise ``InsufficientFundsError`` leaving the balance as it was."""
    amt = round2(amount)
    if amt <= 0:
        raise ValidationError("Amount must be greater than zero")
    existing = _existing(idempotency_key)
    if existing:
        return existing
    return _apply(
        user_id=user_id,
        delta=-amt,
        txn_type=txn_type,
        description=description,
        order_id=order_id,
        refund_id=None,
        deposit_id=None,
        idempotency_key=idempotency_key,
        commit=commit,
    )


def replay_ledger(user_id: int) -> dict:
    """Rebuild a balance from the log: signed sum plus the last snapshot."""
    total = db.session.scalar(select(func.coalesce(func.sum(WalletTxn.amount), 0.0)).where(WalletTxn.user_id == int(user_id)))
    last = (
        WalletTxn.query.filter_by(user_id=int(user_id))
        .order_by(WalletTxn.id.desc())
        .first()
    )
    return {
        "ledger_sum": round2(total or 0.0),
        "last_snapshot": round2(last.balance_after) if last else 0.0,
        "entries": WalletTxn.query.filter_by(user_id=int(user_id)).count(),
    }
