"""Seller payouts out of ``SellerProfile.available_balance``.

A request holds the money immediately: the balance is debited in the same
transaction that creates the PENDING row, guarded by
``available_balance >= amount`` so two concurrent requests cannot overdraw.
Rejection returns the amount; completion moves it into ``total_withdrawn``.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, Optional

from flask import current_app
from sqlalchemy import update

from digimarket.extensions import db
from digimarket.models import SellerProfile, User, Withdrawal
from digimarket.utils.audit import record_audit
from digimarket.utils.commission import round2
from digimarket.utils.enums import WithdrawalMethod, WithdrawalStatus
from digimarket.utils.errors import ConflictError, InsufficientFundsError, NotFoundError, ValidationError
from digimarket.utils.notify import queue_in_app

# action -> (required current status, new status)
_TRANSITIONS = {
    "approve": (WithdrawalStatus.PENDING, WithdrawalStatus.APPROVED),
    "reject": (WithdrawalStatus.PENDING, WithdrawalStatus.REJECTED),
    "complete": (WithdrawalStatus.APPROVED, WithdrawalStatus.COMPLETED),
}


def _parse_method(raw) -> WithdrawalMethod:
    try:
        return WithdrawalMethod(str(raw or "").strip().lower())
    except ValueError:
        raise ValidationError("Invalid withdrawal method")


def _clean_account_info(method: WithdrawalMethod, info) -> Dict[str, str]:
    if not isinstance(info, dict):
        raise ValidationError("Account information is required")
    cleaned = {str(k): str(v).strip() for k, v in info.items() if v is not None}
    missing = [f for f in method.required_fields if not cleaned.get(f)]
    if missing:
        raise ValidationError(f"Missing account fields: {', '.join(missing)}", missing=missing)
    return cleaned


def request_withdrawal(
    seller: SellerProfile,
    amount,
    method,
    account_info: Optional[Dict[str, Any]],
    *,
    now: Optional[datetime] = None,
) -> Withdrawal:
    now = now or datetime.utcnow()
    try:
        amt = round2(float(amount))
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number")
    if amt <= 0:
        raise ValidationError("Amount must be greater than 0")
    wm = _parse_method(method)
    info = _clean_account_info(wm, account_info)

    res = db.session.execute(
        update(SellerProfile)
        .where(SellerProfile.id == seller.id, SellerProfile.available_balance >= amt)
        .values(available_balance=SellerProfile.available_balance - amt, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.session.rollback()
        fresh = db.session.get(SellerProfile, seller.id, populate_existing=True)
        raise InsufficientFundsError(fresh.available_balance if fresh is not None else 0.0)

    w = Withdrawal(
        seller_id=seller.id,
        amount=amt,
        method=wm.value,
        account_info=json.dumps(info),
        status=WithdrawalStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    db.session.add(w)
    db.session.flush()
    record_audit(
        "withdrawal_requested",
        actor_user_id=seller.user_id,
        target_type="withdrawal",
        target_id=w.id,
        meta={"amount": amt, "method": wm.value},
    )
    db.session.commit()
    db.session.refresh(seller)
    current_app.logger.info("withdrawal %s requested seller=%s amount=%.2f method=%s", w.id, seller.id, amt, wm.value)
    return w


def review_withdrawal(
    withdrawal_id: int,
    admin: User,
    action: str,
    note: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Withdrawal:
    now = now or datetime.utcnow()
    action = (action or "").strip().lower()
    if action not in _TRANSITIONS:
        raise ValidationError("Invalid action")
    w = db.session.get(Withdrawal, int(withdrawal_id), populate_existing=True)
    if w is None:
        raise NotFoundError("Withdrawal not found")

    current, target = _TRANSITIONS[action]
    note = (note or "").strip()[:500] or None
    values: Dict[str, Any] = {"status": target.value, "updated_at": now}
    if action == "complete":
        values["completed_at"] = now
    else:
        values.update(reviewed_by=admin.id, reviewed_at=now, review_note=note)

    swapped = db.session.execute(
        update(Withdrawal)
        .where(Withdrawal.id == w.id, Withdrawal.status == current.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if swapped.rowcount != 1:
        db.session.rollback()
        raise ConflictError(f"Only {current.value.lower()} withdrawals can be {target.value.lower()}")

    amt = round2(w.amount)
    if target is WithdrawalStatus.REJECTED:
        _move_seller_balance(w.seller_id, available=amt, now=now)
    elif target is WithdrawalStatus.COMPLETED:
        _move_seller_balance(w.seller_id, withdrawn=amt, now=now)

    record_audit(
        f"withdrawal_{target.value.lower()}",
        actor_user_id=admin.id,
        target_type="withdrawal",
        target_id=w.id,
        meta={"amount": amt, "method": w.method, "note": note},
    )
    db.session.commit()
    w = db.session.get(Withdrawal, w.id, populate_existing=True)
    current_app.logger.info("withdrawal %s %s by admin=%s amount=%.2f", w.id, target.value, admin.id, amt)
    _notify_seller(w, target, note)
    return w


def _move_seller_balance(seller_id: int, *, available: float = 0.0, withdrawn: float = 0.0, now: datetime) -> None:
    db.session.execute(
        update(SellerProfile)
        .where(SellerProfile.id == int(seller_id))
        .values(
            available_balance=SellerProfile.available_balance + available,
            total_withdrawn=SellerProfile.total_withdrawn + withdrawn,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )


def _notify_seller(w: Withdrawal, status: WithdrawalStatus, note: Optional[str]) -> None:
    if status is WithdrawalStatus.APPROVED:
        title, msg = "Withdrawal approved", f"Your withdrawal of ${w.amount:.2f} was approved and will be paid soon."
    elif status is WithdrawalStatus.REJECTED:
        title = "Withdrawal rejected"
        msg = f"Your withdrawal was rejected: {note}" if note else "Your withdrawal was rejected. Contact support for details."
    else:
        return
    try:
        if w.seller is not None:
            queue_in_app(w.seller.user_id, title, msg, meta={"withdrawal_id": w.id})
            db.session.commit()
    except Exception:
        db.session.rollback()
        current_app.logger.exception("withdrawal notification failed for %s", w.id)


def withdrawal_stats() -> Dict[str, Dict[str, float]]:
    """Count and amount per status, for the admin listing."""
    rows = (
        db.session.query(Withdrawal.status, db.func.count(Withdrawal.id), db.func.coalesce(db.func.sum(Withdrawal.amount), 0.0))
        .group_by(Withdrawal.status)
        .all()
    )
    out = {s.value.lower(): {"count": 0, "amount": 0.0} for s in WithdrawalStatus}
    for status, count, total in rows:
        out[str(status).lower()] = {"count": int(count), "amount": round2(total)}
    return out
