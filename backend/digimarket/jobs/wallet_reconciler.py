from __future__ import annotations

from datetime import datetime

from flask import current_app

from digimarket.extensions import db
from digimarket.models import Wallet
from digimarket.utils.audit import record_audit
from digimarket.utils.wallets import replay_ledger


def audit_wallet_ledgers(*, limit: int = 500, tolerance: float = 0.01) -> dict:
    """Replay each wallet's log against its stored balance.

    Does NOT correct balances. Disagreements become ``wallet_anomaly`` audit
    rows for an operator to look at.
    """
    checked = 0
    anomalies = 0
    now = datetime.utcnow()

    wallets = Wallet.query.order_by(Wallet.id.asc()).limit(int(limit)).all()
    for w in wallets:
        checked += 1
        replay = replay_ledger(int(w.user_id))
        stored = float(w.balance or 0.0)

        issues = []
        if abs(replay["ledger_sum"] - stored) > tolerance:
            issues.append("ledger_mismatch")
        if replay["entries"] and abs(replay["last_snapshot"] - stored) > tolerance:
            issues.append("snapshot_mismatch")
        if stored < -tolerance:
            issues.append("negative_balance")
        if not issues:
            continue

        anomalies += 1
        record_audit(
            "wallet_anomaly",
            target_type="wallet",
            target_id=int(w.id),
            meta={
                "issues": issues,
                "wallet_id": int(w.id),
                "user_id": int(w.user_id),
                "ledger_sum": replay["ledger_sum"],
                "last_snapshot": replay["last_snapshot"],
                "stored_balance": round(stored, 2),
                "at": now.isoformat(),
            },
        )
    db.session.commit()

    if anomalies:
        current_app.logger.warning("wallet audit found %s anomalies in %s wallets", anomalies, checked)
    return {"ok": True, "checked": checked, "anomalies": anomalies, "ts": now.isoformat()}
