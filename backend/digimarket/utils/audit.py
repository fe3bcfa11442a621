from __future__ import annotations

import json
from typing import Any, Dict, Optional

from digimarket.extensions import db
from digimarket.models import AuditLog


def record_audit(
    action: str,
    *,
    actor_user_id: Optional[int] = None,
    target_type: str = "",
    target_id: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Add an audit row to the current transaction (caller commits)."""
    row = AuditLog(
        actor_user_id=actor_user_id,
        action=action[:64],
        target_type=target_type or None,
        target_id=target_id,
        meta=json.dumps(meta or {}, default=str),
    )
    db.session.add(row)
    return row
