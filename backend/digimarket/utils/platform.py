"""Admin-editable platform knobs, materialized as an immutable value.

Services never read ``PlatformSettings`` directly; the segment layer loads a
``PlatformConfig`` once per request (or job run) and passes it down, so tests
can build one by hand.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from datetime import datetime

from digimarket.extensions import db
from digimarket.models import PlatformSettings
from digimarket.utils.errors import ValidationError


@dataclass(frozen=True)
class PlatformConfig:
    service_fee_fixed: float = 0.0
    service_fee_percent: float = 0.0
    default_commission_rate: float = 10.0

    high_value_threshold: float = 100.0
    manual_review_threshold: float = 500.0
    delivery_delay_minutes: int = 0
    velocity_window_minutes: int = 60
    velocity_limit: int = 3

    deposit_expiry_minutes: int = 60
    crypto_payment_expiry_minutes: int = 60
    amount_tolerance: float = 0.01
    lookback_minutes: int = 180

    refund_window_days: int = 30

    @classmethod
    def from_settings(cls, row: PlatformSettings) -> "PlatformConfig":
        values = {}
        for f in fields(cls):
            raw = getattr(row, f.name, None)
            if raw is None:
                continue
            values[f.name] = int(raw) if f.type == "int" else float(raw)
        return cls(**values)

    def with_overrides(self, **changes) -> "PlatformConfig":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return asdict(self)


def _get_or_create_settings() -> PlatformSettings:
    row = db.session.get(PlatformSettings, 1)
    if row is None:
        row = PlatformSettings(id=1)
        db.session.add(row)
        db.session.commit()
    return row


def load_platform_config() -> PlatformConfig:
    return PlatformConfig.from_settings(_get_or_create_settings())


_NON_NEGATIVE_FLOATS = (
    "service_fee_fixed",
    "service_fee_percent",
    "default_commission_rate",
    "high_value_threshold",
    "manual_review_threshold",
    "amount_tolerance",
)
_NON_NEGATIVE_INTS = (
    "delivery_delay_minutes",
    "velocity_window_minutes",
    "velocity_limit",
    "deposit_expiry_minutes",
    "crypto_payment_expiry_minutes",
    "lookback_minutes",
    "refund_window_days",
)


def update_platform_settings(payload: dict, *, actor_id: int | None = None) -> PlatformConfig:
    """Apply a partial update. Unknown keys are ignored, bad values rejected."""
    changes = {}
    for name in _NON_NEGATIVE_FLOATS:
        if name not in payload:
            continue
        try:
            value = float(payload[name])
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be a number")
        if value < 0:
            raise ValidationError(f"{name} must be >= 0")
        changes[name] = value
    for name in _NON_NEGATIVE_INTS:
        if name not in payload:
            continue
        try:
            value = int(payload[name])
        except (TypeError, ValueError):
            raise ValidationError(f"{name} must be an integer")
        if value < 0:
            raise ValidationError(f"{name} must be >= 0")
        changes[name] = value
    for name in ("service_fee_percent", "default_commission_rate"):
        if changes.get(name, 0) > 100:
            raise ValidationError(f"{name} must be <= 100")

    row = _get_or_create_settings()
    for name, value in changes.items():
        setattr(row, name, value)

    row.updated_by = actor_id
    row.updated_at = datetime.utcnow()
    db.session.add(row)
    db.session.commit()
    return PlatformConfig.from_settings(row)
