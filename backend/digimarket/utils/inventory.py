"""Unit-level digital inventory: counting, exclusive claims, seller uploads.

Every claim is a conditional UPDATE (``... WHERE id = ? AND status = 'AVAILABLE'``)
so two allocations racing for the same unit can never both win it.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import select, update

from digimarket.extensions import db
from digimarket.models import GiftCardCode, OrderItem, Product, StreamingAccount, StreamingProfile
from digimarket.utils.encryption import decrypt_text, encrypt_text, fingerprint
from digimarket.utils.enums import InventoryStatus, ProductType, StreamingMode
from digimarket.utils.errors import FulfillmentError, ValidationError

MAX_CODES_PER_UPLOAD = 500
MAX_ACCOUNTS_PER_UPLOAD = 100
MAX_PROFILES_PER_ACCOUNT = 10

AVAILABLE = InventoryStatus.AVAILABLE.value


def unit_model_for(product_type: str, streaming_mode: str | None):
    """The table a product's sellable units live in."""
    if ProductType(product_type) is ProductType.STREAMING:
        if (streaming_mode or "") == StreamingMode.PROFILE.value:
            return StreamingProfile
        return StreamingAccount
    return GiftCardCode


def count_available(product: Product) -> int:
    model = unit_model_for(product.product_type, product.streaming_mode)
    cnt = (
        db.session.query(db.func.count(model.id))
        .filter(model.product_id == product.id)
        .filter(model.status == AVAILABLE)
        .scalar()
    )
    return int(cnt or 0)


def _claim_one(model, unit_id: int, *, buyer_id: int, order_item_id: int, now: datetime, extra: dict | None = None) -> bool:
    values = {"status": InventoryStatus.SOLD.value, "buyer_id": buyer_id, "order_item_id": order_item_id, "sold_at": now}
    values.update(extra or {})
    res = db.session.execute(
        update(model)
        .where(model.id == unit_id, model.status == AVAILABLE)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def _mark_profile_sold(account_id: int) -> None:
    db.session.execute(
        update(StreamingAccount)
        .where(StreamingAccount.id == account_id)
        .values(sold_profiles=StreamingAccount.sold_profiles + 1)
        .execution_options(synchronize_session=False)
    )
    db.session.execute(
        update(StreamingAccount)
        .where(
            StreamingAccount.id == account_id,
            StreamingAccount.sold_profiles >= StreamingAccount.max_profiles,
            StreamingAccount.status == AVAILABLE,
        )
        .values(status=InventoryStatus.SOLD.value)
        .execution_options(synchronize_session=False)
    )


def claim_units(item: OrderItem, *, buyer_id: int, now: datetime | None = None) -> list[int]:
    """Bind ``item.quantity`` AVAILABLE units to the buyer, oldest first.

    Raises ``FulfillmentError`` when fewer units remain than the item needs;
    the caller's transaction must then be rolled back as a whole.
    """
    now = now or datetime.utcnow()
    model = unit_model_for(item.product_type, item.streaming_mode)
    needed = int(item.quantity or 0)
    claimed: list[int] = []

    extra = None
    if model is StreamingAccount and item.duration_days:
        extra = {"expires_at": now + timedelta(days=int(item.duration_days))}

    while len(claimed) < needed:
        candidates = db.session.scalars(
            select(model.id)
            .where(model.product_id == item.product_id, model.status == AVAILABLE)
            .order_by(model.created_at.asc(), model.id.asc())
            .limit(needed - len(claimed))
        ).all()
        if not candidates:
            break
        for unit_id in candidates:
            if not _claim_one(model, unit_id, buyer_id=buyer_id, order_item_id=item.id, now=now, extra=extra):
                continue  # lost the race for this one, look again
            claimed.append(unit_id)
            if model is StreamingProfile:
                account_id = db.session.scalar(select(StreamingProfile.account_id).where(StreamingProfile.id == unit_id))
                _mark_profile_sold(account_id)

    if len(claimed) < needed:
        current_app.logger.error(
            "inventory shortfall product=%s item=%s needed=%s claimed=%s",
            item.product_id,
            item.id,
            needed,
            len(claimed),
        )
        raise FulfillmentError(
            f'Inventory shortfall for "{item.product_name}": needed {needed}, allocated {len(claimed)}',
            product_id=item.product_id,
            needed=needed,
            allocated=len(claimed),
        )
    return claimed


def suspend_units_for_items(item_ids: list[int]) -> int:
    """Pull units bound to these order items out of circulation. Returns rows touched."""
    if not item_ids:
        return 0
    touched = 0
    for model in (GiftCardCode, StreamingAccount, StreamingProfile):
        res = db.session.execute(
            update(model)
            .where(model.order_item_id.in_(item_ids), model.status == InventoryStatus.SOLD.value)
            .values(status=InventoryStatus.SUSPENDED.value)
            .execution_options(synchronize_session=False)
        )
        touched += int(res.rowcount or 0)
    return touched


def delivered_units(item: OrderItem) -> list[dict]:
    """Decrypted payloads of the units bound to a delivered item."""
    out: list[dict] = []
    for code in GiftCardCode.query.filter_by(order_item_id=item.id).order_by(GiftCardCode.id).all():
        out.append({"kind": "code", "id": code.id, "status": code.status, "code": decrypt_text(code.code_encrypted)})
    for acc in StreamingAccount.query.filter_by(order_item_id=item.id).order_by(StreamingAccount.id).all():
        out.append(
            {
                "kind": "account",
                "id": acc.id,
                "status": acc.status,
                "credentials": _credentials(acc),
                "expires_at": acc.expires_at.isoformat() if acc.expires_at else None,
            }
        )
    for prof in StreamingProfile.query.filter_by(order_item_id=item.id).order_by(StreamingProfile.id).all():
        out.append(
            {
                "kind": "profile",
                "id": prof.id,
                "status": prof.status,
                "profile_name": prof.profile_name,
                "pin": prof.pin or "",
                "credentials": _credentials(prof.account),
            }
        )
    return out


def _credentials(acc: StreamingAccount) -> dict:
    raw = decrypt_text(acc.credentials_encrypted)
    if raw is None:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


# -----------------------------
# Seller uploads
# -----------------------------

def upload_codes(product: Product, codes) -> dict:
    ptype = ProductType(product.product_type)
    if ptype is ProductType.STREAMING:
        raise ValidationError("Streaming products take accounts, not codes")
    if not isinstance(codes, list) or not codes:
        raise ValidationError("Provide at least one code")
    if len(codes) > MAX_CODES_PER_UPLOAD:
        raise ValidationError(f"Maximum {MAX_CODES_PER_UPLOAD} codes per upload")

    cleaned: dict[str, str] = {}
    for raw in codes:
        code = str(raw or "").strip()
        if code:
            cleaned.setdefault(fingerprint(code), code)
    if not cleaned:
        raise ValidationError("Provide at least one code")

    existing = set(
        db.session.scalars(
            select(GiftCardCode.code_hash).where(
                GiftCardCode.product_id == product.id,
                GiftCardCode.code_hash.in_(list(cleaned.keys())),
            )
        ).all()
    )
    added = 0
    for digest, code in cleaned.items():
        if digest in existing:
            continue
        db.session.add(GiftCardCode(product_id=product.id, code_encrypted=encrypt_text(code), code_hash=digest))
        added += 1
    db.session.commit()

    skipped = len(codes) - added
    current_app.logger.info("codes uploaded product=%s added=%s skipped=%s", product.id, added, skipped)
    return {"added": added, "duplicates": skipped}


def _validate_account(entry) -> dict:
    if not isinstance(entry, dict):
        raise ValidationError("Each account must be an object")
    email = str(entry.get("email") or "").strip()
    password = str(entry.get("password") or "").strip()
    if not email or not password:
        raise ValidationError("Email and password are required")
    return {
        "email": email,
        "password": password,
        "username": str(entry.get("username") or "").strip(),
        "notes": str(entry.get("notes") or "").strip(),
        "max_profiles": entry.get("max_profiles"),
        "expires_at": entry.get("expires_at"),
    }


def _parse_expiry(raw) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw).replace("Z", ""))
    except ValueError:
        raise ValidationError("expires_at must be an ISO-8601 timestamp")


def upload_accounts(product: Product, accounts) -> dict:
    """Add one or many shared accounts. PROFILE products get one slot per profile."""
    if ProductType(product.product_type) is not ProductType.STREAMING:
        raise ValidationError("Only streaming products take accounts")
    if isinstance(accounts, dict):
        accounts = [accounts]
    if not isinstance(accounts, list) or not accounts:
        raise ValidationError("Provide at least one account")
    if len(accounts) > MAX_ACCOUNTS_PER_UPLOAD:
        raise ValidationError(f"Maximum {MAX_ACCOUNTS_PER_UPLOAD} accounts per upload")

    entries = [_validate_account(a) for a in accounts]
    profile_mode = (product.streaming_mode or "") == StreamingMode.PROFILE.value

    added_accounts = 0
    added_units = 0
    for entry in entries:
        profiles = 1
        if profile_mode:
            try:
                profiles = int(entry["max_profiles"] or product.profile_count or 1)
            except (TypeError, ValueError):
                raise ValidationError("max_profiles must be an integer")
            if profiles < 1 or profiles > MAX_PROFILES_PER_ACCOUNT:
                raise ValidationError(f"max_profiles must be between 1 and {MAX_PROFILES_PER_ACCOUNT}")

        secret = json.dumps(
            {"email": entry["email"], "password": entry["password"], "username": entry["username"], "notes": entry["notes"]},
            sort_keys=True,
        )
        acc = StreamingAccount(
            product_id=product.id,
            credentials_encrypted=encrypt_text(secret),
            credential_hash=fingerprint(entry["email"].lower()),
            max_profiles=profiles,
            sold_profiles=0,
            expires_at=_parse_expiry(entry["expires_at"]),
        )
        db.session.add(acc)
        added_accounts += 1
        if not profile_mode:
            added_units += 1
            continue

        db.session.flush()
        for n in range(1, profiles + 1):
            db.session.add(StreamingProfile(account_id=acc.id, product_id=product.id, profile_name=f"Profile {n}"))
        added_units += profiles

    db.session.commit()
    current_app.logger.info(
        "accounts uploaded product=%s accounts=%s units=%s", product.id, added_accounts, added_units
    )
    return {"added": added_accounts, "units": added_units}


def inventory_summary(product: Product) -> dict:
    model = unit_model_for(product.product_type, product.streaming_mode)
    rows = (
        db.session.query(model.status, db.func.count(model.id))
        .filter(model.product_id == product.id)
        .group_by(model.status)
        .all()
    )
    counts = {s.value.lower(): 0 for s in InventoryStatus}
    for status, cnt in rows:
        counts[str(status).lower()] = int(cnt or 0)
    counts["total"] = sum(counts.values())
    return counts
