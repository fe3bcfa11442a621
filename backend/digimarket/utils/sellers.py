from __future__ import annotations

from datetime import datetime

from sqlalchemy import update

from digimarket.extensions import db
from digimarket.models import SellerProfile
from digimarket.utils.commission import round2


def adjust_seller_balances(seller_id: int, *, earnings: float, sales: int = 0) -> None:
    """Move earnings and available balance together, in one UPDATE.

    Positive on fulfillment, negative on refunds and review rejection. Both
    columns always change by the same amount, so available never outgrows
    earnings minus withdrawals.
    """
    amt = round2(earnings)
    db.session.execute(
        update(SellerProfile)
        .where(SellerProfile.id == int(seller_id))
        .values(
            total_earnings=SellerProfile.total_earnings + amt,
            available_balance=SellerProfile.available_balance + amt,
            total_sales=SellerProfile.total_sales + int(sales),
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    for obj in list(db.session.identity_map.values()):
        if isinstance(obj, SellerProfile) and obj.id == int(seller_id):
            db.session.expire(obj)
