from datetime import datetime

import pytest

from sqlalchemy import select

from digimarket.extensions import db
from digimarket.models import GiftCardCode, StreamingAccount, StreamingProfile
from digimarket.utils.enums import InventoryStatus, ProductType, StreamingMode
from digimarket.utils.errors import FulfillmentError, ValidationError
from digimarket.utils.inventory import (
    MAX_CODES_PER_UPLOAD,
    claim_units,
    count_available,
    delivered_units,
    inventory_summary,
    upload_accounts,
    upload_codes,
)


class TestCodeUpload:
    def test_dedupes_within_batch_and_against_stock(self, seller, make_product):
        product = make_product(seller)
        first = upload_codes(product, ["AAA-111", "BBB-222", "AAA-111", "  "])
        assert first == {"added": 2, "duplicates": 2}

        second = upload_codes(product, ["BBB-222", "CCC-333"])
        assert second == {"added": 1, "duplicates": 1}
        assert count_available(product) == 3

    def test_codes_are_stored_encrypted(self, seller, make_product):
        product = make_product(seller)
        upload_codes(product, ["SECRET-CODE-9"])
        row = GiftCardCode.query.filter_by(product_id=product.id).one()
        assert "SECRET-CODE-9" not in row.code_encrypted

    def test_upload_cap(self, seller, make_product):
        product = make_product(seller)
        with pytest.raises(ValidationError):
            upload_codes(product, [f"C{i}" for i in range(MAX_CODES_PER_UPLOAD + 1)])

    def test_streaming_product_refuses_codes(self, streaming_product):
        with pytest.raises(ValidationError):
            upload_codes(streaming_product, ["X"])


class TestAccountUpload:
    def test_profile_mode_expands_slots(self, seller, make_product):
        product = make_product(
            seller,
            product_type=ProductType.STREAMING,
            streaming_mode=StreamingMode.PROFILE,
            profile_count=4,
            duration_days=30,
        )
        res = upload_accounts(
            product,
            [
                {"email": "a@example.com", "password": "pw1"},
                {"email": "b@example.com", "password": "pw2", "max_profiles": 2},
            ],
        )
        assert res == {"added": 2, "units": 6}
        assert StreamingProfile.query.filter_by(product_id=product.id).count() == 6
        assert count_available(product) == 6

    def test_single_account_object(self, streaming_product):
        res = upload_accounts(streaming_product, {"email": "solo@example.com", "password": "pw"})
        assert res == {"added": 1, "units": 1}

    def test_requires_credentials(self, streaming_product):
        with pytest.raises(ValidationError):
            upload_accounts(streaming_product, [{"email": "nopass@example.com"}])


class TestClaimUnits:
    def test_claims_oldest_first(self, buyer, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 2)])
        item = order.items[0]
        oldest = db.session.scalars(
            select(GiftCardCode.id)
            .where(GiftCardCode.product_id == gift_card.id)
            .order_by(GiftCardCode.created_at)
            .limit(2)
        ).all()
        claimed = claim_units(item, buyer_id=buyer.id, now=datetime.utcnow())
        db.session.expire_all()
        assert claimed == oldest
        sold = GiftCardCode.query.filter_by(status=InventoryStatus.SOLD.value).all()
        assert {c.order_item_id for c in sold} == {item.id}
        assert {c.buyer_id for c in sold} == {buyer.id}

    def test_shortfall_raises(self, buyer, seller, make_product, add_codes, make_order):
        product = make_product(seller)
        add_codes(product, 2)
        order = make_order(buyer, [(product, 2)])
        # Another buyer takes one unit after checkout validated stock
        GiftCardCode.query.filter_by(product_id=product.id).first().status = InventoryStatus.SOLD.value
        with pytest.raises(FulfillmentError):
            claim_units(order.items[0], buyer_id=buyer.id)

    def test_full_account_gets_expiry(self, buyer, streaming_product, make_order):
        order = make_order(buyer, [(streaming_product, 1)])
        now = datetime.utcnow()
        [acc_id] = claim_units(order.items[0], buyer_id=buyer.id, now=now)
        db.session.expire_all()
        acc = db.session.get(StreamingAccount, acc_id)
        assert acc.status == InventoryStatus.SOLD.value
        assert (acc.expires_at - now).days == 30

    def test_profiles_fill_account(self, buyer, seller, make_product, add_account, make_order):
        product = make_product(
            seller, product_type=ProductType.STREAMING, streaming_mode=StreamingMode.PROFILE, duration_days=30
        )
        acc = add_account(product, profiles=2)
        order = make_order(buyer, [(product, 2)])
        claim_units(order.items[0], buyer_id=buyer.id)
        db.session.refresh(acc)
        assert acc.sold_profiles == 2
        assert acc.status == InventoryStatus.SOLD.value

    def test_delivered_units_decrypt(self, buyer, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 1)])
        claim_units(order.items[0], buyer_id=buyer.id)
        db.session.expire_all()
        [unit] = delivered_units(order.items[0])
        assert unit["kind"] == "code"
        assert unit["code"].startswith(f"CODE-{gift_card.id}-")


class TestSummary:
    def test_counts_by_status(self, buyer, gift_card, make_order):
        order = make_order(buyer, [(gift_card, 2)])
        claim_units(order.items[0], buyer_id=buyer.id)
        summary = inventory_summary(gift_card)
        assert summary["available"] == 3
        assert summary["sold"] == 2
        assert summary["total"] == 5
