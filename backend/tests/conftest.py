import itertools
from datetime import datetime, timedelta

import pytest

from digimarket import create_app
from digimarket.extensions import db as _db
from digimarket.jwt_utils import create_access_token
from digimarket.models import (
    GiftCardCode,
    Product,
    SellerProfile,
    StreamingAccount,
    StreamingProfile,
    User,
)
from digimarket.utils.encryption import encrypt_text, fingerprint
from digimarket.utils.enums import DeliveryType, ProductType, StreamingMode
from digimarket.utils.platform import PlatformConfig
from digimarket.utils.wallets import credit_wallet

TEST_SETTINGS = {
    "TESTING": True,
    "ENV_NAME": "test",
    "SECRET_KEY": "test-secret-key-for-digimarket",
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "ENCRYPTION_KEY": "",
    "CRON_SECRET": "",
    "SCHEDULER_ENABLED": False,
    "STRIPE_SECRET_KEY": "",
    "STRIPE_WEBHOOK_SECRET": "",
    "QR_API_URL": "",
    "QR_API_KEY": "",
    "QR_WEBHOOK_SECRET": "",
    "BINANCE_SPOT_API_KEY": "",
    "BINANCE_SPOT_SECRET_KEY": "",
    "BINANCE_DEPOSIT_ADDRESS": "",
    "MAIL_API_URL": "",
    "MAIL_API_KEY": "",
}

_seq = itertools.count(1)


@pytest.fixture(scope="session")
def app():
    return create_app(TEST_SETTINGS)


@pytest.fixture(autouse=True)
def db(app):
    with app.app_context():
        _db.drop_all()
        _db.create_all()
        yield _db
        _db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def config():
    return PlatformConfig()


@pytest.fixture
def make_user(db):
    def _make(role="buyer", *, age=timedelta(days=30), email=None):
        n = next(_seq)
        user = User(
            name=f"User {n}",
            email=email or f"user{n}@example.com",
            role=role,
            created_at=datetime.utcnow() - age,
        )
        user.set_password("secret-pass")
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def buyer(make_user):
    return make_user("buyer")


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def make_seller(db, make_user):
    def _make(*, commission_rate=10.0, status="ACTIVE"):
        user = make_user("seller")
        seller = SellerProfile(user_id=user.id, store_name=f"Store {user.id}", commission_rate=commission_rate, status=status)
        db.session.add(seller)
        db.session.commit()
        return seller

    return _make


@pytest.fixture
def seller(make_seller):
    return make_seller()


@pytest.fixture
def make_product(db):
    def _make(
        seller,
        *,
        price=10.0,
        product_type=ProductType.GIFT_CARD,
        delivery_type=DeliveryType.INSTANT,
        streaming_mode=None,
        duration_days=None,
        profile_count=None,
        name=None,
    ):
        product = Product(
            seller_id=seller.id,
            name=name or f"Product {next(_seq)}",
            price=price,
            product_type=product_type.value,
            delivery_type=delivery_type.value,
            streaming_mode=streaming_mode.value if streaming_mode else None,
            duration_days=duration_days,
            profile_count=profile_count,
        )
        db.session.add(product)
        db.session.commit()
        return product

    return _make


@pytest.fixture
def add_codes(db):
    def _add(product, count, *, start=None):
        base = start or datetime.utcnow() - timedelta(hours=1)
        rows = []
        for i in range(count):
            code = f"CODE-{product.id}-{next(_seq)}"
            row = GiftCardCode(
                product_id=product.id,
                code_encrypted=encrypt_text(code),
                code_hash=fingerprint(code),
                created_at=base + timedelta(seconds=i),
            )
            db.session.add(row)
            rows.append(row)
        db.session.commit()
        return rows

    return _add


@pytest.fixture
def add_account(db):
    def _add(product, *, profiles=0):
        acc = StreamingAccount(
            product_id=product.id,
            credentials_encrypted=encrypt_text('{"email": "share@example.com", "password": "pw"}'),
            credential_hash=fingerprint(f"share{next(_seq)}@example.com"),
            max_profiles=max(1, profiles),
        )
        db.session.add(acc)
        db.session.flush()
        for n in range(1, profiles + 1):
            db.session.add(StreamingProfile(account_id=acc.id, product_id=product.id, profile_name=f"Profile {n}"))
        db.session.commit()
        return acc

    return _add


@pytest.fixture
def fund(db):
    def _fund(user, amount):
        return credit_wallet(user.id, amount, description="test funding")

    return _fund


@pytest.fixture
def auth_headers(app):
    def _headers(user):
        with app.app_context():
            token = create_access_token(user.id)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def gift_card(seller, make_product, add_codes):
    product = make_product(seller, price=25.0, name="Gift Card 25")
    add_codes(product, 5)
    return product


@pytest.fixture
def streaming_product(seller, make_product, add_account):
    product = make_product(
        seller,
        price=30.0,
        product_type=ProductType.STREAMING,
        streaming_mode=StreamingMode.COMPLETE_ACCOUNT,
        duration_days=30,
        name="Streaming 30d",
    )
    add_account(product)
    add_account(product)
    return product


@pytest.fixture
def api(client, auth_headers):
    """Test client calls as ``user``. The login cache lives on ``g``, which the
    long-lived test app context shares between requests, so it is cleared per call."""
    from flask import g

    def _call(method, url, *, user=None, headers=None, **kwargs):
        g.pop("_login_user", None)
        merged = dict(headers or {})
        if user is not None:
            merged.update(auth_headers(user))
        return getattr(client, method)(url, headers=merged, **kwargs)

    return _call


@pytest.fixture
def make_order(db, config):
    """Persist a PENDING order the way checkout builds it, without paying for it."""
    from digimarket.utils.checkout import _build_order
    from digimarket.utils.enums import PaymentMethod

    def _make(buyer, lines, *, method=PaymentMethod.WALLET, requires_review=False, scheduled_at=None, now=None):
        now = now or datetime.utcnow()
        seller = lines[0][0].seller
        order = _build_order(buyer, seller, lines, method, config, now)
        order.requires_manual_review = requires_review
        order.delivery_scheduled_at = scheduled_at
        db.session.add(order)
        db.session.commit()
        return order

    return _make
