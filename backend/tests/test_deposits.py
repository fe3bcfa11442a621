from datetime import datetime, timedelta

import pytest

from digimarket.extensions import db
from digimarket.models import WalletDeposit
from digimarket.utils.deposits import (
    SANDBOX_ADDRESS,
    confirm_sandbox_deposit,
    create_deposit,
    deposit_status,
)
from digimarket.utils.enums import DepositStatus
from digimarket.utils.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from digimarket.utils.wallets import wallet_balance


class TestCreateDeposit:
    def test_sandbox_without_provider(self, buyer, config):
        dep = create_deposit(buyer, "50", config=config)
        assert dep.sandbox is True
        assert dep.address == SANDBOX_ADDRESS
        assert dep.amount == 50.0
        assert dep.memo_token.startswith("DM-")
        assert dep.status == DepositStatus.PENDING.value

    @pytest.mark.parametrize("amount", [0, 0.5, 10_000.01, "abc", None])
    def test_amount_bounds(self, buyer, config, amount):
        with pytest.raises(ValidationError):
            create_deposit(buyer, amount, config=config)

    def test_one_live_deposit_at_a_time(self, buyer, config):
        create_deposit(buyer, 20, config=config)
        with pytest.raises(ConflictError) as exc:
            create_deposit(buyer, 30, config=config)
        assert exc.value.status_code == 409
        assert exc.value.extra["deposit"]["amount"] == 20.0

    def test_expired_deposit_does_not_block(self, buyer, config):
        old = create_deposit(buyer, 20, config=config, now=datetime.utcnow() - timedelta(hours=3))
        fresh = create_deposit(buyer, 30, config=config)
        assert fresh.id != old.id
        assert db.session.get(WalletDeposit, old.id, populate_existing=True).status == DepositStatus.EXPIRED.value


class TestConfirmAndStatus:
    def test_sandbox_confirm_credits_wallet(self, buyer, config):
        dep = create_deposit(buyer, 25, config=config)
        assert deposit_status(buyer, dep.id, config=config)["status"] == "pending"

        res = confirm_sandbox_deposit(buyer, dep.id)
        assert res["status"] == "completed"
        assert res["balance"] == 25.0

        body = deposit_status(buyer, dep.id, config=config)
        assert body["status"] == "completed"
        assert body["credited_amount"] == 25.0
        assert wallet_balance(buyer.id) == 25.0

    def test_confirm_twice(self, buyer, config):
        dep = create_deposit(buyer, 25, config=config)
        confirm_sandbox_deposit(buyer, dep.id)
        with pytest.raises(ConflictError):
            confirm_sandbox_deposit(buyer, dep.id)
        assert wallet_balance(buyer.id) == 25.0

    def test_real_deposit_cannot_be_confirmed_by_hand(self, buyer):
        dep = WalletDeposit(
            user_id=buyer.id,
            amount=25.0,
            memo_token="DM-REAL0001",
            sandbox=False,
            expires_at=datetime.utcnow() + timedelta(hours=1),
        )
        db.session.add(dep)
        db.session.commit()
        with pytest.raises(ForbiddenError):
            confirm_sandbox_deposit(buyer, dep.id)

    def test_expired_status(self, buyer, config):
        dep = create_deposit(buyer, 25, config=config, now=datetime.utcnow() - timedelta(hours=3))
        assert deposit_status(buyer, dep.id, config=config)["status"] == "expired"
        with pytest.raises(ConflictError):
            confirm_sandbox_deposit(buyer, dep.id)

    def test_someone_elses_deposit(self, buyer, make_user, config):
        dep = create_deposit(buyer, 25, config=config)
        with pytest.raises(NotFoundError):
            deposit_status(make_user("buyer"), dep.id, config=config)


class TestDepositRoutes:
    def test_full_sandbox_flow(self, api, buyer):
        r = api("post", "/api/wallet/deposit", user=buyer, json={"amount": 40})
        assert r.status_code == 201
        dep_id = r.get_json()["deposit"]["deposit_id"]

        r = api("get", f"/api/wallet/deposit?depositId={dep_id}", user=buyer)
        assert r.get_json()["status"] == "pending"

        r = api("put", "/api/wallet/deposit", user=buyer, json={"depositId": dep_id})
        assert r.status_code == 200
        assert r.get_json()["balance"] == 40.0

        r = api("get", "/api/wallet", user=buyer)
        assert r.get_json()["wallet"]["balance"] == 40.0

    def test_conflict_is_409(self, api, buyer):
        api("post", "/api/wallet/deposit", user=buyer, json={"amount": 40})
        r = api("post", "/api/wallet/deposit", user=buyer, json={"amount": 10})
        assert r.status_code == 409
        assert r.get_json()["ok"] is False

    def test_requires_login(self, api):
        r = api("post", "/api/wallet/deposit", json={"amount": 40})
        assert r.status_code == 401
