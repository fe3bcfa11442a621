import pytest

from digimarket.models import WalletTxn
from digimarket.utils.enums import WalletTxnType
from digimarket.utils.errors import InsufficientFundsError, ValidationError
from digimarket.utils.wallets import credit_wallet, debit_wallet, replay_ledger, wallet_balance


class TestCredit:
    def test_credit_appends_ledger_row(self, buyer):
        txn = credit_wallet(buyer.id, 40.0, description="top up")
        assert wallet_balance(buyer.id) == 40.0
        assert txn.amount == 40.0
        assert txn.balance_before == 0.0
        assert txn.balance_after == 40.0
        assert txn.txn_type == WalletTxnType.DEPOSIT_CREDIT.value

    def test_idempotency_key_credits_once(self, buyer):
        first = credit_wallet(buyer.id, 15.0, idempotency_key="deposit:1")
        second = credit_wallet(buyer.id, 15.0, idempotency_key="deposit:1")
        assert first.id == second.id
        assert wallet_balance(buyer.id) == 15.0
        assert WalletTxn.query.filter_by(user_id=buyer.id).count() == 1

    @pytest.mark.parametrize("amount", [0, -5, 0.001])
    def test_rejects_non_positive(self, buyer, amount):
        with pytest.raises(ValidationError):
            credit_wallet(buyer.id, amount)


class TestDebit:
    def test_debit_within_balance(self, buyer, fund):
        fund(buyer, 50.0)
        txn = debit_wallet(buyer.id, 20.25, order_id=None, description="purchase")
        assert txn.amount == -20.25
        assert txn.balance_after == 29.75
        assert wallet_balance(buyer.id) == 29.75

    def test_debit_exact_balance_reaches_zero(self, buyer, fund):
        fund(buyer, 12.5)
        debit_wallet(buyer.id, 12.5)
        assert wallet_balance(buyer.id) == 0.0

    def test_overdraft_leaves_balance_untouched(self, buyer, fund):
        fund(buyer, 10.0)
        with pytest.raises(InsufficientFundsError) as exc:
            debit_wallet(buyer.id, 10.01)
        assert exc.value.available == 10.0
        assert wallet_balance(buyer.id) == 10.0
        assert WalletTxn.query.filter_by(user_id=buyer.id).count() == 1

    def test_debit_on_empty_wallet_fails(self, buyer):
        with pytest.raises(InsufficientFundsError):
            debit_wallet(buyer.id, 1.0)
        assert wallet_balance(buyer.id) == 0.0


class TestReplay:
    def test_replay_matches_stored_balance(self, buyer, fund):
        fund(buyer, 100.0)
        debit_wallet(buyer.id, 30.0)
        credit_wallet(buyer.id, 5.5, txn_type=WalletTxnType.REFUND_CREDIT)
        replay = replay_ledger(buyer.id)
        assert replay["ledger_sum"] == 75.5
        assert replay["last_snapshot"] == 75.5
        assert replay["entries"] == 3
        assert wallet_balance(buyer.id) == 75.5
