"""
Test suite for the account ledger

Tests account creation, atomic balance adjustment, deposits, withdrawals,
transfers and concurrent debits against one balance.
"""

import threading
import pytest

from credit_core.storage import InMemoryStorage
from credit_core.audit import AuditTrail, AuditEventType
from credit_core.transactions import TransactionLog, TransactionType
from credit_core.accounts import AccountLedger
from credit_core.errors import InsufficientFundsError, NotFoundError, ValidationError


class TestAccountLedger:
    """Test account operations"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.transaction_log = TransactionLog(self.storage, self.audit_trail)
        self.ledger = AccountLedger(self.storage, self.audit_trail, self.transaction_log)

    def test_create_account(self):
        account = self.ledger.create_account("user-1", initial_balance=250.0)

        assert account.user_id == "user-1"
        assert account.balance == 250.0
        assert account.is_active
        assert len(account.number) == 20
        assert account.number.isdigit()

        loaded = self.ledger.get_account(account.id)
        assert loaded.balance == 250.0
        assert loaded.number == account.number

        events = self.audit_trail.get_events_for_entity("account", account.id)
        assert events[0].event_type == AuditEventType.ACCOUNT_CREATED

    def test_create_account_with_number(self):
        account = self.ledger.create_account("user-1", number="40817810000000000001")
        assert account.number == "40817810000000000001"

    def test_negative_initial_balance(self):
        with pytest.raises(ValidationError):
            self.ledger.create_account("user-1", initial_balance=-1.0)

    def test_get_unknown_account(self):
        with pytest.raises(NotFoundError):
            self.ledger.get_account("missing")

    def test_get_user_accounts(self):
        self.ledger.create_account("user-1")
        self.ledger.create_account("user-1")
        self.ledger.create_account("user-2")

        assert len(self.ledger.get_user_accounts("user-1")) == 2
        assert self.ledger.get_user_accounts("user-3") == []

    def test_adjust_balance(self):
        account = self.ledger.create_account("user-1", initial_balance=100.0)

        updated = self.ledger.adjust_balance(account.id, -40.0)
        assert updated.balance == 60.0
        assert updated.last_operation is not None
        assert self.ledger.get_account(account.id).balance == 60.0

    def test_adjust_balance_never_negative(self):
        account = self.ledger.create_account("user-1", initial_balance=100.0)

        with pytest.raises(InsufficientFundsError):
            self.ledger.adjust_balance(account.id, -100.01)
        assert self.ledger.get_account(account.id).balance == 100.0

    def test_adjust_balance_to_zero(self):
        account = self.ledger.create_account("user-1", initial_balance=100.0)
        assert self.ledger.adjust_balance(account.id, -100.0).balance == 0.0

    def test_inactive_account(self):
        account = self.ledger.create_account("user-1", initial_balance=100.0)
        account.is_active = False
        self.ledger.update_account(account)

        with pytest.raises(ValidationError):
            self.ledger.adjust_balance(account.id, 10.0)
        assert not self.ledger.get_account(account.id).can_withdraw(10.0)

    def test_update_account_rejects_negative_balance(self):
        account = self.ledger.create_account("user-1")
        account.balance = -5.0

        with pytest.raises(ValidationError):
            self.ledger.update_account(account)

    def test_deposit_and_withdraw(self):
        account = self.ledger.create_account("user-1")

        self.ledger.deposit(account.id, 500.0)
        self.ledger.withdraw(account.id, 120.0)

        assert self.ledger.get_account(account.id).balance == 380.0
        types = {t.transaction_type for t in self.transaction_log.get_account_transactions(account.id)}
        assert types == {TransactionType.DEPOSIT, TransactionType.WITHDRAWAL}

    def test_withdraw_insufficient_records_nothing(self):
        account = self.ledger.create_account("user-1", initial_balance=50.0)

        with pytest.raises(InsufficientFundsError):
            self.ledger.withdraw(account.id, 60.0)

        assert self.ledger.get_account(account.id).balance == 50.0
        assert self.transaction_log.get_account_transactions(account.id) == []

    @pytest.mark.parametrize("amount", [0.0, -10.0])
    def test_non_positive_amounts(self, amount):
        account = self.ledger.create_account("user-1", initial_balance=50.0)

        with pytest.raises(ValidationError):
            self.ledger.deposit(account.id, amount)
        with pytest.raises(ValidationError):
            self.ledger.withdraw(account.id, amount)

    def test_transfer(self):
        source = self.ledger.create_account("user-1", initial_balance=300.0)
        target = self.ledger.create_account("user-2")

        self.ledger.transfer(source.id, target.id, 125.0)

        assert self.ledger.get_account(source.id).balance == 175.0
        assert self.ledger.get_account(target.id).balance == 125.0
        [transfer] = self.transaction_log.get_by_type(TransactionType.TRANSFER)
        assert transfer.from_account_id == source.id
        assert transfer.to_account_id == target.id

    def test_transfer_to_missing_account_rolls_back(self):
        source = self.ledger.create_account("user-1", initial_balance=300.0)

        with pytest.raises(NotFoundError):
            self.ledger.transfer(source.id, "missing", 100.0)
        assert self.ledger.get_account(source.id).balance == 300.0

    def test_transfer_to_same_account(self):
        account = self.ledger.create_account("user-1", initial_balance=300.0)

        with pytest.raises(ValidationError):
            self.ledger.transfer(account.id, account.id, 10.0)

    def test_concurrent_withdrawals_never_overdraw(self):
        """Ten threads each withdrawing 10 from 50: exactly five succeed"""
        account = self.ledger.create_account("user-1", initial_balance=50.0)
        barrier = threading.Barrier(10)
        outcomes = []
        lock = threading.Lock()

        def withdraw():
            barrier.wait()
            try:
                self.ledger.withdraw(account.id, 10.0)
                ok = True
            except InsufficientFundsError:
                ok = False
            with lock:
                outcomes.append(ok)

        threads = [threading.Thread(target=withdraw) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count(True) == 5
        assert self.ledger.get_account(account.id).balance == 0.0
        assert len(self.transaction_log.get_by_type(TransactionType.WITHDRAWAL)) == 5

    def test_balance_changes_are_audited(self):
        account = self.ledger.create_account("user-1", initial_balance=100.0)
        self.ledger.adjust_balance(account.id, 25.0)

        [event] = self.audit_trail.get_events_by_type(AuditEventType.ACCOUNT_BALANCE_ADJUSTED)
        assert event.metadata == {"old_balance": 100.0, "new_balance": 125.0, "delta": 25.0}
        assert self.audit_trail.verify_integrity()["valid"]
