"""
Test suite for the payment scheduler

Tests sweep outcomes (skipped, paid, overdue), notification side effects,
per-credit fault isolation and the background thread lifecycle.
"""

import threading
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, patch

from credit_core.config import CreditCoreConfig
from credit_core.system import CreditSystem
from credit_core.rates import StaticRateSource
from credit_core.notifications import Notifier, NotificationType
from credit_core.scheduler import PaymentScheduler, SweepResult
from credit_core.audit import AuditEventType
from credit_core.credits import CreditStatus, PaymentStatus
from credit_core.errors import DependencyFailureError


NOW = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)
DUE = datetime(2024, 4, 15, 12, 0, tzinfo=timezone.utc)


class TestPaymentSweep:
    """Test one sweep over active credits"""

    def setup_method(self):
        self.notifier = Mock(spec=Notifier)
        self.notifier.send.return_value = True

        self.system = CreditSystem(
            config=CreditCoreConfig(database_url="memory://", scheduler_enabled=False),
            rate_source=StaticRateSource(16.0),
            notifier=self.notifier
        )
        self.manager = self.system.credit_manager
        self.ledger = self.system.account_ledger
        self.scheduler = self.system.scheduler

        self.user = self.system.users.create_user("borrower", "borrower@example.com")
        self.account = self.ledger.create_account(self.user.id)
        self.credit = self.manager.create_credit(self.user.id, self.account.id, 120000.0, 12, now=NOW)
        self.payment = self.credit.calculate_monthly_payment()

    def sent(self):
        return [c.args[0] for c in self.notifier.send.call_args_list]

    def test_credit_not_due_is_skipped(self):
        result = self.scheduler.run_sweep(now=NOW + timedelta(days=1))

        assert result.examined == 1
        assert result.skipped == 1
        assert result.paid == 0
        assert self.manager.get_payment_schedule(self.credit.id)[0].status == PaymentStatus.PENDING
        self.notifier.send.assert_not_called()

    def test_due_installment_is_collected(self):
        result = self.scheduler.run_sweep(now=DUE)

        assert result.paid == 1
        assert result.errors == []
        assert self.manager.get_payment_schedule(self.credit.id)[0].status == PaymentStatus.PAID
        assert self.ledger.get_account(self.account.id).balance == pytest.approx(120000.0 - self.payment)

        [notification] = self.sent()
        assert notification.notification_type == NotificationType.PAYMENT_RECEIVED
        assert notification.email == "borrower@example.com"
        assert notification.amount == pytest.approx(self.payment)
        assert notification.credit_id == self.credit.id
        assert notification.payment_number == 1

    def test_paid_installment_not_collected_twice(self):
        self.scheduler.run_sweep(now=DUE)
        result = self.scheduler.run_sweep(now=DUE)

        assert result.skipped == 1
        assert result.paid == 0
        assert len(self.sent()) == 1

    def test_next_month_collects_second_installment(self):
        self.scheduler.run_sweep(now=DUE)
        result = self.scheduler.run_sweep(now=datetime(2024, 5, 15, 8, 0, tzinfo=timezone.utc))

        assert result.paid == 1
        statuses = [e.status for e in self.manager.get_payment_schedule(self.credit.id)[:3]]
        assert statuses == [PaymentStatus.PAID, PaymentStatus.PAID, PaymentStatus.PENDING]

    def test_unfunded_installment_becomes_overdue(self):
        self.ledger.withdraw(self.account.id, 120000.0)

        result = self.scheduler.run_sweep(now=DUE)

        assert result.overdue == 1
        assert result.paid == 0
        assert self.manager.get_credit(self.credit.id).status == CreditStatus.OVERDUE
        assert self.ledger.get_account(self.account.id).balance == 0.0

        [notification] = self.sent()
        assert notification.notification_type == NotificationType.PAYMENT_OVERDUE
        assert notification.amount == pytest.approx(self.payment * 1.10)

    def test_overdue_credit_left_out_of_next_sweep(self):
        self.ledger.withdraw(self.account.id, 120000.0)
        self.scheduler.run_sweep(now=DUE)

        result = self.scheduler.run_sweep(now=DUE + timedelta(days=1))

        assert result.examined == 0
        assert len(self.sent()) == 1
        entry = self.manager.get_payment_schedule(self.credit.id)[0]
        assert entry.penalty == pytest.approx(self.payment * 0.10)

    def test_one_failing_credit_does_not_stop_sweep(self):
        accounts = [self.account]
        for _ in range(2):
            account = self.ledger.create_account(self.user.id)
            self.manager.create_credit(self.user.id, account.id, 50000.0, 6, now=NOW)
            accounts.append(account)

        broken_id = accounts[1].id
        get_account = self.ledger.get_account

        def flaky_get_account(account_id):
            if account_id == broken_id:
                raise RuntimeError("ledger unavailable")
            return get_account(account_id)

        with patch.object(self.ledger, "get_account", side_effect=flaky_get_account):
            result = self.scheduler.run_sweep(now=DUE)

        assert result.examined == 3
        assert result.paid == 2
        assert len(result.errors) == 1
        assert "ledger unavailable" in result.errors[0]["error"]

        broken_credit = self.manager.get_user_credits(self.user.id)[1]
        assert broken_credit.account_id == broken_id
        assert result.errors[0]["credit_id"] == broken_credit.id
        assert self.manager.get_payment_schedule(broken_credit.id)[0].status == PaymentStatus.PENDING

    def test_notification_failure_keeps_payment(self):
        self.notifier.send.side_effect = RuntimeError("smtp down")

        result = self.scheduler.run_sweep(now=DUE)

        assert result.paid == 1
        assert result.errors == []
        assert self.manager.get_payment_schedule(self.credit.id)[0].status == PaymentStatus.PAID

        [record] = self.system.dispatcher.get_notifications(self.credit.id)
        assert record["status"] == "failed"
        assert record["failed_reason"] == "smtp down"

    def test_missing_user_skips_notification(self):
        account = self.ledger.create_account("ghost", initial_balance=10000.0)
        self.manager.create_credit("ghost", account.id, 5000.0, 6, now=NOW)
        self.ledger.withdraw(self.account.id, 120000.0)

        result = self.scheduler.run_sweep(now=DUE)

        assert result.paid == 1
        assert result.overdue == 1
        assert result.errors == []
        assert [n.email for n in self.sent()] == ["borrower@example.com"]

    def test_listing_failure_fails_sweep(self):
        with patch.object(self.manager, "list_active_credits", side_effect=RuntimeError("db gone")):
            with pytest.raises(DependencyFailureError):
                self.scheduler.run_sweep(now=DUE)

    def test_check_payments_runs_sweep(self):
        result = self.scheduler.check_payments(now=DUE)

        assert isinstance(result, SweepResult)
        assert result.paid == 1
        assert result.finished_at is not None
        assert result.to_dict()["paid"] == 1

    def test_sweep_is_audited(self):
        self.scheduler.run_sweep(now=DUE)

        [event] = self.system.audit_trail.get_events_by_type(AuditEventType.SWEEP_COMPLETED)
        assert event.metadata["paid"] == 1
        assert self.system.audit_trail.verify_integrity()["valid"]

    def sweep_table_reads(self, now):
        """Run a sweep and return the tables it read in full"""
        storage = self.system.storage
        with patch.object(storage, "load_all", wraps=storage.load_all) as load_all, \
                patch.object(storage, "find", wraps=storage.find) as find:
            result = self.scheduler.run_sweep(now=now)
        tables = [c.args[0] for c in load_all.call_args_list + find.call_args_list]
        return result, tables

    def test_full_table_reads_do_not_grow_with_credits(self):
        first, reads_one = self.sweep_table_reads(DUE)

        for _ in range(4):
            account = self.ledger.create_account(self.user.id)
            self.manager.create_credit(self.user.id, account.id, 50000.0, 6, now=NOW)

        second, reads_five = self.sweep_table_reads(datetime(2024, 5, 15, 8, 0, tzinfo=timezone.utc))

        assert first.paid == 1
        assert second.paid == 5
        assert reads_five == reads_one
        assert "payment_schedules" not in reads_five


class TestSchedulerLifecycle:
    """Test the background sweep thread"""

    def setup_method(self):
        self.system = CreditSystem(
            config=CreditCoreConfig(database_url="memory://", scheduler_enabled=False),
            rate_source=StaticRateSource(16.0),
            notifier=Mock(spec=Notifier)
        )

    def make_scheduler(self, interval_seconds: float) -> PaymentScheduler:
        return PaymentScheduler(
            self.system.credit_manager,
            self.system.account_ledger,
            self.system.users,
            self.system.dispatcher,
            self.system.audit_trail,
            interval_hours=interval_seconds / 3600
        )

    def test_start_and_stop(self):
        scheduler = self.system.scheduler

        scheduler.start()
        assert scheduler.is_running()

        scheduler.stop(timeout=2.0)
        assert not scheduler.is_running()

    def test_start_is_idempotent(self):
        scheduler = self.system.scheduler
        scheduler.start()
        thread = scheduler._thread

        scheduler.start()
        assert scheduler._thread is thread

        scheduler.stop(timeout=2.0)

    def test_system_start_respects_config(self):
        self.system.start()
        assert not self.system.scheduler.is_running()

    def test_periodic_sweeps(self):
        scheduler = self.make_scheduler(0.01)
        swept = threading.Event()
        scheduler.run_sweep = Mock(side_effect=lambda: swept.set())

        scheduler.start()
        try:
            assert swept.wait(timeout=2.0)
        finally:
            scheduler.stop(timeout=2.0)

        assert not scheduler.is_running()

    def test_failed_sweep_does_not_stop_loop(self):
        scheduler = self.make_scheduler(0.01)
        swept = threading.Event()
        calls = []

        def sweep():
            calls.append(1)
            if len(calls) == 1:
                raise DependencyFailureError("db gone")
            swept.set()

        scheduler.run_sweep = Mock(side_effect=sweep)

        scheduler.start()
        try:
            assert swept.wait(timeout=2.0)
        finally:
            scheduler.stop(timeout=2.0)

        assert len(calls) >= 2
