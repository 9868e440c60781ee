"""
Payment Scheduler Module

Periodic and on-demand sweep over ACTIVE credits: a due installment is
collected from the borrower's account, or marked missed and penalised when the
balance is too low. Every money movement and status change goes through
CreditManager.process_payment; the scheduler only decides what to attempt and
whom to notify.

A sweep is best-effort per credit: one credit failing is recorded in the
result and the sweep moves on.
"""

import threading
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from .accounts import AccountLedger
from .audit import AuditTrail, AuditEventType
from .credits import CreditManager, Credit, CreditStatus, PaymentScheduleEntry
from .errors import AlreadyProcessedError, DependencyFailureError, InsufficientFundsError, NotFoundError
from .notifications import NotificationDispatcher, NotificationType, PaymentNotification
from .users import UserDirectory
from .logging_config import get_logger, log_action


@dataclass
class SweepResult:
    """Outcome of one sweep"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    examined: int = 0
    skipped: int = 0
    paid: int = 0
    overdue: int = 0
    already_processed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "examined": self.examined,
            "skipped": self.skipped,
            "paid": self.paid,
            "overdue": self.overdue,
            "already_processed": self.already_processed,
            "errors": list(self.errors),
        }


class PaymentScheduler:
    """
    Sweeps ACTIVE credits for due installments
    """

    def __init__(
        self,
        credit_manager: CreditManager,
        account_ledger: AccountLedger,
        users: UserDirectory,
        dispatcher: NotificationDispatcher,
        audit_trail: AuditTrail,
        interval_hours: float = 12.0
    ):
        self.credits = credit_manager
        self.accounts = account_ledger
        self.users = users
        self.dispatcher = dispatcher
        self.audit_trail = audit_trail
        self.interval_seconds = interval_hours * 3600

        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.logger = get_logger("credit_core.scheduler")

    def run_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Run one sweep over all ACTIVE credits. Sweeps never overlap.

        Raises:
            DependencyFailureError: the credits could not be listed at all
        """
        with self._sweep_lock:
            now = now or datetime.now(timezone.utc)
            result = SweepResult(started_at=now)

            try:
                credits = self.credits.list_active_credits()
            except DependencyFailureError:
                raise
            except Exception as e:
                raise DependencyFailureError(f"list active credits failed: {e}") from e

            for credit in credits:
                result.examined += 1
                try:
                    self._process_credit(credit, now, result)
                except Exception as e:
                    result.errors.append({"credit_id": credit.id, "error": str(e)})
                    log_action(
                        self.logger, "error", f"Sweep failed for credit {credit.id}: {e}",
                        action="sweep_credit", resource=f"credit:{credit.id}"
                    )

            result.finished_at = datetime.now(timezone.utc)
            self._record_sweep(result)
            return result

    def check_payments(self, now: Optional[datetime] = None) -> SweepResult:
        """Administrative trigger: run a sweep synchronously"""
        self.logger.info("Payment check triggered manually")
        return self.run_sweep(now)

    def _process_credit(self, credit: Credit, now: datetime, result: SweepResult) -> None:
        if credit.status != CreditStatus.ACTIVE or now < credit.next_payment:
            result.skipped += 1
            return

        account = self.accounts.get_account(credit.account_id)

        entry = self.credits.next_pending_installment(credit.id)
        if entry is None:
            result.skipped += 1
            return

        try:
            paid = self.credits.process_payment(credit.id, entry.payment_number, now)
        except AlreadyProcessedError:
            result.already_processed += 1
            return
        except InsufficientFundsError:
            result.overdue += 1
            missed = self.credits.get_installment(credit.id, entry.payment_number)
            self._notify(account.user_id, NotificationType.PAYMENT_OVERDUE, missed, now)
            return

        result.paid += 1
        self._notify(account.user_id, NotificationType.PAYMENT_RECEIVED, paid, now)

    def _notify(self, user_id: str, notification_type: NotificationType,
                entry: PaymentScheduleEntry, now: datetime) -> None:
        """Send a notice to the account owner; failures are only logged"""
        try:
            user = self.users.get_user(user_id)
        except NotFoundError:
            self.logger.warning(f"User {user_id} not found, {notification_type.value} notification skipped")
            return
        except Exception as e:
            self.logger.warning(f"Could not load user {user_id} for notification: {e}")
            return

        self.dispatcher.notify(PaymentNotification(
            email=user.email,
            notification_type=notification_type,
            amount=entry.total_amount,
            credit_id=entry.credit_id,
            payment_number=entry.payment_number,
            timestamp=now
        ))

    def _record_sweep(self, result: SweepResult) -> None:
        log_action(
            self.logger, "info",
            f"Sweep finished: {result.examined} examined, {result.paid} paid, "
            f"{result.overdue} overdue, {len(result.errors)} errors",
            action="sweep", resource="scheduler",
            extra={"skipped": result.skipped, "already_processed": result.already_processed}
        )
        try:
            self.audit_trail.log_event(
                event_type=AuditEventType.SWEEP_COMPLETED,
                entity_type="scheduler",
                entity_id="payment-scheduler",
                metadata=result.to_dict()
            )
        except Exception as e:
            self.logger.warning(f"Could not audit sweep: {e}")

    def start(self) -> None:
        """Start periodic sweeps in a background thread"""
        if self.is_running():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="credit-payment-scheduler")
        self._thread.daemon = True
        self._thread.start()
        self.logger.info(f"Payment scheduler started, interval {self.interval_seconds:.0f}s")

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.run_sweep()
            except Exception as e:
                self.logger.error(f"Scheduled sweep failed: {e}")

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the background thread, waiting for a running sweep up to timeout"""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self.logger.info("Payment scheduler stopped")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
