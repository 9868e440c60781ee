"""
Credit Module

Handles credit origination, annuity schedule generation, installment payment
processing with penalty and overdue handling, and the credit lifecycle.

Credit terms (amount, term, interest rate, start date) never change after
origination, so the schedule amounts are recomputed from them on demand.
Installment state (status, penalty, paid_at) is stored per installment under
the key "<credit_id>:<payment_number>" and is only ever changed in the same
atomic unit as the matching ledger debit.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Any
from contextlib import contextmanager
from enum import Enum
import calendar
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountLedger
from .transactions import TransactionLog, TransactionType
from .rates import RateSource
from .errors import (
    CreditCoreError, ValidationError, InvalidStatusTransition, CreditNotActiveError,
    NotAuthorizedError, NotFoundError, PaymentNotFoundError, AlreadyProcessedError,
    InsufficientFundsError, DependencyFailureError, DuplicateRecordError
)
from .logging_config import get_logger, log_action


DEFAULT_DESCRIPTION = "Consumer credit"
MAX_TERM_MONTHS = 360


class CreditStatus(Enum):
    """Credit lifecycle states"""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    OVERDUE = "OVERDUE"       # An installment was missed
    PAID = "PAID"             # Terminal
    CANCELLED = "CANCELLED"   # Terminal, administrative only


class PaymentStatus(Enum):
    """Installment states"""
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


ALLOWED_TRANSITIONS = {
    CreditStatus.PENDING: {CreditStatus.ACTIVE, CreditStatus.CANCELLED},
    CreditStatus.ACTIVE: {CreditStatus.OVERDUE, CreditStatus.PAID, CreditStatus.CANCELLED},
    CreditStatus.OVERDUE: {CreditStatus.PAID, CreditStatus.CANCELLED},
    CreditStatus.PAID: set(),
    CreditStatus.CANCELLED: set(),
}


def add_months(start: datetime, months: int) -> datetime:
    """Add months to a datetime, clamping the day to the end of the target month"""
    month = start.month - 1 + months
    year = start.year + month // 12
    month = month % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def calculate_annuity_payment(amount: float, annual_rate: float, term: int) -> float:
    """
    Fixed monthly installment for an annuity credit.

    payment = A * r / (1 - (1 + r)^-n) with r the monthly rate; a zero rate
    degenerates to A / n.
    """
    monthly_rate = annual_rate / 12 / 100
    if monthly_rate == 0:
        return amount / term
    return amount * monthly_rate / (1 - (1 + monthly_rate) ** (-term))


@dataclass
class PaymentScheduleEntry:
    """Single installment of a credit's amortization schedule"""
    credit_id: str
    payment_number: int
    due_date: datetime
    amount: float          # Fixed annuity payment
    interest: float
    principal: float
    penalty: float = 0.0   # Charged once when the installment is missed
    status: PaymentStatus = PaymentStatus.PENDING
    paid_at: Optional[datetime] = None

    @property
    def total_amount(self) -> float:
        return self.amount + self.penalty

    @property
    def key(self) -> str:
        return f"{self.credit_id}:{self.payment_number}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "credit_id": self.credit_id,
            "payment_number": self.payment_number,
            "due_date": self.due_date.isoformat(),
            "amount": self.amount,
            "interest": self.interest,
            "principal": self.principal,
            "penalty": self.penalty,
            "total_amount": self.total_amount,
            "status": self.status.value,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
        }


@dataclass
class Credit(StorageRecord):
    """Credit (loan) against one account"""
    account_id: str
    user_id: str
    amount: float
    term: int                      # Months
    interest_rate: float           # Annual percent
    start_date: datetime
    end_date: datetime
    payment_day: int               # Billing day of month
    next_payment: datetime
    status: CreditStatus = CreditStatus.ACTIVE
    total_paid: float = 0.0
    remaining_debt: float = 0.0
    overdue_amount: float = 0.0    # Penalties not yet settled
    last_payment: Optional[datetime] = None
    description: str = DEFAULT_DESCRIPTION

    def validate(self) -> None:
        """Enforce the numeric ranges of the credit terms"""
        if not self.amount > 0:
            raise ValidationError(f"Invalid credit amount: {self.amount}")
        if not 1 <= self.term <= MAX_TERM_MONTHS:
            raise ValidationError(f"Invalid credit term: {self.term}")
        if not 0 < self.interest_rate <= 100:
            raise ValidationError(f"Invalid interest rate: {self.interest_rate}")
        if not 1 <= self.payment_day <= 31:
            raise ValidationError(f"Invalid payment day: {self.payment_day}")

    @property
    def monthly_rate(self) -> float:
        return self.interest_rate / 12 / 100

    @property
    def is_terminal(self) -> bool:
        return self.status in (CreditStatus.PAID, CreditStatus.CANCELLED)

    def calculate_monthly_payment(self) -> float:
        return calculate_annuity_payment(self.amount, self.interest_rate, self.term)

    def calculate_total_amount(self) -> float:
        return self.calculate_monthly_payment() * self.term

    def calculate_remaining_debt(self) -> float:
        return self.calculate_total_amount() - self.total_paid

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.status == CreditStatus.ACTIVE and now > self.next_payment

    def calculate_next_payment_date(self) -> datetime:
        """
        One calendar month after the last payment, on the billing day or the
        last day of that month when it is shorter.
        """
        base = self.last_payment or self.start_date
        month = base.month % 12 + 1
        year = base.year + (1 if base.month == 12 else 0)
        day = min(self.payment_day, calendar.monthrange(year, month)[1])
        return base.replace(year=year, month=month, day=day, hour=0, minute=0, second=0, microsecond=0)

    def transition_to(self, new_status: CreditStatus) -> bool:
        """
        Move to a new status. Returns False when already in that status.

        Raises:
            InvalidStatusTransition: the lifecycle does not allow the move
        """
        if new_status == self.status:
            return False
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStatusTransition(
                f"Credit {self.id} cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        return True


def generate_schedule(credit: Credit) -> List[PaymentScheduleEntry]:
    """Annuity schedule for a credit; a pure function of its terms"""
    payment = credit.calculate_monthly_payment()
    monthly_rate = credit.monthly_rate
    remaining = credit.amount

    schedule = []
    for number in range(1, credit.term + 1):
        interest = remaining * monthly_rate
        principal = payment - interest
        remaining -= principal
        schedule.append(PaymentScheduleEntry(
            credit_id=credit.id,
            payment_number=number,
            due_date=add_months(credit.start_date, number),
            amount=payment,
            interest=interest,
            principal=principal
        ))
    return schedule


class CreditManager:
    """
    Manages the credit lifecycle from origination through payoff
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_ledger: AccountLedger,
        transaction_log: TransactionLog,
        rate_source: RateSource,
        audit_trail: AuditTrail,
        rate_margin: float = 5.0,
        penalty_rate: float = 0.10
    ):
        self.storage = storage
        self.accounts = account_ledger
        self.transactions = transaction_log
        self.rate_source = rate_source
        self.audit_trail = audit_trail
        self.rate_margin = rate_margin
        self.penalty_rate = penalty_rate

        self.credits_table = "credits"
        self.schedule_table = "payment_schedules"
        self.logger = get_logger("credit_core.credits")

    @contextmanager
    def _step(self, name: str):
        """Report unexpected collaborator failures as a retryable error naming the step"""
        try:
            yield
        except CreditCoreError:
            raise
        except Exception as e:
            raise DependencyFailureError(f"{name} failed: {e}") from e

    def create_credit(
        self,
        user_id: str,
        account_id: str,
        amount: float,
        term_months: int,
        description: str = "",
        now: Optional[datetime] = None
    ) -> Credit:
        """
        Originate a credit and disburse it onto the borrower's account

        The credit record, its installment rows, the balance credit and the
        CREDIT transaction are written in one atomic unit.

        Args:
            user_id: Borrower; must own the account
            account_id: Account receiving the funds
            amount: Principal
            term_months: Term in months (1..360)
            description: Free text; a default is used when empty
            now: Origination time (defaults to current UTC time)

        Returns:
            The persisted Credit
        """
        self._validate_terms(amount, term_months)
        now = now or datetime.now(timezone.utc)

        with self._step("load account"):
            account = self.accounts.get_account(account_id)
        if account.user_id != user_id:
            raise NotAuthorizedError(f"Account {account_id} does not belong to user {user_id}")

        with self._step("fetch benchmark rate"):
            benchmark_rate = self.rate_source.get_benchmark_rate()

        description = (description or "").strip() or DEFAULT_DESCRIPTION
        credit = Credit(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            user_id=user_id,
            amount=float(amount),
            term=term_months,
            interest_rate=benchmark_rate + self.rate_margin,
            start_date=now,
            end_date=add_months(now, term_months),
            payment_day=now.day,
            next_payment=add_months(now, 1),
            status=CreditStatus.ACTIVE,
            remaining_debt=float(amount),
            last_payment=now,
            description=description
        )
        credit.validate()

        with self.storage.atomic():
            with self._step("persist credit"):
                self.storage.insert(self.credits_table, credit.id, self._credit_to_dict(credit))
                for entry in generate_schedule(credit):
                    self._save_entry(entry, now, insert=True)

            with self._step("credit account"):
                self.accounts.adjust_balance(account_id, credit.amount, now)

            with self._step("record disbursement"):
                self.transactions.append(
                    TransactionType.CREDIT,
                    credit.amount,
                    f"Credit disbursement: credit #{credit.id}: {description}",
                    to_account_id=account_id,
                    idempotency_key=f"credit:{credit.id}:disbursement",
                    metadata={"credit_id": credit.id},
                    now=now
                )

            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_ORIGINATED,
                entity_type="credit",
                entity_id=credit.id,
                user_id=user_id,
                metadata={
                    "account_id": account_id,
                    "amount": credit.amount,
                    "term": credit.term,
                    "benchmark_rate": benchmark_rate,
                    "interest_rate": credit.interest_rate,
                    "monthly_payment": credit.calculate_monthly_payment()
                }
            )

        log_action(
            self.logger, "info",
            f"Credit originated: {credit.amount:.2f} for {credit.term} months at {credit.interest_rate}%",
            user_id=user_id, action="create_credit", resource=f"credit:{credit.id}"
        )
        return credit

    def get_credit(self, credit_id: str) -> Credit:
        """Get credit by ID, raising NotFoundError if absent"""
        with self._step("load credit"):
            data = self.storage.load(self.credits_table, credit_id)
        if not data:
            raise NotFoundError(f"Credit {credit_id} not found")
        return self._credit_from_dict(data)

    def get_user_credits(self, user_id: str) -> List[Credit]:
        """Get all credits of a user, oldest first"""
        with self._step("list credits"):
            rows = self.storage.find(self.credits_table, {"user_id": user_id})
        return self._sorted([self._credit_from_dict(data) for data in rows])

    def list_credits(self, status: Optional[CreditStatus] = None) -> List[Credit]:
        with self._step("list credits"):
            if status:
                rows = self.storage.find(self.credits_table, {"status": status.value})
            else:
                rows = self.storage.load_all(self.credits_table)
        return self._sorted([self._credit_from_dict(data) for data in rows])

    def list_active_credits(self) -> List[Credit]:
        return self.list_credits(CreditStatus.ACTIVE)

    def get_payment_schedule(self, credit_id: str) -> List[PaymentScheduleEntry]:
        """
        Amortization schedule of a credit with the stored installment state
        applied; amounts are always recomputed from the credit terms.
        """
        credit = self.get_credit(credit_id)
        return self._schedule_for(credit)

    def get_installment(self, credit_id: str, payment_number: int) -> PaymentScheduleEntry:
        """One installment with its stored state"""
        return self._installment(self.get_credit(credit_id), payment_number)

    def next_pending_installment(self, credit_id: str) -> Optional[PaymentScheduleEntry]:
        """First installment that has not been paid yet"""
        return self._first_unpaid(self.get_credit(credit_id))

    def process_payment(
        self,
        credit_id: str,
        payment_number: int,
        now: Optional[datetime] = None
    ) -> PaymentScheduleEntry:
        """
        Apply one installment of a credit from its account

        Raises:
            NotFoundError: unknown credit
            PaymentNotFoundError: payment_number outside 1..term
            AlreadyProcessedError: the installment is already paid; nothing changes
            CreditNotActiveError: the credit is PAID or CANCELLED
            InsufficientFundsError: balance below the installment total; the
                penalty is charged once and the credit becomes OVERDUE, but
                no money moves and no transaction is recorded
            DependencyFailureError: a collaborator failed; nothing was applied

        Returns:
            The paid schedule entry
        """
        now = now or datetime.now(timezone.utc)
        missed: Optional[InsufficientFundsError] = None

        with self.storage.atomic():
            credit = self.get_credit(credit_id)
            entry = self._installment(credit, payment_number)
            if entry.status == PaymentStatus.PAID:
                raise AlreadyProcessedError(f"Payment #{payment_number} of credit {credit_id} already processed")
            if credit.is_terminal:
                raise CreditNotActiveError(f"Credit {credit_id} is {credit.status.value}")

            with self._step("load account"):
                account = self.accounts.get_account(credit.account_id)

            if account.balance < entry.total_amount:
                self._charge_penalty(credit, entry, now)
                missed = InsufficientFundsError(
                    f"Insufficient funds for payment #{payment_number} of credit {credit_id}: "
                    f"balance {account.balance:.2f}, due {entry.total_amount:.2f}"
                )
            else:
                self._apply_payment(credit, entry, now)

        if missed:
            log_action(
                self.logger, "warning", str(missed),
                user_id=credit.user_id, action="process_payment", resource=f"credit:{credit.id}",
                extra={"payment_number": payment_number, "penalty": entry.penalty}
            )
            raise missed

        log_action(
            self.logger, "info", f"Payment #{payment_number} applied: {entry.total_amount:.2f}",
            user_id=credit.user_id, action="process_payment", resource=f"credit:{credit.id}",
            extra={"remaining_debt": credit.remaining_debt, "status": credit.status.value}
        )
        return entry

    def cancel_credit(self, credit_id: str, reason: str, now: Optional[datetime] = None) -> Credit:
        """Administratively cancel a credit that is not PAID or CANCELLED"""
        now = now or datetime.now(timezone.utc)

        with self.storage.atomic():
            credit = self.get_credit(credit_id)
            old_status = credit.status
            if not credit.transition_to(CreditStatus.CANCELLED):
                raise InvalidStatusTransition(f"Credit {credit_id} is already cancelled")
            credit.updated_at = now
            self._save_credit(credit)

            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_CANCELLED,
                entity_type="credit",
                entity_id=credit.id,
                metadata={"old_status": old_status.value, "reason": reason}
            )

        log_action(
            self.logger, "info", f"Credit cancelled: {reason}",
            action="cancel_credit", resource=f"credit:{credit.id}"
        )
        return credit

    def process_overdue_credits(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Retry the earliest due unpaid installment of every OVERDUE credit"""
        now = now or datetime.now(timezone.utc)
        results = {"credits_processed": 0, "payments_applied": 0, "still_overdue": 0, "errors": 0}

        for credit in self.list_credits(CreditStatus.OVERDUE):
            try:
                due = self._first_unpaid(credit, due_by=now)
                if due is None:
                    continue

                results["credits_processed"] += 1
                try:
                    self.process_payment(credit.id, due.payment_number, now)
                    results["payments_applied"] += 1
                except InsufficientFundsError:
                    results["still_overdue"] += 1

            except Exception as e:
                results["errors"] += 1
                self.logger.error(f"Overdue processing failed for credit {credit.id}: {e}")

        return results

    def _charge_penalty(self, credit: Credit, entry: PaymentScheduleEntry, now: datetime) -> None:
        """Mark a missed installment; the penalty is attached at most once"""
        if entry.penalty == 0:
            entry.penalty = self.penalty_rate * entry.amount
            credit.overdue_amount += entry.penalty
        entry.status = PaymentStatus.OVERDUE

        old_status = credit.status
        changed = credit.transition_to(CreditStatus.OVERDUE)
        credit.updated_at = now

        with self._step("record missed payment"):
            self._save_entry(entry, now)
            self._save_credit(credit)

        self.audit_trail.log_event(
            event_type=AuditEventType.CREDIT_PAYMENT_MISSED,
            entity_type="credit",
            entity_id=credit.id,
            metadata={
                "payment_number": entry.payment_number,
                "penalty": entry.penalty,
                "overdue_amount": credit.overdue_amount
            }
        )
        if changed:
            self._log_status_change(credit, old_status)

    def _apply_payment(self, credit: Credit, entry: PaymentScheduleEntry, now: datetime) -> None:
        """Debit, record and book one installment inside the caller's atomic unit"""
        amount_due = entry.total_amount

        with self._step("debit account"):
            self.accounts.adjust_balance(credit.account_id, -amount_due, now)

        with self._step("record payment"):
            try:
                transaction = self.transactions.append(
                    TransactionType.PAYMENT,
                    amount_due,
                    f"Credit payment: credit #{credit.id}, payment #{entry.payment_number}",
                    from_account_id=credit.account_id,
                    idempotency_key=f"credit:{credit.id}:payment:{entry.payment_number}",
                    metadata={
                        "credit_id": credit.id,
                        "payment_number": entry.payment_number,
                        "penalty": entry.penalty
                    },
                    now=now
                )
            except DuplicateRecordError as e:
                raise AlreadyProcessedError(
                    f"Payment #{entry.payment_number} of credit {credit.id} already processed"
                ) from e

        entry.status = PaymentStatus.PAID
        entry.paid_at = now

        old_status = credit.status
        credit.total_paid += entry.amount
        credit.overdue_amount = max(0.0, credit.overdue_amount - entry.penalty)
        credit.remaining_debt = credit.calculate_remaining_debt()
        credit.last_payment = now
        credit.next_payment = credit.calculate_next_payment_date()
        credit.updated_at = now

        paid_off = entry.payment_number == credit.term or credit.remaining_debt <= 0
        if paid_off:
            credit.transition_to(CreditStatus.PAID)

        with self._step("update credit"):
            self._save_entry(entry, now)
            self._save_credit(credit)

        self.audit_trail.log_event(
            event_type=AuditEventType.CREDIT_PAYMENT_APPLIED,
            entity_type="credit",
            entity_id=credit.id,
            metadata={
                "payment_number": entry.payment_number,
                "transaction_id": transaction.id,
                "amount": amount_due,
                "penalty": entry.penalty,
                "total_paid": credit.total_paid,
                "remaining_debt": credit.remaining_debt
            }
        )
        if paid_off:
            self.audit_trail.log_event(
                event_type=AuditEventType.CREDIT_PAID_OFF,
                entity_type="credit",
                entity_id=credit.id,
                metadata={"total_paid": credit.total_paid, "final_payment": entry.payment_number}
            )
            self._log_status_change(credit, old_status)

    def _log_status_change(self, credit: Credit, old_status: CreditStatus) -> None:
        self.audit_trail.log_event(
            event_type=AuditEventType.CREDIT_STATUS_CHANGED,
            entity_type="credit",
            entity_id=credit.id,
            metadata={"old_status": old_status.value, "new_status": credit.status.value}
        )

    def _validate_terms(self, amount, term_months) -> None:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)) or not amount > 0:
            raise ValidationError(f"Invalid credit amount: {amount}")
        if isinstance(term_months, bool) or not isinstance(term_months, int) \
                or not 1 <= term_months <= MAX_TERM_MONTHS:
            raise ValidationError(f"Invalid credit term: {term_months}")

    def _schedule_for(self, credit: Credit) -> List[PaymentScheduleEntry]:
        return [self._with_state(entry) for entry in generate_schedule(credit)]

    def _installment(self, credit: Credit, payment_number: int) -> PaymentScheduleEntry:
        if not 1 <= payment_number <= credit.term:
            raise PaymentNotFoundError(
                f"Payment #{payment_number} not found for credit {credit.id} (term {credit.term})"
            )
        return self._with_state(generate_schedule(credit)[payment_number - 1])

    def _first_unpaid(self, credit: Credit, due_by: Optional[datetime] = None) -> Optional[PaymentScheduleEntry]:
        """Earliest installment not PAID, optionally only among those due by a time"""
        for entry in generate_schedule(credit):
            if due_by is not None and entry.due_date > due_by:
                return None
            if self._with_state(entry).status != PaymentStatus.PAID:
                return entry
        return None

    def _with_state(self, entry: PaymentScheduleEntry) -> PaymentScheduleEntry:
        """Apply the stored row of an installment, looked up by its key"""
        with self._step("load payment schedule"):
            row = self.storage.load(self.schedule_table, entry.key)
        if row:
            entry.status = PaymentStatus(row["status"])
            entry.penalty = float(row.get("penalty", 0.0))
            if row.get("paid_at"):
                entry.paid_at = datetime.fromisoformat(row["paid_at"])
        return entry

    def _save_entry(self, entry: PaymentScheduleEntry, now: datetime, insert: bool = False) -> None:
        row = {
            "id": entry.key,
            "credit_id": entry.credit_id,
            "payment_number": entry.payment_number,
            "status": entry.status.value,
            "penalty": entry.penalty,
            "paid_at": entry.paid_at.isoformat() if entry.paid_at else None,
            "updated_at": now.isoformat()
        }
        if insert:
            self.storage.insert(self.schedule_table, entry.key, row)
        else:
            self.storage.save(self.schedule_table, entry.key, row)

    def _save_credit(self, credit: Credit) -> None:
        credit.validate()
        self.storage.save(self.credits_table, credit.id, self._credit_to_dict(credit))

    @staticmethod
    def _sorted(credits: List[Credit]) -> List[Credit]:
        return sorted(credits, key=lambda c: c.created_at)

    def _credit_to_dict(self, credit: Credit) -> Dict:
        return credit.to_dict()

    def _credit_from_dict(self, data: Dict) -> Credit:
        """Convert dictionary to Credit"""
        def get_datetime(field: str) -> Optional[datetime]:
            value = data.get(field)
            return datetime.fromisoformat(value) if value else None

        start_date = get_datetime('start_date')
        return Credit(
            id=data['id'],
            created_at=get_datetime('created_at'),
            updated_at=get_datetime('updated_at'),
            account_id=data['account_id'],
            user_id=data['user_id'],
            amount=float(data['amount']),
            term=int(data['term']),
            interest_rate=float(data['interest_rate']),
            start_date=start_date,
            end_date=get_datetime('end_date'),
            payment_day=int(data['payment_day']),
            next_payment=get_datetime('next_payment'),
            status=CreditStatus(data['status']),
            total_paid=float(data.get('total_paid', 0.0)),
            remaining_debt=float(data.get('remaining_debt', 0.0)),
            overdue_amount=float(data.get('overdue_amount', 0.0)),
            last_payment=get_datetime('last_payment') or start_date,
            description=data.get('description') or DEFAULT_DESCRIPTION
        )
