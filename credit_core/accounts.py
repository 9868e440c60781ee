"""
Account Ledger Module

Owns account records and their balances. Every balance mutation is a single
atomic read-modify-write under the storage lock, and a committed mutation never
leaves a balance negative.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
import random
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .transactions import TransactionLog, TransactionType
from .errors import InsufficientFundsError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action


@dataclass
class Account(StorageRecord):
    """
    Customer account holding a single balance
    """
    number: str
    user_id: str
    balance: float = 0.0
    is_active: bool = True
    last_operation: Optional[datetime] = None

    def can_withdraw(self, amount: float) -> bool:
        return self.is_active and amount > 0 and self.balance >= amount


class AccountLedger:
    """
    Manages accounts and atomic balance adjustments
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        transaction_log: Optional[TransactionLog] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.transaction_log = transaction_log
        self.accounts_table = "accounts"
        self.logger = get_logger("credit_core.accounts")

    def create_account(
        self,
        user_id: str,
        initial_balance: float = 0.0,
        number: Optional[str] = None
    ) -> Account:
        """
        Create a new account

        Args:
            user_id: ID of account owner
            initial_balance: Opening balance, must not be negative
            number: Specific account number (generated if not provided)

        Returns:
            Created Account object
        """
        if initial_balance < 0:
            raise ValidationError("Initial balance cannot be negative")

        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            number=number or self._generate_account_number(now),
            user_id=user_id,
            balance=float(initial_balance)
        )

        with self.storage.atomic():
            self.storage.insert(self.accounts_table, account.id, self._account_to_dict(account))
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_CREATED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "number": account.number,
                    "user_id": user_id,
                    "initial_balance": account.balance
                }
            )

        log_action(
            self.logger, "info", f"Account created: {account.number}",
            user_id=user_id, action="create_account", resource=f"account:{account.id}"
        )
        return account

    def get_account(self, account_id: str) -> Account:
        """Get account by ID, raising NotFoundError if absent"""
        data = self.storage.load(self.accounts_table, account_id)
        if not data:
            raise NotFoundError(f"Account {account_id} not found")
        return self._account_from_dict(data)

    def get_user_accounts(self, user_id: str) -> List[Account]:
        """Get all accounts for a user"""
        return [
            self._account_from_dict(data)
            for data in self.storage.find(self.accounts_table, {"user_id": user_id})
        ]

    def adjust_balance(self, account_id: str, delta: float, now: Optional[datetime] = None) -> Account:
        """
        Atomically add a signed delta to the account balance

        The balance check and the write happen in one atomic unit, so two
        concurrent debits can never both pass the check on a stale balance.

        Raises:
            NotFoundError: account does not exist
            ValidationError: account is inactive
            InsufficientFundsError: the result would be negative; nothing is written
        """
        now = now or datetime.now(timezone.utc)

        with self.storage.atomic():
            account = self.get_account(account_id)
            if not account.is_active:
                raise ValidationError(f"Account {account_id} is not active")

            new_balance = account.balance + delta
            if new_balance < 0:
                raise InsufficientFundsError(
                    f"Insufficient funds on account {account_id}: "
                    f"balance {account.balance:.2f}, requested {-delta:.2f}"
                )

            old_balance = account.balance
            account.balance = new_balance
            account.last_operation = now
            account.updated_at = now
            self._save_account(account)

            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_BALANCE_ADJUSTED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "old_balance": old_balance,
                    "new_balance": new_balance,
                    "delta": delta
                }
            )

        return account

    def deposit(self, account_id: str, amount: float, description: str = "Deposit") -> Account:
        """Deposit funds and record a DEPOSIT transaction"""
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        with self.storage.atomic():
            account = self.adjust_balance(account_id, amount)
            if self.transaction_log:
                self.transaction_log.append(
                    TransactionType.DEPOSIT, amount, description, to_account_id=account_id
                )
        return account

    def withdraw(self, account_id: str, amount: float, description: str = "Withdrawal") -> Account:
        """Withdraw funds and record a WITHDRAWAL transaction"""
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        with self.storage.atomic():
            account = self.adjust_balance(account_id, -amount)
            if self.transaction_log:
                self.transaction_log.append(
                    TransactionType.WITHDRAWAL, amount, description, from_account_id=account_id
                )
        return account

    def transfer(self, from_account_id: str, to_account_id: str, amount: float,
                 description: str = "Transfer") -> None:
        """Move funds between two accounts in one atomic unit"""
        if amount <= 0:
            raise ValidationError("Amount must be positive")
        if from_account_id == to_account_id:
            raise ValidationError("Cannot transfer to the same account")

        with self.storage.atomic():
            self.adjust_balance(from_account_id, -amount)
            self.adjust_balance(to_account_id, amount)
            if self.transaction_log:
                self.transaction_log.append(
                    TransactionType.TRANSFER, amount, description,
                    from_account_id=from_account_id, to_account_id=to_account_id
                )

    def update_account(self, account: Account) -> Account:
        """Persist changes to an account record"""
        if account.balance < 0:
            raise ValidationError("Account balance cannot be negative")

        with self.storage.atomic():
            self.get_account(account.id)
            account.updated_at = datetime.now(timezone.utc)
            self._save_account(account)
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_UPDATED,
                entity_type="account",
                entity_id=account.id,
                metadata={"is_active": account.is_active, "balance": account.balance}
            )
        return account

    def _generate_account_number(self, now: datetime) -> str:
        """Timestamp followed by six random digits"""
        return now.strftime("%Y%m%d%H%M%S") + f"{random.randint(0, 999999):06d}"

    def _save_account(self, account: Account) -> None:
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        return account.to_dict()

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        last_operation = None
        if data.get('last_operation'):
            last_operation = datetime.fromisoformat(data['last_operation'])

        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            number=data['number'],
            user_id=data['user_id'],
            balance=float(data['balance']),
            is_active=data.get('is_active', True),
            last_operation=last_operation
        )
