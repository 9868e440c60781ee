"""
Transaction Log Module

Append-only record of money movements: deposits, withdrawals, transfers,
credit disbursements and installment payments. Records created by the credit
flows are always COMPLETED. Idempotency keys are unique across the log.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any
from enum import Enum
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import ValidationError
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Types of ledger transactions"""
    TRANSFER = "TRANSFER"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    PAYMENT = "PAYMENT"        # Installment paid from an account
    CREDIT = "CREDIT"          # Credit disbursed onto an account


class TransactionStatus(Enum):
    """States of a transaction"""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass
class Transaction(StorageRecord):
    """
    Ledger transaction record
    """
    transaction_type: TransactionType
    amount: float
    from_account_id: Optional[str]  # None for deposits and disbursements
    to_account_id: Optional[str]    # None for withdrawals and payments
    description: str
    status: TransactionStatus = TransactionStatus.PENDING
    idempotency_key: Optional[str] = None
    completed_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.amount <= 0:
            raise ValidationError("Transaction amount must be positive")
        self._validate_accounts()

    def _validate_accounts(self) -> None:
        t = self.transaction_type
        if t == TransactionType.TRANSFER:
            if not self.from_account_id or not self.to_account_id:
                raise ValidationError("Both accounts are required for transfer")
            if self.from_account_id == self.to_account_id:
                raise ValidationError("Cannot transfer to the same account")
        elif t in (TransactionType.DEPOSIT, TransactionType.CREDIT):
            if not self.to_account_id:
                raise ValidationError(f"Destination account is required for {t.value.lower()}")
        elif t in (TransactionType.WITHDRAWAL, TransactionType.PAYMENT):
            if not self.from_account_id:
                raise ValidationError(f"Source account is required for {t.value.lower()}")

    @property
    def is_completed(self) -> bool:
        return self.status == TransactionStatus.COMPLETED


class TransactionLog:
    """
    Append-only transaction log
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail):
        self.storage = storage
        self.audit_trail = audit_trail
        self.table_name = "transactions"
        self.keys_table = "transaction_idempotency_keys"
        self.logger = get_logger("credit_core.transactions")

    def append(
        self,
        transaction_type: TransactionType,
        amount: float,
        description: str,
        from_account_id: Optional[str] = None,
        to_account_id: Optional[str] = None,
        idempotency_key: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None
    ) -> Transaction:
        """
        Append a COMPLETED transaction

        Args:
            transaction_type: Kind of money movement
            amount: Positive amount moved
            description: Free-text description
            from_account_id: Debited account, if any
            to_account_id: Credited account, if any
            idempotency_key: Optional unique key; a repeat raises DuplicateRecordError
            metadata: Additional structured data
            now: Completion timestamp (defaults to current UTC time)

        Returns:
            Created Transaction
        """
        now = now or datetime.now(timezone.utc)
        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            transaction_type=transaction_type,
            amount=amount,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            description=description,
            status=TransactionStatus.COMPLETED,
            idempotency_key=idempotency_key,
            completed_at=now,
            metadata=metadata or {}
        )

        with self.storage.atomic():
            if idempotency_key:
                self.storage.insert(self.keys_table, idempotency_key, {
                    "id": idempotency_key,
                    "transaction_id": transaction.id
                })
            self.storage.insert(self.table_name, transaction.id, transaction.to_dict())

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_RECORDED,
                entity_type="transaction",
                entity_id=transaction.id,
                metadata={
                    "transaction_type": transaction_type.value,
                    "amount": amount,
                    "from_account_id": from_account_id,
                    "to_account_id": to_account_id,
                    "idempotency_key": idempotency_key
                }
            )

        log_action(
            self.logger, "info", f"Transaction recorded: {description}",
            action="record_transaction", resource=f"transaction:{transaction.id}",
            extra={"type": transaction_type.value, "amount": amount}
        )
        return transaction

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        data = self.storage.load(self.table_name, transaction_id)
        if data:
            return self._transaction_from_dict(data)
        return None

    def find_by_idempotency_key(self, idempotency_key: str) -> Optional[Transaction]:
        key = self.storage.load(self.keys_table, idempotency_key)
        if key:
            return self.get_transaction(key["transaction_id"])
        return None

    def get_account_transactions(
        self,
        account_id: str,
        transaction_types: Optional[List[TransactionType]] = None,
        limit: Optional[int] = None
    ) -> List[Transaction]:
        """
        Get transactions touching an account, most recent first

        Args:
            account_id: Account ID
            transaction_types: Optional transaction type filter
            limit: Optional limit on number of transactions
        """
        transactions = [
            self._transaction_from_dict(data)
            for data in self.storage.load_all(self.table_name)
            if data.get("from_account_id") == account_id or data.get("to_account_id") == account_id
        ]

        if transaction_types:
            transactions = [t for t in transactions if t.transaction_type in transaction_types]

        transactions.sort(key=lambda t: t.created_at, reverse=True)

        if limit:
            transactions = transactions[:limit]
        return transactions

    def get_by_type(self, transaction_type: TransactionType) -> List[Transaction]:
        return [
            self._transaction_from_dict(data)
            for data in self.storage.find(self.table_name, {"transaction_type": transaction_type.value})
        ]

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        completed_at = None
        if data.get('completed_at'):
            completed_at = datetime.fromisoformat(data['completed_at'])

        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            transaction_type=TransactionType(data['transaction_type']),
            amount=float(data['amount']),
            from_account_id=data.get('from_account_id'),
            to_account_id=data.get('to_account_id'),
            description=data['description'],
            status=TransactionStatus(data['status']),
            idempotency_key=data.get('idempotency_key'),
            completed_at=completed_at,
            metadata=data.get('metadata', {})
        )
