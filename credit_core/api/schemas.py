"""
Pydantic schemas for API requests, and response serializers
"""

from typing import Dict, Optional, Any
from pydantic import BaseModel, Field

from ..accounts import Account
from ..credits import Credit
from ..transactions import Transaction


# Credit schemas
class CreateCreditRequest(BaseModel):
    account_id: str
    amount: float = Field(..., gt=0, description="Principal")
    term_months: int = Field(..., ge=1, le=360, description="Term in months")
    description: str = ""


class ProcessPaymentRequest(BaseModel):
    payment_number: int = Field(..., description="Installment number, 1..term")


class CancelCreditRequest(BaseModel):
    reason: str


# Account schemas
class CreateAccountRequest(BaseModel):
    initial_balance: float = Field(0.0, ge=0)
    number: Optional[str] = None


class DepositRequest(BaseModel):
    amount: float = Field(..., gt=0)
    description: str = "Deposit"


def credit_to_dict(credit: Credit) -> Dict[str, Any]:
    return {
        "id": credit.id,
        "account_id": credit.account_id,
        "user_id": credit.user_id,
        "amount": credit.amount,
        "term": credit.term,
        "interest_rate": credit.interest_rate,
        "status": credit.status.value,
        "start_date": credit.start_date.isoformat(),
        "end_date": credit.end_date.isoformat(),
        "payment_day": credit.payment_day,
        "next_payment": credit.next_payment.isoformat(),
        "monthly_payment": credit.calculate_monthly_payment(),
        "total_paid": credit.total_paid,
        "remaining_debt": credit.remaining_debt,
        "overdue_amount": credit.overdue_amount,
        "last_payment": credit.last_payment.isoformat() if credit.last_payment else None,
        "description": credit.description,
        "created_at": credit.created_at.isoformat(),
        "updated_at": credit.updated_at.isoformat()
    }


def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "number": account.number,
        "user_id": account.user_id,
        "balance": account.balance,
        "is_active": account.is_active,
        "last_operation": account.last_operation.isoformat() if account.last_operation else None,
        "created_at": account.created_at.isoformat()
    }


def transaction_to_dict(transaction: Transaction) -> Dict[str, Any]:
    return {
        "id": transaction.id,
        "type": transaction.transaction_type.value,
        "status": transaction.status.value,
        "amount": transaction.amount,
        "from_account_id": transaction.from_account_id,
        "to_account_id": transaction.to_account_id,
        "description": transaction.description,
        "completed_at": transaction.completed_at.isoformat() if transaction.completed_at else None
    }
