"""
Account endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_credit_system, get_current_user_id
from .schemas import CreateAccountRequest, DepositRequest, account_to_dict, transaction_to_dict
from ..accounts import Account
from ..errors import NotAuthorizedError
from ..system import CreditSystem


router = APIRouter()


def _owned_account(system: CreditSystem, account_id: str, user_id: str) -> Account:
    account = system.account_ledger.get_account(account_id)
    if account.user_id != user_id:
        raise NotAuthorizedError(f"Account {account_id} does not belong to user {user_id}")
    return account


@router.post("", status_code=status.HTTP_201_CREATED)
def create_account(
    request: CreateAccountRequest,
    user_id: str = Depends(get_current_user_id),
    system: CreditSystem = Depends(get_credit_system)
):
    """Open an account for the caller"""
    account = system.account_ledger.create_account(
        user_id=user_id,
        initial_balance=request.initial_balance,
        number=request.number
    )
    return account_to_dict(account)


@router.get("/{account_id}")
def get_account(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    system: CreditSystem = Depends(get_credit_system)
):
    """Get account details"""
    return account_to_dict(_owned_account(system, account_id, user_id))


@router.post("/{account_id}/deposit")
def deposit(
    account_id: str,
    request: DepositRequest,
    user_id: str = Depends(get_current_user_id),
    system: CreditSystem = Depends(get_credit_system)
):
    """Deposit funds"""
    _owned_account(system, account_id, user_id)
    account = system.account_ledger.deposit(account_id, request.amount, request.description)
    return account_to_dict(account)


@router.get("/{account_id}/transactions")
def get_account_transactions(
    account_id: str,
    limit: int = 100,
    user_id: str = Depends(get_current_user_id),
    system: CreditSystem = Depends(get_credit_system)
):
    """Get account transaction history, most recent first"""
    _owned_account(system, account_id, user_id)
    transactions = system.transaction_log.get_account_transactions(account_id, limit=limit)
    return {"transactions": [transaction_to_dict(t) for t in transactions], "count": len(transactions)}
