"""
Credit endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_credit_system, get_current_user_id
from .schemas import CreateCreditRequest, ProcessPaymentRequest, credit_to_dict
from ..credits import Credit
from ..errors import NotAuthorizedError
from ..system import CreditSystem


router = APIRouter()


def _owned_credit(system: CreditSystem, credit_id: str, user_id: str) -> Credit:
    credit = system.credit_manager.get_credit(credit_id)
    if credit.user_id != user_id:
        raise NotAuthorizedError(f"Credit {credit_id} does not belong to user {user_id}")
    return credit


@router.post("", status_code=status.HTTP_201_CREATED)
def create_credit(
    request: CreateCreditRequest,
    user_id: str = Depends(get_current_user_id),
    system: CreditSystem = Depends(get_credit_system)
):
    """Originate a credit and disburse it onto the caller's account"""
    credit = system.credit_manager.create_credit(
        user_id=user_id,
        account_id=request.account_id,
        amount=request.amount,
        term_months=request.term_months,
        description=request.description
    )
    return credit_to_dict(credit)


@router.get("")
def list_user_credits(
    user_id: str = Depends(get_current_user_id),
    system: CreditSystem = Depends(get_credit_system)
):
    """List the caller's credits"""
    credits = system.credit_manager.get_user_credits(user_id)
    return {"credits": [credit_to_dict(c) for c in credits], "count": len(credits)}


@router.get("/{credit_id}")
def get_credit(
    credit_id: str,
    user_id: str = Depends(get_current_user_id),
    system: CreditSystem = Depends(get_credit_system)
):
    """Get credit details"""
    return credit_to_dict(_owned_credit(system, credit_id, user_id))


@router.get("/{credit_id}/schedule")
def get_payment_schedule(
    credit_id: str,
    user_id: str = Depends(get_current_user_id),
    system: CreditSystem = Depends(get_credit_system)
):
    """Get the amortization schedule with installment states"""
    _owned_credit(system, credit_id, user_id)
    schedule = system.credit_manager.get_payment_schedule(credit_id)
    return {"credit_id": credit_id, "schedule": [entry.to_dict() for entry in schedule]}


@router.post("/{credit_id}/payments")
def process_payment(
    credit_id: str,
    request: ProcessPaymentRequest,
    user_id: str = Depends(get_current_user_id),
    system: CreditSystem = Depends(get_credit_system)
):
    """Pay one installment from the credit's account"""
    _owned_credit(system, credit_id, user_id)
    entry = system.credit_manager.process_payment(credit_id, request.payment_number)
    credit = system.credit_manager.get_credit(credit_id)
    return {"payment": entry.to_dict(), "credit": credit_to_dict(credit)}
