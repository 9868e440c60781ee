"""
Admin endpoints (payment sweep trigger, credit oversight, audit)
"""

from typing import Optional

from fastapi import APIRouter, Depends

from .dependencies import get_credit_system
from .schemas import CancelCreditRequest, credit_to_dict
from ..credits import CreditStatus
from ..errors import ValidationError
from ..system import CreditSystem


router = APIRouter()


@router.post("/scheduler/check-payments")
def check_payments(system: CreditSystem = Depends(get_credit_system)):
    """Run a payment sweep now and report its outcome"""
    result = system.scheduler.check_payments()
    return result.to_dict()


@router.get("/scheduler/status")
def scheduler_status(system: CreditSystem = Depends(get_credit_system)):
    return {
        "running": system.scheduler.is_running(),
        "interval_hours": system.config.scheduler_interval_hours
    }


@router.get("/credits")
def list_credits(
    status: Optional[str] = None,
    system: CreditSystem = Depends(get_credit_system)
):
    """List all credits, optionally by status"""
    credit_status = None
    if status:
        try:
            credit_status = CreditStatus(status.upper())
        except ValueError:
            raise ValidationError(f"Unknown credit status: {status}")

    credits = system.credit_manager.list_credits(credit_status)
    return {"credits": [credit_to_dict(c) for c in credits], "count": len(credits)}


@router.post("/credits/{credit_id}/cancel")
def cancel_credit(
    credit_id: str,
    request: CancelCreditRequest,
    system: CreditSystem = Depends(get_credit_system)
):
    credit = system.credit_manager.cancel_credit(credit_id, request.reason)
    return credit_to_dict(credit)


@router.post("/credits/process-overdue")
def process_overdue_credits(system: CreditSystem = Depends(get_credit_system)):
    """Retry collection on OVERDUE credits"""
    return system.credit_manager.process_overdue_credits()


@router.get("/audit/verify")
def verify_audit_trail(system: CreditSystem = Depends(get_credit_system)):
    """Verify the audit hash chain"""
    return system.audit_trail.verify_integrity()
