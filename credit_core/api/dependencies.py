"""
Request dependencies: the credit system instance and the calling user
"""

import threading
from typing import Optional

from fastapi import Header, HTTPException

from ..system import CreditSystem


_credit_system: Optional[CreditSystem] = None
_lock = threading.Lock()


def get_credit_system() -> CreditSystem:
    """Global credit system, created on first use"""
    global _credit_system
    with _lock:
        if _credit_system is None:
            _credit_system = CreditSystem()
        return _credit_system


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity from the X-User-ID header; authentication happens upstream"""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-ID header is required")
    return x_user_id
