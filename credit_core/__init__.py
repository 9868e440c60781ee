"""
Credit Core

Banking back-office credit engine: loan origination, annuity amortization
schedules, installment payment processing with penalties, and a periodic
payment scheduler, backed by an atomic account ledger and transaction log.
"""

__version__ = "1.0.0"
