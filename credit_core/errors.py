"""
Error Taxonomy

Domain errors are terminal and returned to the caller as-is. Dependency
failures wrap ledger, log, rate-source and storage I/O problems and are
retryable. Every error carries the HTTP status the API layer maps it to.
"""


class CreditCoreError(Exception):
    """Base class for all credit core errors"""
    status_code = 500


class ValidationError(CreditCoreError, ValueError):
    """Malformed or out-of-range credit terms or payment request"""
    status_code = 400


class InvalidStatusTransition(ValidationError):
    """Credit status change not permitted by the lifecycle"""


class CreditNotActiveError(ValidationError):
    """Payment attempted on a credit that is PAID or CANCELLED"""


class NotAuthorizedError(CreditCoreError, ValueError):
    """Account does not belong to the requesting user"""
    status_code = 403


class NotFoundError(CreditCoreError, ValueError):
    """Credit, account, user or schedule entry does not exist"""
    status_code = 404


class PaymentNotFoundError(NotFoundError):
    """Installment number outside the credit's schedule"""


class AlreadyProcessedError(CreditCoreError, ValueError):
    """Installment already applied; nothing was changed"""
    status_code = 409


class InsufficientFundsError(CreditCoreError, ValueError):
    """Balance too low; no debit was performed"""
    status_code = 402


class DependencyFailureError(CreditCoreError):
    """I/O failure in a collaborator; safe to retry"""
    status_code = 503
    retryable = True


class DuplicateRecordError(CreditCoreError):
    """Unique key already present in storage"""
    status_code = 409
