# FILE: medistock/services/errors.py
"""
Domain errors raised by the QC / warehouse-approval / inventory services.

Every error carries the HTTP status the API boundary should answer with and
a stable `code` (the class name) so clients can branch without parsing
messages. Field-level problems travel in `details`.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class WorkflowError(RuntimeError):
    status_code: int = 400

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    @property
    def code(self) -> str:
        return type(self).__name__


class ValidationError(WorkflowError):
    """Malformed or missing input; details maps field -> message."""

    def __init__(self, message: str = "Validation error", *, field: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        if field and details is None:
            details = {field: message}
        super().__init__(message, details=details)


class NotFoundError(WorkflowError):
    status_code = 404


class PermissionDenied(WorkflowError):
    status_code = 403


class ConflictError(WorkflowError):
    """Concurrent write on the same record; safe for the caller to retry."""
    status_code = 409


# -------------------------
# State machine
# -------------------------
class InvalidStatusTransition(WorkflowError):
    pass


class NotSubmitted(InvalidStatusTransition):
    pass


# -------------------------
# Business rules
# -------------------------
class BusinessRuleViolation(WorkflowError):
    pass


class QCNotApproved(BusinessRuleViolation):
    pass


class DuplicateApproval(BusinessRuleViolation):
    pass


class IncompleteInspection(BusinessRuleViolation):
    pass


class IncompleteStorageInfo(BusinessRuleViolation):
    pass


class InsufficientAvailable(BusinessRuleViolation):
    pass


class NegativeQuantity(BusinessRuleViolation):
    pass


class BelowReserved(BusinessRuleViolation):
    pass


class ExceedsReserved(BusinessRuleViolation):
    pass


class SameWarehouse(BusinessRuleViolation):
    pass


class DuplicateBatch(BusinessRuleViolation):
    pass


class ImmutableField(BusinessRuleViolation):
    pass


class EmptyIdList(BusinessRuleViolation):
    pass


class BatchNotActive(BusinessRuleViolation):
    pass
