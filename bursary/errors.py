"""
Finance Errors

Domain failures raised by the ledger, approval and reconciliation
components. Every class is a ValueError so callers that only know the
generic contract still catch them; the operation boundary maps each class
to an ``error_type`` string.
"""

from typing import Any, Dict, List, Optional


class FinanceError(ValueError):
    """Base class for all domain errors"""

    error_type = "finance_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(FinanceError):
    """Malformed input. Carries every problem found, not only the first."""

    error_type = "validation"

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Validation failed")


class NotFoundError(FinanceError):
    error_type = "not_found"


class StateConflictError(FinanceError):
    """The entity is in the wrong state for the operation"""

    error_type = "state_conflict"


class BusinessRuleError(FinanceError):
    """Imbalance, tolerance or scoping violation; ``details`` holds the variance"""

    error_type = "business_rule"


class ConcurrencyConflictError(FinanceError):
    """A compare-and-set lost a race. Safe to retry after reloading."""

    error_type = "concurrency_conflict"
