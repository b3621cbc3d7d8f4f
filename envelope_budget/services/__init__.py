"""
Services package

Business logic for envelope budgeting: rule validation, distribution,
income allocation, the transaction ledger, paychecks, export and the
per-user state store.
"""

from .allocation_validator import ValidationResult, validate_allocation_rules
from .distribution import compute_distribution
from .income_service import IncomeAllocationService, process_income
from .ledger_service import TransactionLedger
from .paycheck_service import PaycheckService
from .user_state_service import UserStateStore

__all__ = [
    "ValidationResult",
    "validate_allocation_rules",
    "compute_distribution",
    "IncomeAllocationService",
    "process_income",
    "TransactionLedger",
    "PaycheckService",
    "UserStateStore",
]
