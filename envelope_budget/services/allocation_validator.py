from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from envelope_budget.models import AllocationKind
from envelope_budget.schemas import AllocationRule


CONFLICTING_TYPES = "conflicting allocation types"
FIXED_SUM_MISMATCH = "fixed allocations do not sum to total"
PERCENTAGE_OUT_OF_RANGE = "percentage out of range"


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: str | None = None


VALID = ValidationResult(valid=True)


def validate_allocation_rules(rules: Iterable[AllocationRule], total_amount: Decimal) -> ValidationResult:
    """Check a set of envelope allocation rules for internal consistency.

    Rules are validated together: mixing fixed and percentage kinds is never
    allowed, fixed amounts must add up to ``total_amount`` exactly, and
    percentages must add up to something within ``[0, 100]``. An empty set is
    valid; whether to distribute at all is the caller's decision.
    """
    fixed_total = Decimal("0")
    percentage_total = Decimal("0")
    has_fixed = False
    has_percentage = False

    for rule in rules:
        if rule.kind is AllocationKind.FIXED:
            fixed_total += rule.value
            has_fixed = True
        elif rule.kind is AllocationKind.PERCENTAGE:
            percentage_total += rule.value
            has_percentage = True

    if has_fixed and has_percentage:
        return ValidationResult(valid=False, reason=CONFLICTING_TYPES)
    if has_fixed and fixed_total != Decimal(total_amount):
        return ValidationResult(valid=False, reason=FIXED_SUM_MISMATCH)
    if has_percentage and not (Decimal("0") <= percentage_total <= Decimal("100")):
        return ValidationResult(valid=False, reason=PERCENTAGE_OUT_OF_RANGE)
    return VALID
