from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Mapping, Sequence

from envelope_budget.models import DistributionStrategy
from envelope_budget.schemas import Account, Envelope, Transaction
from envelope_budget.services.distribution import compute_distribution, total_distributed
from envelope_budget.utils.ids import new_id


logger = logging.getLogger(__name__)

PAYCHECK_METHODS = (
    DistributionStrategy.PROPORTIONAL,
    DistributionStrategy.EQUAL,
    DistributionStrategy.MANUAL,
)

# leftover a recorded split may carry from non-terminating divisions
REMAINDER_TOLERANCE = Decimal("0.01")


@dataclass
class PaycheckPreview:
    amount: Decimal = Decimal("0")
    distribution: dict[str, Decimal] = field(default_factory=dict)
    total_distributed: Decimal = Decimal("0")
    remaining: Decimal = Decimal("0")


class PaycheckService:
    """Record a paycheck into an account and split it across that account's envelopes.

    Unlike automatic income allocation the user picks the split method here,
    and the resulting allocations are explicit transactions, so the paycheck
    itself must not be auto-allocated again.
    """

    def __init__(self, id_factory: Callable[..., str] = new_id) -> None:
        self.id_factory = id_factory

    def resolve_amount(self, account: Account, amount: Decimal | None) -> Decimal:
        resolved = amount if amount is not None else account.default_paycheck_amount
        if resolved is None or resolved <= 0:
            raise ValueError("A positive paycheck amount is required")
        return Decimal(resolved)

    def preview(
        self,
        account: Account,
        envelopes: Sequence[Envelope],
        amount: Decimal | None,
        method: DistributionStrategy = DistributionStrategy.PROPORTIONAL,
        custom_amounts: Mapping[str, Decimal] | None = None,
    ) -> PaycheckPreview:
        if method not in PAYCHECK_METHODS:
            raise ValueError(f"Unsupported paycheck split method: {method.value}")
        total = self.resolve_amount(account, amount)
        targets = [env for env in envelopes if env.account_id == account.id]
        distribution = compute_distribution(total, targets, method, custom_amounts)
        distributed = total_distributed(distribution)
        return PaycheckPreview(
            amount=total,
            distribution=distribution,
            total_distributed=distributed,
            remaining=total - distributed,
        )

    def record(
        self,
        account: Account,
        envelopes: Sequence[Envelope],
        amount: Decimal | None = None,
        description: str = "Paycheck",
        method: DistributionStrategy = DistributionStrategy.PROPORTIONAL,
        custom_amounts: Mapping[str, Decimal] | None = None,
        on: date | None = None,
    ) -> list[Transaction]:
        """Return the paycheck transaction followed by one allocation per funded envelope."""
        preview = self.preview(account, envelopes, amount, method, custom_amounts)
        total = preview.amount
        if any(env.account_id == account.id for env in envelopes) and abs(preview.remaining) >= REMAINDER_TOLERANCE:
            raise ValueError(
                f"Paycheck split must cover the full amount: {preview.total_distributed} of {total} allocated"
            )
        when = on or date.today()
        names = {env.id: env.name for env in envelopes}

        paycheck = Transaction(
            id=self.id_factory("paycheck"),
            account_id=account.id,
            amount=total,
            description=(description or "").strip() or "Paycheck",
            date=when,
        )
        allocations = [
            Transaction(
                id=self.id_factory("allocation", envelope_id),
                envelope_id=envelope_id,
                account_id=account.id,
                amount=share,
                description=f"Paycheck allocation - {names[envelope_id]}",
                date=when,
            )
            for envelope_id, share in preview.distribution.items()
        ]
        logger.info(
            "Recorded paycheck %s of %s on account %s split %s into %d envelopes (remaining %s)",
            paycheck.id,
            total,
            account.id,
            method.value,
            len(allocations),
            preview.remaining,
        )
        return [paycheck, *allocations]

    def set_default_amount(self, account: Account, amount: Decimal) -> Account:
        if amount is None or amount <= 0:
            raise ValueError("Default paycheck amount must be positive")
        return account.model_copy(update={"default_paycheck_amount": Decimal(amount)})
