from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence

from envelope_budget.models import DistributionStrategy
from envelope_budget.schemas import Envelope, Transaction
from envelope_budget.services.allocation_validator import validate_allocation_rules
from envelope_budget.services.distribution import compute_distribution
from envelope_budget.utils.ids import new_id


logger = logging.getLogger(__name__)

ALLOCATION_DESCRIPTION = "Income allocation - {name}"


@dataclass
class IncomeAllocation:
    """Outcome of allocating one income transaction."""

    transactions: list[Transaction] = field(default_factory=list)
    strategy: DistributionStrategy | None = None
    warning: str | None = None


@dataclass
class IncomeBatch:
    """New transactions plus every allocation they produced, ready for one ledger append."""

    transactions: list[Transaction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def is_unassigned_income(transaction: Transaction) -> bool:
    return transaction.amount > 0 and transaction.envelope_id is None


class IncomeAllocationService:
    """Turn unassigned income into allocation transactions for the account's envelopes.

    Envelopes carrying allocation rules are used when the rules validate
    against the income amount; otherwise the income is split proportionally to
    each envelope's budgeted amount. Nothing here persists anything; callers
    append the returned transactions themselves.
    """

    def __init__(self, id_factory: Callable[..., str] = new_id) -> None:
        self.id_factory = id_factory

    def process_income(self, transaction: Transaction, envelopes: Sequence[Envelope]) -> list[Transaction]:
        return self.allocate(transaction, envelopes).transactions

    def allocate(self, transaction: Transaction, envelopes: Sequence[Envelope]) -> IncomeAllocation:
        if not is_unassigned_income(transaction):
            return IncomeAllocation()

        candidates = [env for env in envelopes if env.account_id == transaction.account_id]
        rule_bearing = [env for env in candidates if env.has_rule]

        warning: str | None = None
        if rule_bearing:
            result = validate_allocation_rules(
                [env.allocation_rule for env in rule_bearing],  # type: ignore[misc]
                transaction.amount,
            )
            if result.valid:
                strategy = DistributionStrategy.CUSTOM_RULE
                targets = rule_bearing
            else:
                warning = f"Invalid income allocation for transaction {transaction.id}: {result.reason}; falling back to proportional"
                logger.warning(warning)
                strategy = DistributionStrategy.PROPORTIONAL
                targets = candidates
        else:
            strategy = DistributionStrategy.PROPORTIONAL
            targets = candidates

        distribution = compute_distribution(transaction.amount, targets, strategy)
        if not distribution:
            logger.info(
                "No distribution basis for income %s on account %s (%d envelopes)",
                transaction.id,
                transaction.account_id,
                len(candidates),
            )

        by_id = {env.id: env for env in targets}
        allocations = [
            Transaction(
                id=self.id_factory("allocation", envelope_id),
                envelope_id=envelope_id,
                account_id=transaction.account_id,
                amount=amount,
                description=ALLOCATION_DESCRIPTION.format(name=by_id[envelope_id].name),
                date=transaction.date,
            )
            for envelope_id, amount in distribution.items()
        ]
        logger.debug(
            "Allocated income %s with %s into %d envelopes",
            transaction.id,
            strategy.value,
            len(allocations),
        )
        return IncomeAllocation(transactions=allocations, strategy=strategy, warning=warning)

    def expand_batch(self, new_transactions: Iterable[Transaction], envelopes: Sequence[Envelope]) -> IncomeBatch:
        """Run every new transaction through income allocation.

        The returned list holds the new transactions in their original order,
        followed by all allocation transactions they generated.
        """
        originals = list(new_transactions)
        allocations: list[Transaction] = []
        warnings: list[str] = []
        for txn in originals:
            outcome = self.allocate(txn, envelopes)
            allocations.extend(outcome.transactions)
            if outcome.warning:
                warnings.append(outcome.warning)
        return IncomeBatch(transactions=originals + allocations, warnings=warnings)


def process_income(transaction: Transaction, envelopes: Sequence[Envelope]) -> list[Transaction]:
    return IncomeAllocationService().process_income(transaction, envelopes)
