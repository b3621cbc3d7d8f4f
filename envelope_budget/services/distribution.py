from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Sequence

from envelope_budget.models import AllocationKind, DistributionStrategy
from envelope_budget.schemas import Envelope


ZERO = Decimal("0")
HUNDRED = Decimal("100")


def compute_distribution(
    total_amount: Decimal,
    envelopes: Sequence[Envelope],
    strategy: DistributionStrategy,
    custom_amounts: Mapping[str, Decimal] | None = None,
) -> dict[str, Decimal]:
    """Split ``total_amount`` across ``envelopes`` with the given strategy.

    Returns ``{envelope_id: amount}`` in envelope order. Shares that come out
    zero or negative are left out, so every entry is money that actually moves.
    An empty mapping means no distribution was possible (no envelopes, or no
    proportional basis).
    """
    total = Decimal(total_amount)
    if strategy is DistributionStrategy.EQUAL:
        shares = _equal(total, envelopes)
    elif strategy is DistributionStrategy.PROPORTIONAL:
        shares = _proportional(total, envelopes)
    elif strategy is DistributionStrategy.CUSTOM_RULE:
        shares = _custom_rule(total, envelopes)
    elif strategy is DistributionStrategy.MANUAL:
        shares = _manual(envelopes, custom_amounts)
    else:  # pragma: no cover - exhaustive over the enum
        raise ValueError(f"Unknown distribution strategy: {strategy!r}")
    return {envelope_id: amount for envelope_id, amount in shares if amount > ZERO}


def _equal(total: Decimal, envelopes: Sequence[Envelope]) -> list[tuple[str, Decimal]]:
    if not envelopes:
        return []
    share = total / len(envelopes)
    return [(env.id, share) for env in envelopes]


def _proportional(total: Decimal, envelopes: Sequence[Envelope]) -> list[tuple[str, Decimal]]:
    basis = sum((env.allocated for env in envelopes), ZERO)
    if basis == ZERO:
        return []
    return [(env.id, total * (env.allocated / basis)) for env in envelopes]


def _custom_rule(total: Decimal, envelopes: Sequence[Envelope]) -> list[tuple[str, Decimal]]:
    shares: list[tuple[str, Decimal]] = []
    for env in envelopes:
        rule = env.allocation_rule
        if rule is None:
            continue
        if rule.kind is AllocationKind.PERCENTAGE:
            shares.append((env.id, total * (rule.value / HUNDRED)))
        else:
            # capped per envelope only; the validator is what keeps the sum in bounds
            shares.append((env.id, min(rule.value, total)))
    return shares


def _manual(envelopes: Sequence[Envelope], custom_amounts: Mapping[str, Decimal] | None) -> list[tuple[str, Decimal]]:
    if not custom_amounts:
        return []
    return [(env.id, Decimal(custom_amounts[env.id])) for env in envelopes if env.id in custom_amounts]


def total_distributed(distribution: Mapping[str, Decimal]) -> Decimal:
    return sum(distribution.values(), ZERO)
