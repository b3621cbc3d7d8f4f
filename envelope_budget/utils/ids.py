"""
Identifier generation

Allocation transactions for several envelopes are created within the same
instant, so identifiers cannot rely on a clock alone.
"""

import uuid


def new_id(prefix: str, *parts: object) -> str:
    """
    Build a collision-free identifier

    Args:
        prefix: kind of record, e.g. ``"allocation"`` or ``"paycheck"``
        parts: optional readable qualifiers such as the envelope id

    Returns:
        ``"<prefix>-<part>-...-<32 hex chars>"``

    Example:
        >>> new_id("allocation", "env-1")  # doctest: +SKIP
        'allocation-env-1-3f2b0c9e6d0a4c1e9b7f5a2d8c4e6f10'
    """
    tokens = [prefix, *(str(p) for p in parts if p is not None and str(p) != "")]
    tokens.append(uuid.uuid4().hex)
    return "-".join(tokens)
