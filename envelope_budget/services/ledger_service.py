from __future__ import annotations

from typing import Iterable, Iterator

from envelope_budget.schemas import Transaction


class TransactionLedger:
    """Ordered transaction collection for one user.

    Reads are in insertion order; ``recent`` walks it backwards. Envelope
    ``spent`` totals are not derived from the ledger.
    """

    def __init__(self, transactions: Iterable[Transaction] = ()) -> None:
        self._items: list[Transaction] = list(transactions)

    def __iter__(self) -> Iterator[Transaction]:
        return iter(list(self._items))

    def __len__(self) -> int:
        return len(self._items)

    def all(self) -> list[Transaction]:
        return list(self._items)

    def recent(self, limit: int | None = None) -> list[Transaction]:
        items = list(reversed(self._items))
        return items if limit is None else items[: max(limit, 0)]

    def get(self, txn_id: str) -> Transaction | None:
        return next((t for t in self._items if t.id == txn_id), None)

    def append_many(self, transactions: Iterable[Transaction]) -> list[Transaction]:
        """Append a batch atomically: either every transaction lands or none does."""
        batch = list(transactions)
        existing = {t.id for t in self._items}
        seen: set[str] = set()
        for txn in batch:
            if txn.id in existing or txn.id in seen:
                raise ValueError(f"Duplicate transaction id: {txn.id}")
            seen.add(txn.id)
        self._items = self._items + batch
        return batch

    def replace(self, transaction: Transaction) -> Transaction | None:
        for idx, current in enumerate(self._items):
            if current.id == transaction.id:
                self._items[idx] = transaction
                return transaction
        return None

    def remove(self, txn_id: str) -> bool:
        remaining = [t for t in self._items if t.id != txn_id]
        if len(remaining) == len(self._items):
            return False
        self._items = remaining
        return True
