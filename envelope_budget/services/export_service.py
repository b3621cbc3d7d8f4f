from __future__ import annotations

import csv
import io
from datetime import datetime, timezone
from decimal import Decimal

from envelope_budget.schemas import ExportJsonOut, UserStateData


TRANSACTION_HEADERS = ["Date", "Description", "Amount", "Envelope", "Type"]
ENVELOPE_HEADERS = ["Name", "Allocated", "Spent", "Remaining", "Color"]


def _money(value: Decimal) -> str:
    return f"{Decimal(value):.2f}"


def export_csv(state: UserStateData) -> str:
    """Spreadsheet export: a TRANSACTIONS section, a blank line, then ENVELOPES."""
    names = {env.id: env.name for env in state.envelopes}
    buffer = io.StringIO()
    # section titles and the blank separator are written bare; data rows are fully quoted
    buffer.write("TRANSACTIONS\n")
    buffer.write(",".join(TRANSACTION_HEADERS) + "\n")
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for txn in state.transactions:
        writer.writerow([
            txn.date.isoformat(),
            txn.description,
            _money(txn.amount),
            names.get(txn.envelope_id or "", "Unassigned"),
            "Income" if txn.amount >= 0 else "Expense",
        ])
    buffer.write("\n")
    buffer.write("ENVELOPES\n")
    buffer.write(",".join(ENVELOPE_HEADERS) + "\n")
    for env in state.envelopes:
        writer.writerow([
            env.name,
            _money(env.allocated),
            _money(env.spent),
            _money(env.allocated - env.spent),
            env.color,
        ])
    return buffer.getvalue()


def export_json(state: UserStateData, exported_at: datetime | None = None) -> ExportJsonOut:
    return ExportJsonOut(
        export_date=exported_at or datetime.now(timezone.utc),
        envelopes=state.envelopes,
        transactions=state.transactions,
    )
