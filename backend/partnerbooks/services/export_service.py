# Overview: CSV export of ledger transactions.

from __future__ import annotations

import csv
import io

from ..errors import format_cents
from partnerbooks.time_utils import to_utc_z
from .contribution_service import query_transactions


EXPORT_COLUMNS = [
    "id",
    "transaction_date",
    "created_at",
    "partner_id",
    "partner_name",
    "type",
    "amount",
    "currency",
    "category",
    "context",
    "description",
    "related_to",
    "recorded_by",
    "receipt_url",
]

# Rows are fetched in pages so large ledgers stream in bounded memory
EXPORT_BATCH_SIZE = 500


def _csv_line(values) -> str:
    buffer = io.StringIO()
    csv.writer(buffer).writerow(values)
    return buffer.getvalue()


def iter_transactions_csv(org_id: int, **filters):
    """Yield the CSV header, then one line per transaction (newest first)."""
    yield _csv_line(EXPORT_COLUMNS)

    query = query_transactions(org_id, **filters)
    offset = 0
    while True:
        batch = query.offset(offset).limit(EXPORT_BATCH_SIZE).all()
        if not batch:
            break
        for t in batch:
            yield _csv_line([
                t.id,
                to_utc_z(t.transaction_date) or "",
                to_utc_z(t.created_at) or "",
                t.partner_id,
                t.partner.name if t.partner else "",
                t.type,
                format_cents(t.amount_cents),
                t.currency,
                t.category or "",
                t.context or "",
                t.description or "",
                t.related_to or "",
                t.recorded_by,
                t.receipt_url or "",
            ])
        offset += EXPORT_BATCH_SIZE
