"""Card statement cycle package."""

from couple_ledger.statements.cycle import (
    clamp_day,
    days_in_month,
    resolve_card_statement_reference,
    resolve_statement_dates,
)
from couple_ledger.statements.reference import (
    get_transaction_invoice_id,
    is_transaction_excluded_from_totals,
    parse_month_year,
    resolve_transaction_statement_reference,
    statement_month_year_key,
)

__all__ = [
    "clamp_day",
    "days_in_month",
    "get_transaction_invoice_id",
    "is_transaction_excluded_from_totals",
    "parse_month_year",
    "resolve_card_statement_reference",
    "resolve_statement_dates",
    "resolve_transaction_statement_reference",
    "statement_month_year_key",
]
