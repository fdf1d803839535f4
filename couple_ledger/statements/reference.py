"""
Transaction Statement References

Transactions imported over the years carry their statement in many shapes:
explicit month/year pairs, "2026-03" style strings, or nothing at all but a
purchase date. This module resolves all of them to a StatementReference.
"""

import math
import re
from datetime import datetime, tzinfo
from typing import Any, Mapping, Optional

from couple_ledger.models.workspace import StatementReference
from couple_ledger.statements.cycle import resolve_card_statement_reference


MIN_STATEMENT_YEAR = 1970
MAX_STATEMENT_YEAR = 3000

MONTH_YEAR_FIELDS = [
    ("invoiceMonth", "invoiceYear"),
    ("invoice_month", "invoice_year"),
    ("statementMonth", "statementYear"),
    ("statement_month", "statement_year"),
    ("faturaMonth", "faturaYear"),
    ("fatura_month", "fatura_year"),
    ("faturaMes", "faturaAno"),
]

REFERENCE_STRING_FIELDS = [
    "invoiceRef",
    "invoice_ref",
    "statementRef",
    "statement_ref",
    "faturaRef",
    "fatura_ref",
    "invoicePeriod",
    "invoice_period",
]

INVOICE_ID_FIELDS = [
    "invoiceId",
    "invoice_id",
    "statementId",
    "statement_id",
    "cardStatementId",
    "card_statement_id",
    "faturaId",
    "fatura_id",
]

EXCLUDE_FROM_TOTALS_FIELDS = [
    "excludeFromTotals",
    "exclude_from_totals",
    "excludeFromInvoiceTotals",
    "exclude_from_invoice_totals",
]

_YEAR_FIRST = re.compile(r"^(\d{4})[-/](\d{1,2})$")
_MONTH_FIRST = re.compile(r"^(\d{1,2})[-/](\d{4})$")


def _to_int(value: Any) -> Optional[int]:
    """Read an integer out of numbers, numeric strings, datetimes or Firestore-like timestamps."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return math.trunc(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
        return math.trunc(parsed) if math.isfinite(parsed) else None
    if isinstance(value, datetime):
        return math.trunc(value.timestamp() * 1000)
    if isinstance(value, Mapping):
        seconds = value.get("seconds")
        if isinstance(seconds, (int, float)) and math.isfinite(seconds):
            return math.trunc(seconds * 1000)
    return None


def _valid_reference(month: Optional[int], year: Optional[int]) -> Optional[StatementReference]:
    if month is None or year is None:
        return None
    if not 1 <= month <= 12:
        return None
    if not MIN_STATEMENT_YEAR <= year <= MAX_STATEMENT_YEAR:
        return None
    return StatementReference(month=month, year=year)


def parse_month_year(value: Any) -> Optional[StatementReference]:
    """Parse `YYYY-MM`, `YYYY/MM`, `MM-YYYY` or `MM/YYYY`."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()

    match = _YEAR_FIRST.match(trimmed)
    if match:
        return _valid_reference(int(match.group(2)), int(match.group(1)))

    match = _MONTH_FIRST.match(trimmed)
    if match:
        return _valid_reference(int(match.group(1)), int(match.group(2)))

    return None


def get_transaction_invoice_id(transaction: Mapping[str, Any]) -> Optional[str]:
    """First non-blank statement id stored on the transaction."""
    for field in INVOICE_ID_FIELDS:
        value = transaction.get(field)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _boolean_like(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return False


def is_transaction_excluded_from_totals(transaction: Mapping[str, Any]) -> bool:
    return any(_boolean_like(transaction.get(field)) for field in EXCLUDE_FROM_TOTALS_FIELDS)


def resolve_transaction_statement_reference(
    transaction: Mapping[str, Any],
    closing_day: Optional[int] = None,
    tz: Optional[tzinfo] = None,
) -> Optional[StatementReference]:
    """
    Resolve which statement a transaction is billed on.

    Order of precedence:
    1. Explicit month/year field pairs
    2. Reference strings ("2026-03", "03/2026", ...)
    3. The purchase date, through the card's closing day when known,
       otherwise its calendar month

    Returns None when none of these is usable.
    """
    for month_field, year_field in MONTH_YEAR_FIELDS:
        reference = _valid_reference(
            _to_int(transaction.get(month_field)),
            _to_int(transaction.get(year_field)),
        )
        if reference:
            return reference

    for field in REFERENCE_STRING_FIELDS:
        reference = parse_month_year(transaction.get(field))
        if reference:
            return reference

    timestamp = _to_int(transaction.get("date"))
    if timestamp is None:
        return None

    if closing_day is not None:
        return resolve_card_statement_reference(timestamp, closing_day, tz)

    try:
        purchase = datetime.fromtimestamp(timestamp / 1000, tz)
    except (OverflowError, OSError, ValueError):
        return None
    return StatementReference(month=purchase.month, year=purchase.year)


def statement_month_year_key(month: int, year: int) -> str:
    return f"{year}-{month:02d}"
