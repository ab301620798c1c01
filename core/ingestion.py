"""
ingestion.py
-------------
Validation boundary between raw transaction feeds and the detection engine.

Records arrive as mappings (API payloads, database rows) or as a pandas
DataFrame read from CSV. Each is turned into a fixed-shape Transaction here
and nowhere else; pipeline stages never see a loosely-typed record.

A malformed record is a hard failure for that record only: it is logged
and excluded, and the rest of the batch is parsed normally.
"""

import logging
import math
import numbers
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from core.models import Direction, Transaction

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ["id", "date", "amount", "merchant_group_id"]


class InvalidTransactionError(ValueError):
    """Raised when a single input record cannot become a Transaction."""


# -------------------------------------------------------------------------
# PUBLIC INTERFACE
# -------------------------------------------------------------------------

def parse_transaction(record: Mapping[str, Any]) -> Transaction:
    """
    Build one Transaction from a raw record.

    Recognised keys:
        id, date, amount (required)
        direction | transaction_type (optional; derived from sign if absent)
        merchant_group_id (optional; ungrouped records are later ignored)
        account_key | account_id | credit_card_id (optional)

    Raises:
        InvalidTransactionError: if the date or amount cannot be parsed, the
            amount is non-finite or zero, or the direction is unknown.
    """
    txn_id = normalize_key(record.get("id"))
    if txn_id is None:
        raise InvalidTransactionError("missing transaction id")

    txn_date = _parse_date(record.get("date"), txn_id)
    amount = _parse_amount(record.get("amount"), txn_id)
    direction = _parse_direction(record, amount, txn_id)

    return Transaction(
        transaction_id=txn_id,
        date=txn_date,
        amount=amount,
        direction=direction,
        merchant_group_id=normalize_key(record.get("merchant_group_id")),
        account_key=_account_key(record),
    )


def parse_transactions(records: Iterable[Mapping[str, Any]]) -> List[Transaction]:
    """Parses a batch, excluding (and logging) each malformed record."""
    parsed: List[Transaction] = []
    rejected = 0

    for record in records:
        try:
            parsed.append(parse_transaction(record))
        except InvalidTransactionError as e:
            rejected += 1
            logger.warning(f"Excluding malformed transaction: {e}")

    if rejected:
        logger.info(f"Ingestion excluded {rejected:,} of {rejected + len(parsed):,} records.")
    return parsed


def transactions_from_dataframe(df: pd.DataFrame) -> List[Transaction]:
    """
    Parses a transactions DataFrame (e.g. from pd.read_csv).

    Raises:
        ValueError: If required columns are missing. Bad values in individual
            rows are excluded rather than raised.
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {missing}")

    records = df.astype(object).where(df.notna(), None).to_dict(orient="records")
    return parse_transactions(records)


def coerce_transactions(transactions: Any) -> List[Transaction]:
    """
    Accepts Transactions, raw mappings, or a DataFrame, in any mix of the
    first two. Ready-made Transactions are re-checked like raw records, so a
    datetime date is truncated and a zero or non-finite amount is excluded.
    """
    if isinstance(transactions, pd.DataFrame):
        return transactions_from_dataframe(transactions)

    return parse_transactions(
        _as_record(item) if isinstance(item, Transaction) else item
        for item in transactions
    )


def normalize_key(value: Any) -> Optional[str]:
    """Normalizes an identifier to text. Integral floats lose their ".0"."""
    if value is None:
        return None
    if isinstance(value, float):
        if math.isnan(value):
            return None
        if value.is_integer():
            return str(int(value))
    text = str(value).strip()
    return text or None


# -------------------------------------------------------------------------
# INTERNAL: FIELD PARSERS
# -------------------------------------------------------------------------


def _as_record(txn: Transaction) -> Dict[str, Any]:
    return {
        "id": txn.transaction_id,
        "date": txn.date,
        "amount": txn.amount,
        "direction": txn.direction,
        "merchant_group_id": txn.merchant_group_id,
        "account_key": txn.account_key,
    }


def _parse_date(value: Any, txn_id: str) -> date:
    if value is None:
        raise InvalidTransactionError(f"transaction {txn_id}: missing date")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    # pd.Timestamp reads bare numbers as epoch nanoseconds
    if isinstance(value, numbers.Number):
        raise InvalidTransactionError(f"transaction {txn_id}: numeric date {value!r}")
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError) as e:
        raise InvalidTransactionError(f"transaction {txn_id}: unparseable date {value!r}") from e
    if pd.isna(ts):
        raise InvalidTransactionError(f"transaction {txn_id}: unparseable date {value!r}")
    return ts.date()


def _parse_amount(value: Any, txn_id: str) -> Decimal:
    if value is None:
        raise InvalidTransactionError(f"transaction {txn_id}: missing amount")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise InvalidTransactionError(f"transaction {txn_id}: unparseable amount {value!r}") from e
    if not amount.is_finite():
        raise InvalidTransactionError(f"transaction {txn_id}: non-finite amount {value!r}")
    if amount == 0:
        raise InvalidTransactionError(f"transaction {txn_id}: zero amount")
    return amount


def _parse_direction(record: Mapping[str, Any], amount: Decimal, txn_id: str) -> Direction:
    raw = record.get("direction") or record.get("transaction_type")
    if raw is None:
        return Direction.expense if amount < 0 else Direction.income
    if isinstance(raw, Direction):
        return raw
    try:
        return Direction(str(raw).strip().lower())
    except ValueError as e:
        raise InvalidTransactionError(f"transaction {txn_id}: unknown direction {raw!r}") from e


def _account_key(record: Mapping[str, Any]) -> str:
    """Discriminates the funding account: explicit key, bank account, or card."""
    explicit = normalize_key(record.get("account_key"))
    if explicit is not None:
        return explicit
    account_id = normalize_key(record.get("account_id"))
    if account_id is not None:
        return f"account:{account_id}"
    card_id = normalize_key(record.get("credit_card_id"))
    if card_id is not None:
        return f"card:{card_id}"
    return "unassigned"
