"""
evaluation.py
--------------
Compares detected outcomes with a labelled set of expected merchants.

Used to check threshold changes against a reviewed history before they
ship. Each expectation names a merchant group, whether it should be
detected, and optionally the amounts of a multi-tier merchant, which must
each come out as a separate outcome.

Statuses per merchant:
    matched  - detected as expected: one outcome, or for multi-tier exactly the
               expected amounts; and the expected frequency, when one is given
    partial  - detected, but the multi-tier amount set or the frequency differs
    missing  - expected but not detected
    extra    - detected but not expected (or labelled should_detect = False), or
               several outcomes where a single pattern was expected
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

import pandas as pd

from core.models import DetectionOutcome
from core.ingestion import normalize_key
from stages.amount_clusterer import round_amount


@dataclass
class Expectation:
    merchant_group_id: str
    should_detect: bool
    frequency: Optional[str] = None
    expected_amounts: List[Decimal] = field(default_factory=list)


@dataclass
class MerchantComparison:
    merchant_group_id: str
    status: str                      # "matched" | "partial" | "missing" | "extra"
    expected: Optional[Expectation] = None
    detected: List[DetectionOutcome] = field(default_factory=list)


@dataclass
class EvaluationReport:
    matched: int = 0
    partial: int = 0
    missing: int = 0
    extra: int = 0
    details: List[MerchantComparison] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "matched": self.matched,
            "partial": self.partial,
            "missing": self.missing,
            "extra": self.extra,
        }


def evaluate(
    outcomes: Iterable[DetectionOutcome], expectations: Iterable[Expectation]
) -> EvaluationReport:
    detected_by_merchant: Dict[str, List[DetectionOutcome]] = {}
    for outcome in outcomes:
        detected_by_merchant.setdefault(outcome.merchant_group_id, []).append(outcome)

    report = EvaluationReport()
    positives = set()

    for exp in expectations:
        if not exp.should_detect:
            continue
        positives.add(exp.merchant_group_id)
        detected = detected_by_merchant.get(exp.merchant_group_id, [])

        if not detected:
            status = "missing"
        elif len(exp.expected_amounts) > 1:
            detected_amounts = sorted(o.representative_amount for o in detected)
            wanted = sorted(round_amount(a) for a in exp.expected_amounts)
            status = "matched" if detected_amounts == wanted else "partial"
        elif len(detected) > 1:
            # One pattern expected, several detected: the merchant was over-split.
            status = "extra"
        else:
            status = "matched"

        if status == "matched" and exp.frequency:
            if any(o.frequency.value != exp.frequency for o in detected):
                status = "partial"

        setattr(report, status, getattr(report, status) + 1)
        report.details.append(MerchantComparison(exp.merchant_group_id, status, exp, detected))

    for merchant, detected in sorted(detected_by_merchant.items()):
        if merchant not in positives:
            report.extra += 1
            report.details.append(MerchantComparison(merchant, "extra", None, detected))

    return report


def expectations_from_records(records: Iterable[Mapping[str, Any]]) -> List[Expectation]:
    """
    Builds expectations from mappings with keys merchant_group_id,
    should_detect, frequency (optional) and expected_amounts (optional;
    a list, or a "|"-separated string as stored in CSV).
    """
    expectations = []
    for r in records:
        amounts = r.get("expected_amounts") or []
        if isinstance(amounts, str):
            amounts = [a for a in amounts.split("|") if a.strip()]
        elif not isinstance(amounts, (list, tuple)):
            amounts = [amounts]
        expectations.append(Expectation(
            merchant_group_id=normalize_key(r["merchant_group_id"]),
            should_detect=_as_bool(r.get("should_detect", True)),
            frequency=str(r["frequency"]).strip().lower() if r.get("frequency") else None,
            expected_amounts=[Decimal(str(a).strip()) for a in amounts],
        ))
    return expectations


def expectations_from_dataframe(df: pd.DataFrame) -> List[Expectation]:
    if "merchant_group_id" not in df.columns:
        raise ValueError("Missing required columns: ['merchant_group_id']")
    records = df.astype(object).where(df.notna(), None).to_dict(orient="records")
    return expectations_from_records(records)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "y"}
    return bool(value)
