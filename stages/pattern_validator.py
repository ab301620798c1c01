"""
pattern_validator.py
---------------------
Checks that a cluster's dates actually follow its inferred cadence.

date_consistency is the share of gaps lying within a band around the
canonical period of the inferred frequency. The band is proportional to the
period (gap_tolerance_ratio) with a floor in days, so a yearly charge may
drift by weeks while a weekly one may drift by a day or two.

A cluster is valid when date_consistency exceeds min_date_consistency and
its MAD is at most max_mad_ratio of the period. A high MAD means the
apparent periodicity is coincidental.
"""

from core.models import AmountCluster, CadenceResult, ValidationResult
from config.config_loader import get_section


class PatternValidator:
    def __init__(self, config: dict | None = None):
        self.config = get_section("validation", config)
        self.gap_tolerance_ratio = self.config["gap_tolerance_ratio"]
        self.min_gap_tolerance_days = self.config["min_gap_tolerance_days"]
        self.min_date_consistency = self.config["min_date_consistency"]
        self.max_mad_ratio = self.config["max_mad_ratio"]

    def band_days(self, period: float) -> float:
        """Allowed absolute deviation of a single gap from the period."""
        return max(period * self.gap_tolerance_ratio, self.min_gap_tolerance_days)

    def date_consistency(self, cadence: CadenceResult) -> float:
        if not cadence.gaps:
            return 0.0
        period = cadence.expected_interval_days
        band = self.band_days(period)
        consistent = sum(1 for gap in cadence.gaps if abs(gap - period) <= band)
        return consistent / len(cadence.gaps)

    def validate(self, cluster: AmountCluster, cadence: CadenceResult) -> ValidationResult:
        consistency = self.date_consistency(cadence)
        period = cadence.expected_interval_days

        if consistency <= self.min_date_consistency:
            return ValidationResult(
                valid=False,
                date_consistency=consistency,
                reason=(
                    f"date consistency {consistency:.2f} does not exceed "
                    f"{self.min_date_consistency:.2f}"
                ),
            )

        mad_ratio = cadence.mad / period
        if mad_ratio > self.max_mad_ratio:
            return ValidationResult(
                valid=False,
                date_consistency=consistency,
                reason=(
                    f"interval MAD {cadence.mad:.1f}d is {mad_ratio:.2f} of the "
                    f"{period:.0f}d period (max {self.max_mad_ratio:.2f})"
                ),
            )

        return ValidationResult(valid=True, date_consistency=consistency)
