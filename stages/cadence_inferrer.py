"""
cadence_inferrer.py
--------------------
Infers the cadence of an amount cluster from its inter-transaction gaps.

Statistics are robust by construction:
    - median_interval_days: median of the consecutive gaps (days).
    - mad: median of |gap - median_interval_days|. One skipped or doubled
      charge moves neither value much, unlike mean/stddev.

The median interval is matched to the nearest canonical anchor (weekly 7,
biweekly 14, monthly 30, quarterly 91, yearly 365). A match must lie within
max(anchor * anchor_tolerance_ratio, min_anchor_tolerance_days) of the
anchor. If no anchor is close enough, inference fails and returns None:
irregular spending is not an actionable recurring transaction, so there is
no "irregular" label.
"""

from typing import List, Optional, Sequence, Tuple

import numpy as np

from core.models import AmountCluster, CadenceResult, Frequency, Transaction
from config.config_loader import get_section
from stages.amount_clusterer import round_amount


def interval_gaps(dates: Sequence) -> List[int]:
    """Whole-day gaps between consecutive (sorted) dates."""
    return [(later - earlier).days for earlier, later in zip(dates, dates[1:])]


def median_and_mad(values: Sequence[float]) -> Tuple[float, float]:
    """Median and median absolute deviation."""
    arr = np.asarray(values, dtype=float)
    med = float(np.median(arr))
    mad = float(np.median(np.abs(arr - med)))
    return med, mad


class CadenceInferrer:
    def __init__(self, config: dict | None = None):
        self.anchors = {
            Frequency(name): float(days)
            for name, days in get_section("cadence_anchors", config).items()
        }
        self.config = get_section("cadence_inference", config)
        self.tolerance_ratio = self.config["anchor_tolerance_ratio"]
        self.min_tolerance_days = self.config["min_anchor_tolerance_days"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def anchor_for(self, frequency: Frequency) -> float:
        return self.anchors[frequency]

    def anchor_tolerance(self, anchor: float) -> float:
        return max(anchor * self.tolerance_ratio, self.min_tolerance_days)

    def nearest_anchor(self, median_interval: float) -> Tuple[Frequency, float]:
        """Closest anchor by relative distance, regardless of tolerance."""
        return min(
            self.anchors.items(),
            key=lambda item: abs(median_interval - item[1]) / item[1],
        )

    def classify(self, median_interval: float) -> Optional[Frequency]:
        """Frequency label for a median interval, or None if none is within tolerance."""
        frequency, anchor = self.nearest_anchor(median_interval)
        if abs(median_interval - anchor) <= self.anchor_tolerance(anchor):
            return frequency
        return None

    def infer(self, cluster: AmountCluster) -> Optional[CadenceResult]:
        """
        Returns the cluster's CadenceResult, or None when there are no gaps
        or the median interval matches no canonical period.
        """
        gaps = interval_gaps(cluster.dates)
        if not gaps:
            return None

        median_interval, mad = median_and_mad(gaps)
        frequency = self.classify(median_interval)
        if frequency is None:
            return None

        return CadenceResult(
            frequency=frequency,
            median_interval_days=median_interval,
            mad=mad,
            expected_interval_days=self.anchors[frequency],
            gaps=tuple(gaps),
        )

    def infer_with_history(
        self, cluster: AmountCluster, history: Sequence[Transaction]
    ) -> Optional[CadenceResult]:
        """
        infer(), but a two-transaction cluster whose single gap matches no
        period borrows its cadence from every transaction of the same amount
        in `history` (the full candidate group), when there are at least three.
        """
        cadence = self.infer(cluster)
        if cadence is not None or len(cluster) != 2:
            return cadence

        same_amount = sorted(
            (t for t in history if round_amount(t.amount) == cluster.amount),
            key=lambda t: (t.date, t.transaction_id),
        )
        if len(same_amount) < 3:
            return None
        return self.infer(AmountCluster(cluster.amount, tuple(same_amount), cluster.basis))
