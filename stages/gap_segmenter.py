"""
gap_segmenter.py
-----------------
Splits a candidate group's chronological sequence into active runs.

A new segment starts whenever two consecutive transactions are further
apart than the gap tolerance. No frequency label exists yet at this stage,
but the tolerance still scales with the group's spacing: a multiple of its
own median consecutive gap, clamped between a floor (so monthly patterns
with a skipped charge stay whole) and a ceiling. A
quarterly group therefore tolerates quarter-long gaps, while a monthly
subscription that stopped for several months and restarted is split.

Only the most recent segment is evaluated downstream.
"""

from typing import List

import numpy as np

from core.models import Segment, Transaction
from config.config_loader import get_section


class GapSegmenter:
    def __init__(self, config: dict | None = None):
        self.config = get_section("gap_segmentation", config)
        self.min_tolerance = self.config["min_tolerance_days"]
        self.max_tolerance = self.config["max_tolerance_days"]
        self.gap_multiple = self.config["median_gap_multiple"]

    def tolerance_days(self, transactions: List[Transaction] | tuple) -> float:
        """Gap tolerance for this sequence of (sorted) transactions."""
        if len(transactions) < 2:
            return float(self.min_tolerance)
        gaps = np.diff([t.date.toordinal() for t in transactions])
        scaled = self.gap_multiple * float(np.median(gaps))
        return float(min(max(scaled, self.min_tolerance), self.max_tolerance))

    def segment(self, transactions: List[Transaction] | tuple) -> List[Segment]:
        """
        Returns segments oldest first. Input must already be sorted by date.
        An empty input yields no segments.
        """
        if not transactions:
            return []

        tolerance = self.tolerance_days(transactions)
        segments: List[Segment] = []
        current = [transactions[0]]

        for prev, txn in zip(transactions, transactions[1:]):
            if (txn.date - prev.date).days > tolerance:
                segments.append(Segment(tuple(current)))
                current = []
            current.append(txn)

        segments.append(Segment(tuple(current)))
        return segments

    def most_recent(self, transactions: List[Transaction] | tuple) -> Segment | None:
        segments = self.segment(transactions)
        return segments[-1] if segments else None
