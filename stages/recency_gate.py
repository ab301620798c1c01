"""
recency_gate.py
----------------
Rejects patterns whose last occurrence is too old to still be active.

threshold = median_interval_days * interval_multiple, raised to a
per-frequency floor where one is configured. Biweekly is floored at 30 days:
1.5 x 14 is only 21, which rejects real payroll with a few days of jitter.

A cluster passes when days_since_last <= threshold. `now` is always passed
in by the caller; this module never reads the clock.
"""

from datetime import date, timedelta

from core.models import CadenceResult, Frequency, RecencyResult
from config.config_loader import get_section


class RecencyGate:
    def __init__(self, config: dict | None = None):
        self.config = get_section("recency", config)
        self.interval_multiple = self.config["interval_multiple"]
        self.floors = {
            Frequency(name): float(days)
            for name, days in (self.config.get("min_threshold_days") or {}).items()
        }

    def threshold_days(self, cadence: CadenceResult) -> float:
        threshold = cadence.median_interval_days * self.interval_multiple
        floor = self.floors.get(cadence.frequency)
        if floor is not None:
            threshold = max(threshold, floor)
        return threshold

    def check(self, last_date: date, cadence: CadenceResult, now: date) -> RecencyResult:
        days_since_last = (now - last_date).days
        threshold = self.threshold_days(cadence)
        return RecencyResult(
            accepted=days_since_last <= threshold,
            days_since_last=days_since_last,
            threshold_days=threshold,
        )

    @staticmethod
    def next_expected_date(last_date: date, cadence: CadenceResult) -> date:
        """Last occurrence plus the median interval, rounded half up to whole days."""
        return last_date + timedelta(days=int(cadence.median_interval_days + 0.5))
