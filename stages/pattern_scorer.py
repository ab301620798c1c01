"""
pattern_scorer.py
------------------
Single confidence score for a validated cluster. This is the only scoring
implementation; the batch job, admin re-sync and debug trace all call it.

    score = w_date       * date_consistency
          + w_dispersion * (1 - min(mad / (mad_saturation_ratio * period), 1))
          + w_sample     * (1 - exp(-n / sample_size_scale))
          + w_amount     * max(0, 1 - amount_mad / median_amount)

Each component is in [0, 1] and the weights sum to 1, so the score is in
[0, 1]. The sample term saturates: with the default scale of 3, three
occurrences give 0.63, six give 0.86, twelve give 0.98. The amount term is
1.0 for exact and tiered clusters and lowers the score of similar and
variable-amount clusters in proportion to their amount spread.
"""

import math

import numpy as np

from core.models import AmountCluster, CadenceResult, ValidationResult
from config.config_loader import get_section
from stages.cadence_inferrer import median_and_mad


class PatternScorer:
    def __init__(self, config: dict | None = None):
        self.config = get_section("scoring", config)
        self.weights = self.config["weights"]
        self.sample_size_scale = self.config["sample_size_scale"]
        self.mad_saturation_ratio = self.config["mad_saturation_ratio"]
        self.min_confidence = self.config["min_confidence"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def score(
        self, cluster: AmountCluster, cadence: CadenceResult, validation: ValidationResult
    ) -> float:
        w = self.weights
        raw = (
            w["date_consistency"] * validation.date_consistency
            + w["interval_dispersion"] * self.dispersion_score(cadence)
            + w["sample_size"] * self.sample_size_score(len(cluster))
            + w["amount_consistency"] * self.amount_consistency(cluster)
        )
        return round(float(np.clip(raw, 0.0, 1.0)), 4)

    def accepts(self, score: float) -> bool:
        return score >= self.min_confidence

    # -------------------------------------------------------------------------
    # COMPONENTS
    # -------------------------------------------------------------------------

    def dispersion_score(self, cadence: CadenceResult) -> float:
        saturation = self.mad_saturation_ratio * cadence.expected_interval_days
        return 1.0 - min(cadence.mad / saturation, 1.0)

    def sample_size_score(self, n: int) -> float:
        return 1.0 - math.exp(-n / self.sample_size_scale)

    @staticmethod
    def amount_consistency(cluster: AmountCluster) -> float:
        amounts = [float(abs(t.amount)) for t in cluster.transactions]
        median_amount, amount_mad = median_and_mad(amounts)
        if median_amount <= 0:
            return 0.0
        return max(0.0, 1.0 - amount_mad / median_amount)
