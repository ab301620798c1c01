"""
pipeline.py
------------
Main orchestration layer. Wires together the detection stages:
    1. CandidateGrouper   →  (merchant, direction, account) groups
    2. GapSegmenter       →  most recent active run of each group
    3. AmountClusterer    →  amount clusters of that run (exact, tiered, similar, variable)
    4. CadenceInferrer    →  median interval + MAD → frequency
    5. PatternValidator   →  dates consistent with the frequency?
    6. PatternScorer      →  confidence in [0, 1]
    7. RecencyGate        →  still active relative to "now"?

Every run goes through trace(), which records how far each group and
cluster got and why it stopped. detect() returns only the accepted
outcomes of that same trace, so the production path and the diagnostic
path can never drift apart.

Usage:
    from pipeline import RecurringDetectionPipeline

    pipeline = RecurringDetectionPipeline()
    outcomes = pipeline.detect(transactions, now)
"""

import logging
from datetime import date, datetime
from typing import Any, List

import pandas as pd

from core.ingestion import coerce_transactions
from core.models import (
    CandidateGroup,
    ClusterEvaluation,
    DetectionOutcome,
    DetectionTrace,
    GroupEvaluation,
    Stage,
    StageRejection,
)
from config.config_loader import get_recurring_detection_config
from stages.amount_clusterer import AmountClusterer
from stages.cadence_inferrer import CadenceInferrer, interval_gaps, median_and_mad
from stages.candidate_grouper import CandidateGrouper
from stages.gap_segmenter import GapSegmenter
from stages.pattern_scorer import PatternScorer
from stages.pattern_validator import PatternValidator
from stages.recency_gate import RecencyGate

logger = logging.getLogger(__name__)

OUTCOME_COLUMNS = [
    "merchant_group_id", "account_key", "direction", "frequency",
    "median_interval_days", "mad", "confidence_score", "date_consistency",
    "last_occurrence_date", "next_expected_date", "representative_amount",
    "occurrence_count", "transaction_ids", "amount_basis",
]


class RecurringDetectionPipeline:
    """
    End-to-end recurring transaction detection for one user's history.

    Stateless across runs: the instance only holds configuration, so one
    pipeline can serve any number of users, sequentially or from several
    workers.
    """

    def __init__(self, config: dict | None = None):
        """
        Args:
            config: Override for the recurring_detection config block.
                Defaults to config/config.yaml.
        """
        self.config = config if config is not None else get_recurring_detection_config()
        self.min_group_size = self.config["min_group_size"]

        self.grouper = CandidateGrouper(self.config)
        self.segmenter = GapSegmenter(self.config)
        self.clusterer = AmountClusterer(self.config)
        self.cadence = CadenceInferrer(self.config)
        self.validator = PatternValidator(self.config)
        self.scorer = PatternScorer(self.config)
        self.recency = RecencyGate(self.config)

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def detect(self, transactions: Any, now: date) -> List[DetectionOutcome]:
        """
        Run detection and return every accepted pattern.

        Args:
            transactions: Transactions, raw record mappings, or a DataFrame.
                Malformed records are excluded, not raised.
            now: Reference day for the lookback window and recency. Captured
                once by the caller.

        Returns:
            DetectionOutcomes ordered by group key, then amount.
        """
        return self.trace(transactions, now).outcomes

    def trace(self, transactions: Any, now: date) -> DetectionTrace:
        """Run detection and keep every intermediate result, accepted or not."""
        now = _as_day(now)
        txns = coerce_transactions(transactions)
        logger.info(f"Detection starting. Input: {len(txns):,} transactions, now={now}.")

        groups = self.grouper.group(txns, now)
        run = DetectionTrace(
            now=now,
            window_start=self.grouper.window_start(now),
            input_count=len(txns),
        )
        for group in groups:
            run.groups.append(self.evaluate_group(group, now))

        logger.info(
            f"Detection complete. Candidate groups: {len(groups):,}. "
            f"Outcomes: {len(run.outcomes):,}."
        )
        return run

    def run(self, transactions: Any, now: date) -> pd.DataFrame:
        """detect(), serialized to a flat DataFrame for CSV output."""
        return outcomes_to_dataframe(self.detect(transactions, now))

    # -------------------------------------------------------------------------
    # INTERNAL: PER-GROUP EVALUATION
    # -------------------------------------------------------------------------

    def evaluate_group(self, group: CandidateGroup, now: date) -> GroupEvaluation:
        """Segments, clusters and evaluates one candidate group."""
        evaluation = GroupEvaluation(group=group)
        evaluation.gap_tolerance_days = self.segmenter.tolerance_days(group.transactions)
        evaluation.segments = self.segmenter.segment(group.transactions)

        recent = evaluation.recent_segment
        if recent is None or len(recent) < self.min_group_size:
            size = 0 if recent is None else len(recent)
            return self._reject_group(
                evaluation, Stage.segmentation,
                f"most recent segment has {size} transactions (need {self.min_group_size})",
            )

        clusters = self.clusterer.cluster(recent)
        if clusters:
            return self._evaluate_clusters(group, evaluation, clusters, now)

        # No repeated exact amount: try similar amounts, then the whole
        # segment as one variable-amount bill.
        self._evaluate_clusters(group, evaluation, self.clusterer.similar_clusters(recent), now)
        if not evaluation.outcomes:
            variable = self.clusterer.variable_cluster(recent)
            if variable is not None:
                self._evaluate_clusters(group, evaluation, [variable], now)

        if not evaluation.clusters:
            return self._reject_group(
                evaluation, Stage.clustering,
                f"no amount cluster qualifies among {len(self.clusterer.bucket(recent.transactions))} "
                f"distinct amounts in {len(recent)} transactions",
            )
        return evaluation

    def _evaluate_clusters(
        self, group: CandidateGroup, evaluation: GroupEvaluation, clusters, now: date
    ) -> GroupEvaluation:
        for cluster in clusters:
            evaluation.clusters.append(self._evaluate_cluster(group, ClusterEvaluation(cluster), now))
        return evaluation

    def _evaluate_cluster(
        self, group: CandidateGroup, evaluation: ClusterEvaluation, now: date
    ) -> ClusterEvaluation:
        cluster = evaluation.cluster

        cadence = self.cadence.infer_with_history(cluster, group.transactions)
        if cadence is None:
            return self._reject_cluster(group, evaluation, Stage.cadence, self._cadence_reason(cluster))
        evaluation.cadence = cadence
        if not self.clusterer.allows(cluster, cadence.frequency):
            return self._reject_cluster(
                group, evaluation, Stage.cadence,
                f"{cluster.basis.value}-amount cluster is {cadence.frequency.value}; "
                f"only {sorted(f.value for f in self.clusterer.variable_frequencies)} allowed",
            )

        validation = self.validator.validate(cluster, cadence)
        evaluation.validation = validation
        if not validation.valid:
            return self._reject_cluster(group, evaluation, Stage.validation, validation.reason)

        score = self.scorer.score(cluster, cadence, validation)
        evaluation.confidence_score = score
        if not self.scorer.accepts(score):
            return self._reject_cluster(
                group, evaluation, Stage.scoring,
                f"confidence {score:.2f} below {self.scorer.min_confidence:.2f}",
            )

        recency = self.recency.check(cluster.last_date, cadence, now)
        evaluation.recency = recency
        if not recency.accepted:
            return self._reject_cluster(
                group, evaluation, Stage.recency,
                f"{recency.days_since_last} days since last occurrence "
                f"exceeds {recency.threshold_days:.1f}",
            )

        evaluation.outcome = DetectionOutcome(
            merchant_group_id=group.merchant_group_id,
            account_key=group.account_key,
            direction=group.direction,
            frequency=cadence.frequency,
            median_interval_days=cadence.median_interval_days,
            mad=cadence.mad,
            confidence_score=score,
            date_consistency=validation.date_consistency,
            last_occurrence_date=cluster.last_date,
            next_expected_date=self.recency.next_expected_date(cluster.last_date, cadence),
            representative_amount=cluster.amount,
            occurrence_count=len(cluster),
            transaction_ids=tuple(t.transaction_id for t in cluster.transactions),
            amount_basis=cluster.basis,
        )
        return evaluation

    def _cadence_reason(self, cluster) -> str:
        gaps = interval_gaps(cluster.dates)
        if not gaps:
            return "no intervals to measure"
        median_interval, _ = median_and_mad(gaps)
        frequency, anchor = self.cadence.nearest_anchor(median_interval)
        return (
            f"median interval {median_interval:.1f}d matches no canonical period "
            f"(nearest {frequency.value} {anchor:.0f}d "
            f"± {self.cadence.anchor_tolerance(anchor):.1f}d)"
        )

    @staticmethod
    def _reject_group(evaluation: GroupEvaluation, stage: Stage, reason: str) -> GroupEvaluation:
        evaluation.rejection = StageRejection(stage, reason)
        logger.debug(f"Group {evaluation.group.key} rejected at {stage.value}: {reason}")
        return evaluation

    @staticmethod
    def _reject_cluster(
        group: CandidateGroup, evaluation: ClusterEvaluation, stage: Stage, reason: str
    ) -> ClusterEvaluation:
        evaluation.rejection = StageRejection(stage, reason)
        logger.debug(
            f"Cluster {group.key} @ {evaluation.cluster.amount} rejected at {stage.value}: {reason}"
        )
        return evaluation


# -------------------------------------------------------------------------
# MODULE-LEVEL ENTRY POINTS
# -------------------------------------------------------------------------

def detect(transactions: Any, now: date, config: dict | None = None) -> List[DetectionOutcome]:
    """Sole public entry point: pure function of (transactions, now)."""
    return RecurringDetectionPipeline(config).detect(transactions, now)


def outcomes_to_dataframe(outcomes: List[DetectionOutcome]) -> pd.DataFrame:
    """Flattens outcomes to one row each, sorted by merchant then confidence."""
    if not outcomes:
        return pd.DataFrame(columns=OUTCOME_COLUMNS)

    rows = []
    for o in outcomes:
        rows.append({
            "merchant_group_id": o.merchant_group_id,
            "account_key": o.account_key,
            "direction": o.direction.value,
            "frequency": o.frequency.value,
            "median_interval_days": o.median_interval_days,
            "mad": o.mad,
            "confidence_score": o.confidence_score,
            "date_consistency": round(o.date_consistency, 4),
            "last_occurrence_date": o.last_occurrence_date.isoformat(),
            "next_expected_date": o.next_expected_date.isoformat(),
            "representative_amount": str(o.representative_amount),
            "occurrence_count": o.occurrence_count,
            "transaction_ids": "|".join(o.transaction_ids),
            "amount_basis": o.amount_basis.value,
        })

    df = pd.DataFrame(rows, columns=OUTCOME_COLUMNS)
    df = df.sort_values(
        ["merchant_group_id", "confidence_score"],
        ascending=[True, False],
        kind="stable",
    ).reset_index(drop=True)
    return df


def _as_day(now: date) -> date:
    """Drops any time component, so one run uses exactly one calendar day."""
    if isinstance(now, datetime):
        return now.date()
    return now
