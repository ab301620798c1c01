"""
amount_clusterer.py
--------------------
Clusters a segment's transactions by amount.

One merchant can carry several independent recurring charges (two
subscription tiers, a plan plus an add-on), so clustering is by exact
rounded absolute amount first, and each cluster is evaluated on its own.

Rules, each tried only when every rule before it keeps nothing:
    1. Exact: keep buckets with at least `min_cluster_size` transactions.
    2. Tiered: if the segment has at least `fallback_min_segment_size`
       transactions spread over at least `fallback_min_distinct_amounts`
       amounts, keep buckets with at least `fallback_min_cluster_size`
       transactions. This catches multi-tier billing whose individual
       amounts never reach the exact threshold.
    3. Similar: greedy groups of amounts within
       max(similar_min_abs_diff, seed * similar_ratio) of a seed amount.
    4. Variable: the whole segment as one cluster, for bills whose amount
       changes every period (utilities). Only for segments of at least
       `variable_min_segment_size` and only for `variable_frequencies`.

The pipeline decides when to fall through from 3 to 4: the variable
cluster is evaluated only when no similar cluster was accepted.
"""

from collections import defaultdict
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from core.models import AmountBasis, AmountCluster, Frequency, Segment, Transaction
from config.config_loader import get_section

CENT = Decimal("0.01")


def round_amount(amount: Decimal) -> Decimal:
    """Absolute amount rounded to whole cents."""
    return abs(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def median_amount(transactions) -> Decimal:
    """Median rounded absolute amount, to whole cents."""
    ordered = sorted(round_amount(t.amount) for t in transactions)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return ((ordered[mid - 1] + ordered[mid]) / 2).quantize(CENT, rounding=ROUND_HALF_UP)


def _by_date(transactions) -> List[Transaction]:
    return sorted(transactions, key=lambda t: (t.date, t.transaction_id))


class AmountClusterer:
    def __init__(self, config: dict | None = None):
        self.config = get_section("amount_clustering", config)
        self.min_cluster_size = self.config["min_cluster_size"]
        self.fallback_min_segment_size = self.config["fallback_min_segment_size"]
        self.fallback_min_cluster_size = self.config["fallback_min_cluster_size"]
        self.fallback_min_distinct_amounts = self.config["fallback_min_distinct_amounts"]

        self.similar_min_abs_diff = Decimal(str(self.config["similar_min_abs_diff"]))
        self.similar_ratio = Decimal(str(self.config["similar_ratio"]))
        self.similar_min_cluster_size = self.config["similar_min_cluster_size"]
        self.variable_min_segment_size = self.config["variable_min_segment_size"]
        self.variable_frequencies = {Frequency(f) for f in self.config["variable_frequencies"]}

    # -------------------------------------------------------------------------
    # EXACT AMOUNTS
    # -------------------------------------------------------------------------

    def bucket(self, transactions) -> Dict[Decimal, List[Transaction]]:
        """Rounded amount -> transactions, each list in date order."""
        buckets: Dict[Decimal, List[Transaction]] = defaultdict(list)
        for txn in transactions:
            buckets[round_amount(txn.amount)].append(txn)
        return {amount: _by_date(txns) for amount, txns in buckets.items()}

    def cluster(self, segment: Segment) -> List[AmountCluster]:
        """Exact, then tiered clusters ordered by amount. May be empty."""
        buckets = self.bucket(segment.transactions)

        clusters = self._keep(buckets, self.min_cluster_size, AmountBasis.exact)
        if clusters:
            return clusters

        if (
            len(segment) >= self.fallback_min_segment_size
            and len(buckets) >= self.fallback_min_distinct_amounts
        ):
            return self._keep(buckets, self.fallback_min_cluster_size, AmountBasis.tiered)

        return []

    # -------------------------------------------------------------------------
    # NON-EXACT AMOUNTS
    # -------------------------------------------------------------------------

    def is_similar(self, seed: Decimal, other: Decimal) -> bool:
        return abs(other - seed) <= max(self.similar_min_abs_diff, seed * self.similar_ratio)

    def similar_clusters(self, segment: Segment) -> List[AmountCluster]:
        """
        Greedy similar-amount groups. Seeds are taken in date order and each
        transaction joins at most one group. Ordered by representative amount.
        """
        remaining = _by_date(segment.transactions)
        clusters: List[AmountCluster] = []

        while remaining:
            seed = round_amount(remaining[0].amount)
            members = [t for t in remaining if self.is_similar(seed, round_amount(t.amount))]
            remaining = [t for t in remaining if t not in members]
            if len(members) >= self.similar_min_cluster_size:
                clusters.append(AmountCluster(median_amount(members), tuple(members), AmountBasis.similar))

        return sorted(clusters, key=lambda c: c.amount)

    def variable_cluster(self, segment: Segment) -> Optional[AmountCluster]:
        """The whole segment as one variable-amount cluster, if it is large enough."""
        if len(segment) < self.variable_min_segment_size:
            return None
        txns = _by_date(segment.transactions)
        return AmountCluster(median_amount(txns), tuple(txns), AmountBasis.variable)

    def allows(self, cluster: AmountCluster, frequency: Frequency) -> bool:
        """Variable clusters are restricted to `variable_frequencies`."""
        return cluster.basis is not AmountBasis.variable or frequency in self.variable_frequencies

    @staticmethod
    def _keep(
        buckets: Dict[Decimal, List[Transaction]], min_size: int, basis: AmountBasis
    ) -> List[AmountCluster]:
        return [
            AmountCluster(amount=amount, transactions=tuple(txns), basis=basis)
            for amount, txns in sorted(buckets.items())
            if len(txns) >= min_size
        ]
