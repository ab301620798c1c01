"""
models.py
----------
Core domain models. These are the typed contracts between pipeline stages.

- Transaction: validated input record. Built only at the ingestion boundary.
- CandidateGroup / Segment / AmountCluster: intermediate partitions of one
  user's history, created fresh per run and never mutated.
- CadenceResult / ValidationResult: per-cluster statistics.
- DetectionOutcome: the externally visible unit of work product.
- GroupEvaluation / ClusterEvaluation: the record of how far each group and
  cluster got through the pipeline, and why it stopped. detect() keeps only
  the accepted outcomes; the diagnostic trace keeps everything.
"""

import enum
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional, Tuple


class Direction(str, enum.Enum):
    """Money flow direction of a transaction."""
    income = "income"
    expense = "expense"


class Frequency(str, enum.Enum):
    """Canonical cadence labels. There is deliberately no "irregular"."""
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class AmountBasis(str, enum.Enum):
    """Which clustering rule produced an AmountCluster, in the order they are tried."""
    exact = "exact"          # >= 3 at one rounded amount
    tiered = "tiered"        # >= 2 at each of several coexisting amounts
    similar = "similar"      # amounts within a few dollars / percent of each other
    variable = "variable"    # whole segment, amounts vary (utilities)


class Stage(str, enum.Enum):
    """Pipeline stages, in execution order."""
    grouping = "grouping"
    segmentation = "segmentation"
    clustering = "clustering"
    cadence = "cadence"
    validation = "validation"
    scoring = "scoring"
    recency = "recency"


@dataclass(frozen=True)
class Transaction:
    """A single validated transaction. amount is signed and never zero."""
    transaction_id: str
    date: date
    amount: Decimal
    direction: Direction
    merchant_group_id: Optional[str]
    account_key: str


@dataclass(frozen=True)
class CandidateGroup:
    """All in-window transactions for one (merchant, direction, account) key."""
    merchant_group_id: str
    direction: Direction
    account_key: str
    transactions: Tuple[Transaction, ...]

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.merchant_group_id, self.direction.value, self.account_key)


@dataclass(frozen=True)
class Segment:
    """A gap-free run of a group's transactions, sorted ascending by date."""
    transactions: Tuple[Transaction, ...]

    @property
    def start_date(self) -> date:
        return self.transactions[0].date

    @property
    def end_date(self) -> date:
        return self.transactions[-1].date

    def __len__(self) -> int:
        return len(self.transactions)


@dataclass(frozen=True)
class AmountCluster:
    """
    Transactions of one segment treated as a single recurring charge.

    For exact and tiered clusters every transaction rounds to `amount`. For
    similar and variable clusters `amount` is the median rounded amount.
    """
    amount: Decimal
    transactions: Tuple[Transaction, ...]
    basis: AmountBasis = AmountBasis.exact

    @property
    def from_fallback(self) -> bool:
        return self.basis is not AmountBasis.exact

    @property
    def dates(self) -> List[date]:
        return [t.date for t in self.transactions]

    @property
    def last_date(self) -> date:
        return self.transactions[-1].date

    def __len__(self) -> int:
        return len(self.transactions)


@dataclass(frozen=True)
class CadenceResult:
    """Interval statistics of an amount cluster."""
    frequency: Frequency
    median_interval_days: float
    mad: float                       # Median absolute deviation of the gaps.
    expected_interval_days: float    # Canonical anchor of `frequency`.
    gaps: Tuple[int, ...] = ()


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    date_consistency: float          # 0.0 – 1.0. Share of gaps near the anchor.
    reason: str = ""


@dataclass(frozen=True)
class RecencyResult:
    accepted: bool
    days_since_last: int
    threshold_days: float


@dataclass(frozen=True)
class DetectionOutcome:
    """
    One accepted recurring pattern.

    Suitable for upserting keyed by (merchant_group_id, account_key,
    representative_amount) and for driving upcoming-charge notifications.
    """

    # Identity
    merchant_group_id: str
    account_key: str
    direction: Direction

    # Cadence
    frequency: Frequency
    median_interval_days: float
    mad: float

    # Confidence
    confidence_score: float          # 0.0 – 1.0
    date_consistency: float

    # Timing
    last_occurrence_date: date
    next_expected_date: date

    # Amount
    representative_amount: Decimal   # Cluster amount; median for similar/variable clusters.

    # Evidence
    occurrence_count: int
    transaction_ids: Tuple[str, ...] = ()
    amount_basis: AmountBasis = AmountBasis.exact

    @property
    def upsert_key(self) -> Tuple[str, str, Decimal]:
        return (self.merchant_group_id, self.account_key, self.representative_amount)


@dataclass(frozen=True)
class StageRejection:
    """Why a group or cluster did not produce an outcome. Not an error."""
    stage: Stage
    reason: str


@dataclass
class ClusterEvaluation:
    """
    Stage-by-stage record for one amount cluster.

    Exactly one of `outcome` / `rejection` is set once evaluation finishes.
    Intermediate results are filled in as each stage runs, so a rejected
    cluster still shows everything computed before it stopped.
    """
    cluster: AmountCluster
    cadence: Optional[CadenceResult] = None
    validation: Optional[ValidationResult] = None
    confidence_score: Optional[float] = None
    recency: Optional[RecencyResult] = None
    outcome: Optional[DetectionOutcome] = None
    rejection: Optional[StageRejection] = None

    @property
    def accepted(self) -> bool:
        return self.outcome is not None

    @property
    def last_stage(self) -> Stage:
        if self.rejection is not None:
            return self.rejection.stage
        return Stage.recency


@dataclass
class GroupEvaluation:
    """Stage-by-stage record for one candidate group."""
    group: CandidateGroup
    segments: List[Segment] = field(default_factory=list)
    gap_tolerance_days: Optional[float] = None
    clusters: List[ClusterEvaluation] = field(default_factory=list)
    rejection: Optional[StageRejection] = None

    @property
    def recent_segment(self) -> Optional[Segment]:
        return self.segments[-1] if self.segments else None

    @property
    def outcomes(self) -> List[DetectionOutcome]:
        return [c.outcome for c in self.clusters if c.outcome is not None]


@dataclass
class DetectionTrace:
    """Full introspection record of one run. detect() is a projection of it."""
    now: date
    window_start: date
    input_count: int
    groups: List[GroupEvaluation] = field(default_factory=list)

    @property
    def outcomes(self) -> List[DetectionOutcome]:
        return [o for g in self.groups for o in g.outcomes]
