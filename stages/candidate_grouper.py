"""
candidate_grouper.py
---------------------
Partitions one user's transactions into candidate groups.

Grouping key is (merchant_group_id, direction, account_key) and nothing
else. Transactions without a merchant group are ignored, as are any outside
the lookback window. Groups below the minimum sample size are dropped here,
before any statistics are computed.
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Tuple

import pandas as pd

from core.models import CandidateGroup, Transaction
from config.config_loader import get_recurring_detection_config

logger = logging.getLogger(__name__)


class CandidateGrouper:
    """
    Builds CandidateGroups for a single detection run.

    Usage:
        grouper = CandidateGrouper()
        groups = grouper.group(transactions, now)
    """

    def __init__(self, config: dict | None = None):
        self.config = config if config is not None else get_recurring_detection_config()
        self.lookback_months = self.config["lookback_months"]
        self.min_group_size = self.config["min_group_size"]

    # -------------------------------------------------------------------------
    # PUBLIC INTERFACE
    # -------------------------------------------------------------------------

    def window_start(self, now: date) -> date:
        """First day of the lookback window. Calendar months, clamped at month end."""
        return (pd.Timestamp(now) - pd.DateOffset(months=self.lookback_months)).date()

    def group(self, transactions: Iterable[Transaction], now: date) -> List[CandidateGroup]:
        """
        Returns candidate groups sorted by key, each with its transactions
        ordered by (date, transaction_id).
        """
        start = self.window_start(now)
        buckets: Dict[Tuple, List[Transaction]] = defaultdict(list)

        for txn in transactions:
            if txn.merchant_group_id is None:
                continue
            if not (start <= txn.date <= now):
                continue
            buckets[(txn.merchant_group_id, txn.direction, txn.account_key)].append(txn)

        groups: List[CandidateGroup] = []
        dropped = 0
        for (merchant, direction, account), txns in buckets.items():
            if len(txns) < self.min_group_size:
                dropped += 1
                continue
            ordered = tuple(sorted(txns, key=lambda t: (t.date, t.transaction_id)))
            groups.append(CandidateGroup(merchant, direction, account, ordered))

        groups.sort(key=lambda g: g.key)
        logger.debug(
            f"Grouping: {len(groups):,} candidate groups, "
            f"{dropped:,} dropped below {self.min_group_size} transactions."
        )
        return groups
