"""
stage_trace.py
---------------
Debug reporting over a DetectionTrace.

This module only reads what RecurringDetectionPipeline.trace() produced. It
never recomputes clustering, cadence or recency math itself, so whatever
it reports is exactly what detect() decided.

Output is one row per evaluated amount cluster, plus one row for each group
that stopped before clustering (with empty cluster columns).
"""

import logging
from typing import Iterable, List, Optional

import pandas as pd

from core.ingestion import normalize_key
from core.models import ClusterEvaluation, DetectionTrace, GroupEvaluation

logger = logging.getLogger(__name__)

TRACE_COLUMNS = [
    "merchant_group_id", "direction", "account_key",
    "group_size", "segment_count", "gap_tolerance_days", "recent_segment_size",
    "recent_segment_start", "recent_segment_end",
    "amount", "cluster_size", "amount_basis", "from_fallback",
    "frequency", "median_interval_days", "mad",
    "date_consistency", "confidence_score",
    "days_since_last", "recency_threshold_days",
    "status", "rejected_at", "reason",
]


def filter_trace(trace: DetectionTrace, merchant_group_ids: Optional[Iterable[str]]) -> DetectionTrace:
    """Returns a copy of the trace restricted to the given merchant groups."""
    if not merchant_group_ids:
        return trace
    wanted = {normalize_key(m) for m in merchant_group_ids}
    return DetectionTrace(
        now=trace.now,
        window_start=trace.window_start,
        input_count=trace.input_count,
        groups=[g for g in trace.groups if g.group.merchant_group_id in wanted],
    )


def trace_to_dataframe(trace: DetectionTrace) -> pd.DataFrame:
    rows: List[dict] = []
    for group_eval in trace.groups:
        base = _group_row(group_eval)
        if not group_eval.clusters:
            rejection = group_eval.rejection
            rows.append({
                **base,
                "status": "rejected",
                "rejected_at": rejection.stage.value if rejection else None,
                "reason": rejection.reason if rejection else None,
            })
            continue
        for cluster_eval in group_eval.clusters:
            rows.append({**base, **_cluster_row(cluster_eval)})

    return pd.DataFrame(rows, columns=TRACE_COLUMNS)


def stage_summary(trace: DetectionTrace) -> dict:
    """Counts of accepted clusters and of rejections per stage."""
    summary = {"groups": len(trace.groups), "accepted": 0, "rejected": {}}
    for group_eval in trace.groups:
        if group_eval.rejection is not None:
            stage = group_eval.rejection.stage.value
            summary["rejected"][stage] = summary["rejected"].get(stage, 0) + 1
        for cluster_eval in group_eval.clusters:
            if cluster_eval.accepted:
                summary["accepted"] += 1
            else:
                stage = cluster_eval.rejection.stage.value
                summary["rejected"][stage] = summary["rejected"].get(stage, 0) + 1
    return summary


def log_trace(trace: DetectionTrace, level: int = logging.INFO) -> None:
    """Logs one line per group and per cluster with its final state."""
    logger.log(
        level,
        f"Trace: now={trace.now}, window from {trace.window_start}, "
        f"{trace.input_count:,} transactions, {len(trace.groups):,} candidate groups.",
    )
    for group_eval in trace.groups:
        g = group_eval.group
        segments = ", ".join(
            f"{s.start_date}..{s.end_date} ({len(s)})" for s in group_eval.segments
        )
        logger.log(level, f"[{g.merchant_group_id}/{g.direction.value}/{g.account_key}] "
                          f"{len(g.transactions)} txns, segments: {segments}")
        if group_eval.rejection is not None:
            logger.log(level, f"    rejected at {group_eval.rejection.stage.value}: "
                              f"{group_eval.rejection.reason}")
        for cluster_eval in group_eval.clusters:
            logger.log(level, "    " + _describe_cluster(cluster_eval))


# -------------------------------------------------------------------------
# INTERNAL
# -------------------------------------------------------------------------

def _group_row(group_eval: GroupEvaluation) -> dict:
    g = group_eval.group
    recent = group_eval.recent_segment
    return {
        "merchant_group_id": g.merchant_group_id,
        "direction": g.direction.value,
        "account_key": g.account_key,
        "group_size": len(g.transactions),
        "segment_count": len(group_eval.segments),
        "gap_tolerance_days": group_eval.gap_tolerance_days,
        "recent_segment_size": len(recent) if recent else 0,
        "recent_segment_start": recent.start_date.isoformat() if recent else None,
        "recent_segment_end": recent.end_date.isoformat() if recent else None,
    }


def _cluster_row(cluster_eval: ClusterEvaluation) -> dict:
    cluster = cluster_eval.cluster
    cadence = cluster_eval.cadence
    validation = cluster_eval.validation
    recency = cluster_eval.recency
    rejection = cluster_eval.rejection
    return {
        "amount": str(cluster.amount),
        "cluster_size": len(cluster),
        "amount_basis": cluster.basis.value,
        "from_fallback": cluster.from_fallback,
        "frequency": cadence.frequency.value if cadence else None,
        "median_interval_days": cadence.median_interval_days if cadence else None,
        "mad": cadence.mad if cadence else None,
        "date_consistency": validation.date_consistency if validation else None,
        "confidence_score": cluster_eval.confidence_score,
        "days_since_last": recency.days_since_last if recency else None,
        "recency_threshold_days": recency.threshold_days if recency else None,
        "status": "accepted" if cluster_eval.accepted else "rejected",
        "rejected_at": rejection.stage.value if rejection else None,
        "reason": rejection.reason if rejection else None,
    }


def _describe_cluster(cluster_eval: ClusterEvaluation) -> str:
    cluster = cluster_eval.cluster
    parts = [f"${cluster.amount} x{len(cluster)}" + (f" ({cluster.basis.value})" if cluster.from_fallback else "")]
    if cluster_eval.cadence:
        c = cluster_eval.cadence
        parts.append(f"{c.frequency.value} median={c.median_interval_days:.1f}d MAD={c.mad:.1f}")
    if cluster_eval.validation:
        parts.append(f"consistency={cluster_eval.validation.date_consistency:.2f}")
    if cluster_eval.confidence_score is not None:
        parts.append(f"score={cluster_eval.confidence_score:.2f}")
    if cluster_eval.recency:
        r = cluster_eval.recency
        parts.append(f"since_last={r.days_since_last}d/{r.threshold_days:.1f}d")
    if cluster_eval.accepted:
        parts.append("ACCEPTED")
    else:
        parts.append(f"REJECTED at {cluster_eval.rejection.stage.value}: {cluster_eval.rejection.reason}")
    return " | ".join(parts)
