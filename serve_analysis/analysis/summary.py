"""Session summary statistics over a metrics history."""

from typing import Any, Dict, Sequence

import pandas as pd

from serve_analysis.analysis.biomechanics import METRIC_RANGES, MetricsRecord

METRIC_COLUMNS = list(METRIC_RANGES)


def history_to_frame(history: Sequence[MetricsRecord]) -> pd.DataFrame:
    """
    Convert a metrics history to a DataFrame, one row per record.

    Columns: timestamp, phase, similarity and one column per metric.
    """
    columns = ["timestamp", "phase", "similarity"] + METRIC_COLUMNS
    if not history:
        return pd.DataFrame(columns=columns)
    return pd.DataFrame([record.to_dict() for record in history], columns=columns)


def summarize_history(history: Sequence[MetricsRecord]) -> Dict[str, Any]:
    """
    Summarize a session's metrics.

    Args:
        history: Metrics records, oldest first.

    Returns:
        Dictionary with sample count, mean/min/max/std per metric and for
        similarity, and the number of samples spent in each phase.
    """
    df = history_to_frame(history)
    if df.empty:
        return {"samples": 0, "metrics": {}, "phases": {}}

    stats = df[METRIC_COLUMNS + ["similarity"]].agg(["mean", "min", "max", "std"])
    stats = stats.fillna(0.0)

    return {
        "samples": int(len(df)),
        "metrics": {
            column: {stat: float(stats.loc[stat, column]) for stat in stats.index}
            for column in stats.columns
        },
        "phases": {str(k): int(v) for k, v in df["phase"].value_counts().items()},
    }
