from __future__ import annotations

from typing import Any, Dict, List

import altair as alt
import numpy as np
import pandas as pd

from core.charts import to_vega_spec
from core.mapping import FieldSpec, records_frame, require_numeric
from core.pipeline import ProcessingError

RECORDS_KEY = "customers"
FIELDS = (
    FieldSpec("customerId", "Customer ID", "text"),
    FieldSpec("recencyDays", "Days Since Last Purchase"),
    FieldSpec("frequency", "Purchase Count"),
    FieldSpec("monetary", "Total Spend"),
)
DEFAULT_PARAMS = {"bins": 5}
SEGMENTS = ("Champions", "Loyal", "Potential", "At Risk", "Lost")


def quantile_scores(values: pd.Series, bins: int, *, higher_is_better: bool = True) -> pd.Series:
    """Rank-based quantile buckets 1..bins; ties broken by order of appearance."""
    n = len(values)
    ranks = values.rank(method="first", ascending=True)
    buckets = np.ceil(ranks * bins / n).astype(int).clip(1, bins)
    return buckets if higher_is_better else bins + 1 - buckets


def assign_segment(r: int, f: int, m: int, bins: int) -> str:
    overall = (r + f + m) / (3 * bins)
    if overall >= 0.8:
        return "Champions"
    if overall >= 0.6:
        return "Loyal"
    if r / bins <= 0.4 and (f + m) / (2 * bins) >= 0.6:
        return "At Risk"
    if overall < 0.4:
        return "Lost"
    return "Potential"


def compute_segmentation(mapped: Dict[str, Any]) -> Dict[str, Any]:
    df = records_frame(mapped, RECORDS_KEY, ["customerId", "recencyDays", "frequency", "monetary"], "customer")
    try:
        bins = int(mapped.get("bins", DEFAULT_PARAMS["bins"]))
    except (TypeError, ValueError):
        raise ProcessingError("Number of score bins must be an integer", "invalid_input") from None
    if not 3 <= bins <= 5:
        raise ProcessingError("Number of score bins must be between 3 and 5", "invalid_input")

    df = require_numeric(df, ["recencyDays", "frequency", "monetary"], "customer")
    if (df[["recencyDays", "frequency", "monetary"]] < 0).any().any():
        raise ProcessingError("Recency, frequency and spend cannot be negative", "invalid_input")
    df["customerId"] = df["customerId"].astype(str)

    df["r"] = quantile_scores(df["recencyDays"], bins, higher_is_better=False)
    df["f"] = quantile_scores(df["frequency"], bins)
    df["m"] = quantile_scores(df["monetary"], bins)
    df["segment"] = [assign_segment(r, f, m, bins) for r, f, m in zip(df["r"], df["f"], df["m"])]

    customers: List[Dict[str, Any]] = [
        {
            "customerId": row.customerId,
            "recencyDays": float(row.recencyDays),
            "frequency": float(row.frequency),
            "monetary": float(row.monetary),
            "rScore": int(row.r),
            "fScore": int(row.f),
            "mScore": int(row.m),
            "rfmScore": f"{int(row.r)}{int(row.f)}{int(row.m)}",
            "segment": row.segment,
        }
        for row in df.itertuples(index=False)
    ]

    total = len(df)
    total_spend = float(df["monetary"].sum())
    segments: List[Dict[str, Any]] = []
    for name in SEGMENTS:
        part = df[df["segment"] == name]
        if part.empty:
            continue
        spend = float(part["monetary"].sum())
        segments.append(
            {
                "segment": name,
                "count": int(len(part)),
                "share": len(part) / total * 100,
                "avgRecency": float(part["recencyDays"].mean()),
                "avgFrequency": float(part["frequency"].mean()),
                "avgMonetary": float(part["monetary"].mean()),
                "totalMonetary": spend,
                "revenueShare": spend / total_spend * 100 if total_spend else None,
            }
        )
    return {"bins": bins, "customerCount": total, "customers": customers, "segments": segments}


async def process_segmentation(mapped: Dict[str, Any]) -> Dict[str, Any]:
    return compute_segmentation(mapped)


def build_segmentation_charts(result: Dict[str, Any]) -> Dict[str, Any]:
    segments = pd.DataFrame(result.get("segments") or [])
    customers = pd.DataFrame(result.get("customers") or [])
    charts: Dict[str, Any] = {}
    if not segments.empty:
        bar = (
            alt.Chart(segments)
            .mark_bar()
            .encode(
                x=alt.X("segment:N", title="Segment", sort=list(SEGMENTS)),
                y=alt.Y("count:Q", title="Customers"),
                color=alt.Color("segment:N", legend=None),
                tooltip=["segment", "count", alt.Tooltip("share:Q", format=".1f"), alt.Tooltip("totalMonetary:Q", format="$,.0f")],
            )
        )
        charts["segment_sizes"] = to_vega_spec(bar)
    if not customers.empty:
        scatter = (
            alt.Chart(customers)
            .mark_circle(size=80, opacity=0.7)
            .encode(
                x=alt.X("frequency:Q", title="Purchase Count"),
                y=alt.Y("monetary:Q", title="Total Spend", axis=alt.Axis(format="$,.0f")),
                color=alt.Color("segment:N", title="Segment", sort=list(SEGMENTS)),
                tooltip=["customerId", "segment", "rfmScore", alt.Tooltip("recencyDays:Q", title="Recency (days)")],
            )
        )
        charts["rfm_scatter"] = to_vega_spec(scatter)
    return charts


def result_table(result: Dict[str, Any]) -> pd.DataFrame:
    return pd.DataFrame(result.get("customers") or [])
