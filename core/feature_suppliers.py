from __future__ import annotations

from typing import Any, Dict, List

import altair as alt
import pandas as pd

from core.charts import long_format, to_vega_spec
from core.mapping import FieldSpec, records_frame, require_numeric
from core.pipeline import ProcessingError

RECORDS_KEY = "suppliers"
CRITERIA = ("quality", "delivery", "cost", "responsiveness")
FIELDS = (
    FieldSpec("supplier", "Supplier", "text"),
    FieldSpec("quality", "Quality Score"),
    FieldSpec("delivery", "On-time Delivery Score"),
    FieldSpec("cost", "Cost Score"),
    FieldSpec("responsiveness", "Responsiveness Score"),
)
DEFAULT_WEIGHTS = {"quality": 0.35, "delivery": 0.3, "cost": 0.2, "responsiveness": 0.15}
DEFAULT_PARAMS = {"weights": dict(DEFAULT_WEIGHTS)}
GRADES = (("A", 85.0), ("B", 70.0), ("C", 55.0))


def grade(score: float) -> str:
    for letter, floor in GRADES:
        if score >= floor:
            return letter
    return "D"


def normalize_weights(raw: Any) -> Dict[str, float]:
    """Fill missing criteria from the defaults and scale the weights to sum to 1."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ProcessingError("Weights must be an object keyed by criterion", "invalid_input")
    unknown = sorted(set(raw) - set(CRITERIA))
    if unknown:
        raise ProcessingError(f"Unknown scoring criteria: {', '.join(unknown)}", "invalid_input")
    weights: Dict[str, float] = {}
    for key in CRITERIA:
        try:
            weights[key] = float(raw.get(key, DEFAULT_WEIGHTS[key]))
        except (TypeError, ValueError):
            raise ProcessingError(f"Weight for '{key}' must be a number", "invalid_input") from None
        if weights[key] < 0:
            raise ProcessingError(f"Weight for '{key}' cannot be negative", "invalid_input")
    total = sum(weights.values())
    if total <= 0:
        raise ProcessingError("At least one criterion needs a positive weight", "invalid_input")
    return {k: v / total for k, v in weights.items()}


def compute_supplier_scores(mapped: Dict[str, Any]) -> Dict[str, Any]:
    df = records_frame(mapped, RECORDS_KEY, ["supplier", *CRITERIA], "supplier")
    weights = normalize_weights(mapped.get("weights"))
    df = require_numeric(df, list(CRITERIA), "supplier")
    if ((df[list(CRITERIA)] < 0) | (df[list(CRITERIA)] > 100)).any().any():
        raise ProcessingError("Supplier scores must be between 0 and 100", "invalid_input")
    df["supplier"] = df["supplier"].astype(str)

    df["score"] = sum(df[key] * w for key, w in weights.items())
    df = df.sort_values("score", ascending=False, kind="stable").reset_index(drop=True)

    suppliers: List[Dict[str, Any]] = []
    for rank, row in enumerate(df.to_dict(orient="records"), start=1):
        scores = {key: float(row[key]) for key in CRITERIA}
        strongest = max(CRITERIA, key=lambda k: scores[k])
        weakest = min(CRITERIA, key=lambda k: scores[k])
        suppliers.append(
            {
                "rank": rank,
                "supplier": row["supplier"],
                **scores,
                "score": float(row["score"]),
                "grade": grade(float(row["score"])),
                "strength": strongest,
                "weakness": weakest,
            }
        )

    grade_counts = {letter: sum(1 for s in suppliers if s["grade"] == letter) for letter in ("A", "B", "C", "D")}
    return {
        "weights": weights,
        "suppliers": suppliers,
        "summary": {
            "supplierCount": len(suppliers),
            "averageScore": float(df["score"].mean()),
            "topSupplier": suppliers[0]["supplier"],
            "gradeCounts": grade_counts,
            "criteriaAverages": {key: float(df[key].mean()) for key in CRITERIA},
        },
    }


async def process_supplier_scores(mapped: Dict[str, Any]) -> Dict[str, Any]:
    return compute_supplier_scores(mapped)


def build_supplier_charts(result: Dict[str, Any]) -> Dict[str, Any]:
    suppliers = pd.DataFrame(result.get("suppliers") or [])
    if suppliers.empty:
        return {}
    order = suppliers["supplier"].tolist()
    ranking = (
        alt.Chart(suppliers)
        .mark_bar()
        .encode(
            x=alt.X("score:Q", title="Weighted Score", scale=alt.Scale(domain=[0, 100])),
            y=alt.Y("supplier:N", title="Supplier", sort=order),
            color=alt.Color("grade:N", title="Grade", scale=alt.Scale(domain=["A", "B", "C", "D"], range=["#16a34a", "#3b82f6", "#f59e0b", "#dc2626"])),
            tooltip=["rank", "supplier", "grade", alt.Tooltip("score:Q", format=".1f")],
        )
    )
    long_df = long_format(suppliers, "supplier", CRITERIA, var_name="criterion")
    heatmap = (
        alt.Chart(long_df)
        .mark_rect()
        .encode(
            x=alt.X("criterion:N", title="Criterion", sort=list(CRITERIA)),
            y=alt.Y("supplier:N", title="Supplier", sort=order),
            color=alt.Color("value:Q", title="Score", scale=alt.Scale(scheme="greens", domain=[0, 100])),
            tooltip=["supplier", "criterion", alt.Tooltip("value:Q", format=".0f")],
        )
    )
    return {"supplier_ranking": to_vega_spec(ranking), "criteria_heatmap": to_vega_spec(heatmap)}


def result_table(result: Dict[str, Any]) -> pd.DataFrame:
    return pd.DataFrame(result.get("suppliers") or [])
