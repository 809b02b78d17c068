from __future__ import annotations

import math
from typing import Any, Dict, List, Optional, Tuple

import altair as alt
import numpy as np
import pandas as pd

from core.charts import long_format, to_vega_spec
from core.formatting import round_half_up
from core.mapping import FieldSpec, records_frame
from core.pipeline import ProcessingError

RECORDS_KEY = "items"
FIELDS = (
    FieldSpec("sku", "SKU", "text"),
    FieldSpec("currentStock", "Current Stock"),
    FieldSpec("leadTimeDays", "Lead Time (days)"),
    FieldSpec("dailyDemand", "Daily Demand History", "list", required=False),
    FieldSpec("avgDailyDemand", "Avg Daily Demand", required=False),
    FieldSpec("demandStdDev", "Demand Std Dev", required=False),
    FieldSpec("unitCost", "Unit Cost", required=False),
)
DEFAULT_PARAMS = {"serviceLevel": 0.95, "reviewPeriodDays": 5}
Z_SCORES = {0.90: 1.28, 0.95: 1.65, 0.99: 2.33}
STATUSES = ("Critical", "Low", "Optimal", "Overstocked")
OVERSTOCK_FACTOR = 1.25


def stock_status(current: float, reorder_point: float, optimal: float) -> str:
    """Critical below the reorder point, Low below optimal, Overstocked past 125% of optimal."""
    if current < reorder_point:
        return "Critical"
    if current < optimal:
        return "Low"
    if current <= optimal * OVERSTOCK_FACTOR:
        return "Optimal"
    return "Overstocked"


def _number(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        out = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(out) else out


def _demand_stats(item: Dict[str, Any], label: str) -> Tuple[float, float]:
    history = item.get("dailyDemand")
    if isinstance(history, (list, tuple)) and len(history) > 0:
        values = pd.to_numeric(pd.Series(list(history), dtype=object), errors="coerce")
        if values.isna().any():
            raise ProcessingError(f"{label}: demand history contains non-numeric values", "invalid_input")
        arr = values.to_numpy(dtype=float)
        if (arr < 0).any():
            raise ProcessingError(f"{label}: demand history contains negative values", "invalid_input")
        return float(arr.mean()), float(arr.std(ddof=0))
    mean = _number(item.get("avgDailyDemand"))
    if mean is None:
        raise ProcessingError(f"{label}: no demand history or average daily demand", "invalid_input")
    std = _number(item.get("demandStdDev")) or 0.0
    if mean < 0 or std < 0:
        raise ProcessingError(f"{label}: demand figures cannot be negative", "invalid_input")
    return mean, std


def compute_inventory_plan(mapped: Dict[str, Any]) -> Dict[str, Any]:
    df = records_frame(mapped, RECORDS_KEY, ["sku", "currentStock", "leadTimeDays"], "inventory")
    try:
        service_level = float(mapped.get("serviceLevel", DEFAULT_PARAMS["serviceLevel"]))
    except (TypeError, ValueError):
        raise ProcessingError("Service level must be a number", "invalid_input") from None
    z = Z_SCORES.get(round(service_level, 2))
    if z is None:
        raise ProcessingError(
            f"Unsupported service level {service_level}; choose one of {', '.join(str(k) for k in Z_SCORES)}",
            "invalid_input",
        )
    review_days = _number(mapped.get("reviewPeriodDays", DEFAULT_PARAMS["reviewPeriodDays"]))
    if review_days is None or review_days < 0:
        raise ProcessingError("Review period must be zero or more days", "invalid_input")

    items: List[Dict[str, Any]] = []
    for idx, item in enumerate(df.to_dict(orient="records")):
        sku = item.get("sku")
        label = str(sku) if sku is not None and not pd.isna(sku) and str(sku).strip() else f"item {idx + 1}"
        current = _number(item.get("currentStock"))
        lead_time = _number(item.get("leadTimeDays"))
        if current is None or current < 0:
            raise ProcessingError(f"{label}: current stock must be a non-negative number", "invalid_input")
        if lead_time is None or lead_time <= 0:
            raise ProcessingError(f"{label}: lead time must be a positive number of days", "invalid_input")
        mean, std = _demand_stats(item, label)

        safety = round_half_up(z * std * math.sqrt(lead_time))
        reorder_point = round_half_up(mean * lead_time) + safety
        optimal = reorder_point + round_half_up(mean * review_days)
        unit_cost = _number(item.get("unitCost"))
        items.append(
            {
                "sku": label,
                "currentStock": current,
                "avgDailyDemand": mean,
                "demandStdDev": std,
                "leadTimeDays": lead_time,
                "safetyStock": safety,
                "reorderPoint": reorder_point,
                "optimalStock": optimal,
                "reorderQuantity": max(0.0, optimal - current),
                "daysOfCover": current / mean if mean > 0 else None,
                "stockValue": current * unit_cost if unit_cost is not None else None,
                "status": stock_status(current, reorder_point, optimal),
            }
        )

    counts = {s: sum(1 for i in items if i["status"] == s) for s in STATUSES}
    values = [i["stockValue"] for i in items if i["stockValue"] is not None]
    return {
        "serviceLevel": service_level,
        "zScore": z,
        "reviewPeriodDays": review_days,
        "items": items,
        "summary": {
            "itemCount": len(items),
            "statusCounts": counts,
            "totalReorderQuantity": float(sum(i["reorderQuantity"] for i in items)),
            "inventoryValue": float(np.sum(values)) if values else None,
        },
    }


async def process_inventory_plan(mapped: Dict[str, Any]) -> Dict[str, Any]:
    return compute_inventory_plan(mapped)


def build_inventory_charts(result: Dict[str, Any]) -> Dict[str, Any]:
    items = pd.DataFrame(result.get("items") or [])
    if items.empty:
        return {}
    long_df = long_format(
        items, ["sku", "status"], ["currentStock", "reorderPoint", "optimalStock"], var_name="level", value_name="units"
    )
    levels = (
        alt.Chart(long_df)
        .mark_bar()
        .encode(
            x=alt.X("sku:N", title="SKU"),
            xOffset="level:N",
            y=alt.Y("units:Q", title="Units"),
            color=alt.Color("level:N", title="Level"),
            tooltip=["sku", "status", "level", alt.Tooltip("units:Q", format=",.0f")],
        )
    )
    status_df = (
        items.groupby("status").size().reindex(list(STATUSES), fill_value=0).rename_axis("status").reset_index(name="count")
    )
    status = (
        alt.Chart(status_df)
        .mark_arc(innerRadius=40)
        .encode(
            theta="count:Q",
            color=alt.Color(
                "status:N",
                scale=alt.Scale(domain=list(STATUSES), range=["#dc2626", "#f59e0b", "#16a34a", "#6366f1"]),
            ),
            tooltip=["status", "count"],
        )
    )
    return {"stock_levels": to_vega_spec(levels), "status_mix": to_vega_spec(status)}


def result_table(result: Dict[str, Any]) -> pd.DataFrame:
    return pd.DataFrame(result.get("items") or [])
