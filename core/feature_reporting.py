from __future__ import annotations

from typing import Any, Dict, List

import altair as alt
import pandas as pd

from core.charts import long_format, to_vega_spec
from core.mapping import FieldSpec, records_frame, require_numeric
from core.pipeline import ProcessingError

RECORDS_KEY = "businessData"
FIELDS = (
    FieldSpec("date", "Date", "date"),
    FieldSpec("sales", "Sales"),
    FieldSpec("expenses", "Expenses"),
    FieldSpec("profit", "Profit", required=False),
)
DEFAULT_PARAMS = {"aggregation": "monthly", "reportType": "detailed"}
AGGREGATIONS = ("daily", "weekly", "monthly")
REPORT_TYPES = ("summary", "detailed")

SAMPLE_ENTRIES = [
    {"date": "2025-01-01", "sales": 10000, "expenses": 6000, "profit": 4000},
    {"date": "2025-02-01", "sales": 12000, "expenses": 7000, "profit": 5000},
    {"date": "2025-03-01", "sales": 15000, "expenses": 8000, "profit": 7000},
]


def _growth(before: float, after: float) -> float:
    return (after - before) / before * 100 if before > 0 else 0.0


def _period_labels(dates: pd.Series, aggregation: str) -> pd.DataFrame:
    if aggregation == "monthly":
        periods = dates.dt.to_period("M")
        labels = periods.dt.strftime("%b %Y")
    elif aggregation == "weekly":
        periods = dates.dt.to_period("W-SUN")
        labels = "Week of " + periods.dt.start_time.dt.strftime("%Y-%m-%d")
    else:
        periods = dates.dt.to_period("D")
        labels = periods.dt.strftime("%Y-%m-%d")
    return pd.DataFrame({"period_key": periods, "period": labels})


def compute_business_report(mapped: Dict[str, Any]) -> Dict[str, Any]:
    df = records_frame(mapped, RECORDS_KEY, ["date", "sales", "expenses"], "business")
    aggregation = mapped.get("aggregation", DEFAULT_PARAMS["aggregation"])
    report_type = mapped.get("reportType", DEFAULT_PARAMS["reportType"])
    if aggregation not in AGGREGATIONS:
        raise ProcessingError(f"Unknown aggregation '{aggregation}'", "invalid_input")
    if report_type not in REPORT_TYPES:
        raise ProcessingError(f"Unknown report type '{report_type}'", "invalid_input")

    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    if df["date"].isna().any():
        raise ProcessingError(f"{int(df['date'].isna().sum())} business record(s) have an invalid date", "invalid_input")
    df = require_numeric(df, ["sales", "expenses"], "business")
    derived_profit = df["sales"] - df["expenses"]
    if "profit" in df.columns:
        df["profit"] = pd.to_numeric(df["profit"], errors="coerce").fillna(derived_profit)
    else:
        df["profit"] = derived_profit
    df = df.sort_values("date", kind="stable").reset_index(drop=True)

    total_sales = float(df["sales"].sum())
    total_expenses = float(df["expenses"].sum())
    total_profit = float(df["profit"].sum())
    if total_sales == 0:
        raise ProcessingError("Total sales is zero, so the profit margin is undefined", "division_by_zero")

    midpoint = len(df) // 2
    first, second = df.iloc[:midpoint], df.iloc[midpoint:]
    summary = {
        "totalSales": total_sales,
        "totalExpenses": total_expenses,
        "totalProfit": total_profit,
        "profitMargin": total_profit / total_sales * 100,
        "salesGrowth": _growth(float(first["sales"].sum()), float(second["sales"].sum())),
        "expenseGrowth": _growth(float(first["expenses"].sum()), float(second["expenses"].sum())),
    }

    labels = _period_labels(df["date"], aggregation)
    grouped = (
        pd.concat([labels, df[["sales", "expenses", "profit"]]], axis=1)
        .groupby(["period_key", "period"], sort=True)[["sales", "expenses", "profit"]]
        .sum()
        .reset_index()
    )
    period_data: List[Dict[str, Any]] = []
    for row in grouped.itertuples(index=False):
        sales = float(row.sales)
        period_data.append(
            {
                "period": str(row.period),
                "sales": sales,
                "expenses": float(row.expenses),
                "profit": float(row.profit),
                "margin": float(row.profit) / sales * 100 if sales else None,
            }
        )
    top = sorted(period_data, key=lambda p: p["profit"], reverse=True)[:3]

    result: Dict[str, Any] = {
        "summary": summary,
        "aggregation": aggregation,
        "reportType": report_type,
        "periodData": period_data,
        "topPerformingPeriods": [{"period": p["period"], "sales": p["sales"], "profit": p["profit"]} for p in top],
    }
    if report_type == "detailed":
        result["details"] = [
            {
                "date": r.date.date().isoformat(),
                "sales": float(r.sales),
                "expenses": float(r.expenses),
                "profit": float(r.profit),
                "margin": float(r.profit) / float(r.sales) * 100 if r.sales else None,
            }
            for r in df.itertuples(index=False)
        ]
    return result


async def process_business_report(mapped: Dict[str, Any]) -> Dict[str, Any]:
    return compute_business_report(mapped)


def build_business_charts(result: Dict[str, Any]) -> Dict[str, Any]:
    charts: Dict[str, Any] = {}
    periods = pd.DataFrame(result.get("periodData") or [])
    if not periods.empty:
        order = periods["period"].tolist()
        long_df = long_format(periods, "period", ["sales", "expenses", "profit"])
        trend = (
            alt.Chart(long_df)
            .mark_line(point=True)
            .encode(
                x=alt.X("period:N", title="Period", sort=order),
                y=alt.Y("value:Q", title="Amount", axis=alt.Axis(format="$,.0f")),
                color=alt.Color(
                    "metric:N",
                    title="Metric",
                    scale=alt.Scale(domain=["sales", "expenses", "profit"], range=["#3b82f6", "#ef4444", "#10b981"]),
                ),
                tooltip=["period", "metric", alt.Tooltip("value:Q", format="$,.0f")],
            )
        )
        charts["sales_expenses_trend"] = to_vega_spec(trend, "Performance by period")

    top = pd.DataFrame(result.get("topPerformingPeriods") or [])
    if not top.empty:
        long_top = long_format(top, "period", ["sales", "profit"])
        bar = (
            alt.Chart(long_top)
            .mark_bar()
            .encode(
                x=alt.X("period:N", title="Period", sort=top["period"].tolist()),
                xOffset="metric:N",
                y=alt.Y("value:Q", title="Amount", axis=alt.Axis(format="$,.0f")),
                color=alt.Color("metric:N", title="Metric", scale=alt.Scale(domain=["sales", "profit"], range=["#3b82f6", "#10b981"])),
                tooltip=["period", "metric", alt.Tooltip("value:Q", format="$,.0f")],
            )
        )
        charts["top_periods"] = to_vega_spec(bar, "Top performing periods")
    return charts


def result_table(result: Dict[str, Any]) -> pd.DataFrame:
    return pd.DataFrame(result.get("periodData") or [])
