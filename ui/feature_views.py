"""Per-feature parameter widgets, KPI tiles and table formatting."""

from typing import Any, Callable, Dict

import pandas as pd
import streamlit as st

from core import (
    feature_forecasting,
    feature_inventory,
    feature_pricing,
    feature_reporting,
    feature_suppliers,
)
from core.formatting import format_currency_0, format_currency_columns, format_percent, format_percent_columns

ParamWidget = Callable[[str, Dict[str, Any]], Dict[str, Any]]
KpiTiles = Callable[[Dict[str, Any]], None]


def _index(options, value) -> int:
    return list(options).index(value) if value in options else 0


# ---------- parameter widgets ----------
def business_params(prefix: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    c1, c2 = st.columns(2)
    aggregation = c1.selectbox(
        "Aggregation",
        feature_reporting.AGGREGATIONS,
        index=_index(feature_reporting.AGGREGATIONS, defaults.get("aggregation")),
        key=f"{prefix}_aggregation",
    )
    report_type = c2.radio(
        "Report type",
        feature_reporting.REPORT_TYPES,
        index=_index(feature_reporting.REPORT_TYPES, defaults.get("reportType")),
        horizontal=True,
        key=f"{prefix}_report_type",
    )
    return {"aggregation": aggregation, "reportType": report_type}


def forecast_params(prefix: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    c1, c2, c3 = st.columns(3)
    periods = c1.number_input("Periods ahead", min_value=1, max_value=52, value=int(defaults.get("periods", 6)), key=f"{prefix}_periods")
    frequency = c2.selectbox(
        "Frequency",
        list(feature_forecasting.FREQUENCIES),
        index=_index(list(feature_forecasting.FREQUENCIES), defaults.get("frequency")),
        key=f"{prefix}_frequency",
    )
    method = c3.selectbox(
        "Method",
        feature_forecasting.METHODS,
        index=_index(feature_forecasting.METHODS, defaults.get("method")),
        format_func=lambda m: m.replace("_", " ").title(),
        key=f"{prefix}_method",
    )
    params = {"periods": int(periods), "frequency": frequency, "method": method}
    if method == "moving_average":
        params["window"] = int(
            st.number_input("Moving average window", min_value=2, value=int(defaults.get("window", 3)), key=f"{prefix}_window")
        )
    return params


def inventory_params(prefix: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    levels = list(feature_inventory.Z_SCORES)
    c1, c2 = st.columns(2)
    service_level = c1.selectbox(
        "Service level",
        levels,
        index=_index(levels, defaults.get("serviceLevel")),
        format_func=lambda v: f"{v:.0%}",
        key=f"{prefix}_service_level",
    )
    review = c2.number_input(
        "Review period (days)", min_value=0, value=int(defaults.get("reviewPeriodDays", 5)), key=f"{prefix}_review"
    )
    return {"serviceLevel": service_level, "reviewPeriodDays": int(review)}


def pricing_params(prefix: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    c1, c2 = st.columns(2)
    strategy = c1.selectbox(
        "Strategy",
        feature_pricing.STRATEGIES,
        index=_index(feature_pricing.STRATEGIES, defaults.get("strategy")),
        format_func=lambda s: s.replace("_", " ").title(),
        key=f"{prefix}_strategy",
    )
    margin = c2.slider("Target margin %", 0.0, 95.0, float(defaults.get("targetMargin", 30.0)), 1.0, key=f"{prefix}_margin")
    return {"strategy": strategy, "targetMargin": margin}


def segmentation_params(prefix: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    bins = st.slider("Score bins", 3, 5, int(defaults.get("bins", 5)), key=f"{prefix}_bins")
    return {"bins": int(bins)}


def supplier_params(prefix: str, defaults: Dict[str, Any]) -> Dict[str, Any]:
    weights = defaults.get("weights") or feature_suppliers.DEFAULT_WEIGHTS
    st.caption("Criterion weights (normalised before scoring)")
    cols = st.columns(len(feature_suppliers.CRITERIA))
    chosen = {
        key: cols[i].slider(key.title(), 0.0, 1.0, float(weights.get(key, 0.0)), 0.05, key=f"{prefix}_w_{key}")
        for i, key in enumerate(feature_suppliers.CRITERIA)
    }
    return {"weights": chosen}


PARAM_WIDGETS: Dict[str, ParamWidget] = {
    "business-reporting": business_params,
    "demand-forecasting": forecast_params,
    "inventory-management": inventory_params,
    "pricing-strategies": pricing_params,
    "customer-segmentation": segmentation_params,
    "supplier-performance": supplier_params,
}


# ---------- KPI tiles ----------
def business_kpis(result: Dict[str, Any]):
    s = result.get("summary") or {}
    cols = st.columns(4)
    cols[0].metric("Total Sales", format_currency_0(s.get("totalSales")), delta=f"{format_percent(s.get('salesGrowth'))} growth")
    cols[1].metric("Total Expenses", format_currency_0(s.get("totalExpenses")), delta=f"{format_percent(s.get('expenseGrowth'))} growth", delta_color="inverse")
    cols[2].metric("Total Profit", format_currency_0(s.get("totalProfit")))
    cols[3].metric("Profit Margin", format_percent(s.get("profitMargin")), help="Total profit / total sales.")


def forecast_kpis(result: Dict[str, Any]):
    m = result.get("metrics") or {}
    cols = st.columns(4)
    cols[0].metric("Avg History", f"{m.get('averageHistory', 0):,.1f}")
    cols[1].metric("Avg Forecast", f"{m.get('averageForecast', 0):,.1f}")
    cols[2].metric("Total Forecast", f"{m.get('totalForecast', 0):,.0f}")
    cols[3].metric("MAPE", format_percent(m.get("mape")), help="Mean absolute percentage error of the fitted values.")


def inventory_kpis(result: Dict[str, Any]):
    s = result.get("summary") or {}
    counts = s.get("statusCounts") or {}
    cols = st.columns(4)
    cols[0].metric("SKUs", f"{s.get('itemCount', 0):,}")
    cols[1].metric("Critical", f"{counts.get('Critical', 0):,}")
    cols[2].metric("Units to Reorder", f"{s.get('totalReorderQuantity', 0):,.0f}")
    cols[3].metric("Inventory Value", format_currency_0(s.get("inventoryValue")))


def pricing_kpis(result: Dict[str, Any]):
    s = result.get("summary") or {}
    cols = st.columns(4)
    cols[0].metric("Products", f"{s.get('productCount', 0):,}")
    cols[1].metric("Avg Current Margin", format_percent(s.get("averageCurrentMargin")))
    cols[2].metric("Avg Recommended Margin", format_percent(s.get("averageRecommendedMargin")))
    cols[3].metric("Revenue Impact", format_currency_0(s.get("revenueImpact")), help="Price change times units sold, where units are known.")


def segmentation_kpis(result: Dict[str, Any]):
    segments = {s["segment"]: s for s in result.get("segments") or []}
    cols = st.columns(4)
    cols[0].metric("Customers", f"{result.get('customerCount', 0):,}")
    for col, name in zip(cols[1:], ("Champions", "At Risk", "Lost")):
        seg = segments.get(name) or {}
        col.metric(name, f"{seg.get('count', 0):,}", delta=format_percent(seg.get("share")) if seg else None, delta_color="off")


def supplier_kpis(result: Dict[str, Any]):
    s = result.get("summary") or {}
    grades = s.get("gradeCounts") or {}
    cols = st.columns(4)
    cols[0].metric("Suppliers", f"{s.get('supplierCount', 0):,}")
    cols[1].metric("Average Score", f"{s.get('averageScore', 0):.1f}")
    cols[2].metric("Top Supplier", str(s.get("topSupplier") or "N/A"))
    cols[3].metric("Grade D", f"{grades.get('D', 0):,}")


KPI_TILES: Dict[str, KpiTiles] = {
    "business-reporting": business_kpis,
    "demand-forecasting": forecast_kpis,
    "inventory-management": inventory_kpis,
    "pricing-strategies": pricing_kpis,
    "customer-segmentation": segmentation_kpis,
    "supplier-performance": supplier_kpis,
}

CURRENCY_COLUMNS = ["sales", "expenses", "profit", "stockValue", "monetary", "revenueImpact"]
PRICE_COLUMNS = ["cost", "currentPrice", "competitorPrice", "recommendedPrice"]
PERCENT_COLUMNS = ["margin", "currentMargin", "recommendedMargin", "priceChangePct", "share"]


def display_table(df: pd.DataFrame) -> pd.DataFrame:
    if df.empty:
        return df
    out = format_currency_columns(df, CURRENCY_COLUMNS)
    out = format_currency_columns(out, PRICE_COLUMNS, decimals=2)
    return format_percent_columns(out, PERCENT_COLUMNS)
