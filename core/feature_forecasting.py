from __future__ import annotations

from typing import Any, Dict, List, Optional

import altair as alt
import numpy as np
import pandas as pd

from core.charts import to_vega_spec
from core.mapping import FieldSpec, records_frame, require_numeric
from core.pipeline import ProcessingError

RECORDS_KEY = "series"
FIELDS = (
    FieldSpec("date", "Date", "date"),
    FieldSpec("value", "Demand"),
)
DEFAULT_PARAMS = {"periods": 6, "frequency": "monthly", "method": "linear", "window": 3}
FREQUENCIES = {
    "daily": pd.DateOffset(days=1),
    "weekly": pd.DateOffset(weeks=1),
    "monthly": pd.DateOffset(months=1),
}
METHODS = ("linear", "moving_average")


def _int_param(mapped: Dict[str, Any], key: str, low: int, high: int) -> int:
    raw = mapped.get(key, DEFAULT_PARAMS[key])
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ProcessingError(f"'{key}' must be an integer, got {raw!r}", "invalid_input") from None
    if not low <= value <= high:
        raise ProcessingError(f"'{key}' must be between {low} and {high}, got {value}", "invalid_input")
    return value


def _mape(actual: np.ndarray, fitted: np.ndarray) -> Optional[float]:
    mask = (actual != 0) & ~np.isnan(fitted)
    if not mask.any():
        return None
    return float(np.mean(np.abs(actual[mask] - fitted[mask]) / np.abs(actual[mask])) * 100)


def compute_demand_forecast(mapped: Dict[str, Any]) -> Dict[str, Any]:
    df = records_frame(mapped, RECORDS_KEY, ["date", "value"], "demand")
    method = mapped.get("method", DEFAULT_PARAMS["method"])
    frequency = mapped.get("frequency", DEFAULT_PARAMS["frequency"])
    if method not in METHODS:
        raise ProcessingError(f"Unknown forecasting method '{method}'", "invalid_input")
    if frequency not in FREQUENCIES:
        raise ProcessingError(f"Unknown frequency '{frequency}'", "invalid_input")
    periods = _int_param(mapped, "periods", 1, 52)

    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    if df["date"].isna().any():
        raise ProcessingError("Every demand observation needs a valid date", "invalid_input")
    df = require_numeric(df, ["value"], "demand")
    df = df.groupby("date", as_index=False)["value"].sum().sort_values("date").reset_index(drop=True)
    n = len(df)
    if n < 2:
        raise ProcessingError("At least two dated observations are required to forecast", "insufficient_data")

    y = df["value"].to_numpy(dtype=float)
    x = np.arange(n, dtype=float)
    trend: Optional[Dict[str, float]] = None
    if method == "linear":
        slope, intercept = np.polyfit(x, y, 1)
        fitted = intercept + slope * x
        future = intercept + slope * (n + np.arange(periods, dtype=float))
        trend = {"slope": float(slope), "intercept": float(intercept)}
    else:
        window = _int_param(mapped, "window", 2, n)
        fitted = df["value"].rolling(window).mean().shift(1).to_numpy(dtype=float)
        future = np.full(periods, float(y[-window:].mean()))
    future = np.clip(future, 0, None)

    offset = FREQUENCIES[frequency]
    last = df["date"].iloc[-1]
    forecast = [
        {"date": (last + offset * (k + 1)).date().isoformat(), "value": float(v)}
        for k, v in enumerate(future)
    ]
    history: List[Dict[str, Any]] = [
        {
            "date": d.date().isoformat(),
            "value": float(v),
            "fitted": None if np.isnan(f) else float(f),
        }
        for d, v, f in zip(df["date"], y, fitted)
    ]
    return {
        "method": method,
        "frequency": frequency,
        "history": history,
        "forecast": forecast,
        "trend": trend,
        "metrics": {
            "mape": _mape(y, np.asarray(fitted, dtype=float)),
            "averageHistory": float(y.mean()),
            "totalForecast": float(future.sum()),
            "averageForecast": float(future.mean()),
        },
    }


async def process_demand_forecast(mapped: Dict[str, Any]) -> Dict[str, Any]:
    return compute_demand_forecast(mapped)


def build_forecast_charts(result: Dict[str, Any]) -> Dict[str, Any]:
    history = pd.DataFrame(result.get("history") or [])
    forecast = pd.DataFrame(result.get("forecast") or [])
    if history.empty:
        return {}
    frames = [history[["date", "value"]].assign(series="Actual")]
    if not forecast.empty:
        frames.append(forecast[["date", "value"]].assign(series="Forecast"))
    fitted = history.dropna(subset=["fitted"]) if "fitted" in history.columns else pd.DataFrame()
    if not fitted.empty:
        frames.append(fitted[["date", "fitted"]].rename(columns={"fitted": "value"}).assign(series="Fitted"))
    long_df = pd.concat(frames, ignore_index=True)
    line = (
        alt.Chart(long_df)
        .mark_line(point=True)
        .encode(
            x=alt.X("date:T", title="Date"),
            y=alt.Y("value:Q", title="Demand", axis=alt.Axis(format="~s")),
            color=alt.Color("series:N", title="Series"),
            strokeDash=alt.condition(alt.datum.series == "Actual", alt.value([1, 0]), alt.value([5, 3])),
            tooltip=["date:T", "series", alt.Tooltip("value:Q", format=",.1f")],
        )
    )
    return {"forecast": to_vega_spec(line, "Demand forecast")}


def result_table(result: Dict[str, Any]) -> pd.DataFrame:
    return pd.DataFrame(result.get("forecast") or [])
