from __future__ import annotations

from typing import Any, Dict, List, Optional

import altair as alt
import pandas as pd

from core.charts import long_format, to_vega_spec
from core.formatting import round_half_up
from core.mapping import FieldSpec, records_frame, require_numeric
from core.pipeline import ProcessingError

RECORDS_KEY = "products"
FIELDS = (
    FieldSpec("product", "Product", "text"),
    FieldSpec("cost", "Unit Cost"),
    FieldSpec("currentPrice", "Current Price"),
    FieldSpec("competitorPrice", "Competitor Price", required=False),
    FieldSpec("unitsSold", "Units Sold", required=False),
)
DEFAULT_PARAMS = {"strategy": "cost_plus", "targetMargin": 30.0}
STRATEGIES = ("cost_plus", "competitive", "value")
COMPETITIVE_DISCOUNT = 0.02
MIN_MARKUP = 0.05


def _present(value: Any) -> Optional[float]:
    if value is None:
        return None
    num = pd.to_numeric(value, errors="coerce")
    return None if pd.isna(num) else float(num)


def recommend_price(strategy: str, cost: float, current: float, competitor: Optional[float], margin: float) -> float:
    """Price for one product.

    cost_plus   -- price that yields `margin` (a fraction) on the selling price
    competitive -- 2% under the competitor, never below cost plus 5%
    value       -- midpoint of the cost-plus price and the market reference
                   (competitor price when known, otherwise the current price)
    """
    cost_plus = cost / (1 - margin)
    if strategy == "cost_plus":
        return cost_plus
    if strategy == "competitive":
        if competitor is None:
            raise ProcessingError("Competitive pricing needs a competitor price for every product", "invalid_input")
        return max(competitor * (1 - COMPETITIVE_DISCOUNT), cost * (1 + MIN_MARKUP))
    reference = competitor if competitor is not None else current
    return (cost_plus + reference) / 2


def compute_pricing(mapped: Dict[str, Any]) -> Dict[str, Any]:
    df = records_frame(mapped, RECORDS_KEY, ["product", "cost", "currentPrice"], "product")
    strategy = mapped.get("strategy", DEFAULT_PARAMS["strategy"])
    if strategy not in STRATEGIES:
        raise ProcessingError(f"Unknown pricing strategy '{strategy}'", "invalid_input")
    try:
        target_margin = float(mapped.get("targetMargin", DEFAULT_PARAMS["targetMargin"]))
    except (TypeError, ValueError):
        raise ProcessingError("Target margin must be a number", "invalid_input") from None
    if not 0 <= target_margin < 100:
        raise ProcessingError("Target margin must be at least 0% and below 100%", "invalid_input")

    df = require_numeric(df, ["cost", "currentPrice"], "product")
    if (df["cost"] <= 0).any():
        raise ProcessingError("Every product needs a unit cost above zero", "invalid_input")
    if (df["currentPrice"] <= 0).any():
        raise ProcessingError("Every product needs a current price above zero", "invalid_input")

    rows: List[Dict[str, Any]] = []
    for item in df.to_dict(orient="records"):
        cost = float(item["cost"])
        current = float(item["currentPrice"])
        competitor = _present(item.get("competitorPrice"))
        units = _present(item.get("unitsSold"))
        price = round_half_up(recommend_price(strategy, cost, current, competitor, target_margin / 100), 2)
        rows.append(
            {
                "product": str(item["product"]),
                "cost": cost,
                "currentPrice": current,
                "competitorPrice": competitor,
                "recommendedPrice": price,
                "currentMargin": (current - cost) / current * 100,
                "recommendedMargin": (price - cost) / price * 100,
                "priceChangePct": (price - current) / current * 100,
                "revenueImpact": (price - current) * units if units is not None else None,
            }
        )

    impacts = [r["revenueImpact"] for r in rows if r["revenueImpact"] is not None]
    return {
        "strategy": strategy,
        "targetMargin": target_margin,
        "products": rows,
        "summary": {
            "productCount": len(rows),
            "averageCurrentMargin": sum(r["currentMargin"] for r in rows) / len(rows),
            "averageRecommendedMargin": sum(r["recommendedMargin"] for r in rows) / len(rows),
            "priceIncreases": sum(1 for r in rows if r["priceChangePct"] > 0),
            "priceDecreases": sum(1 for r in rows if r["priceChangePct"] < 0),
            "revenueImpact": sum(impacts) if impacts else None,
        },
    }


async def process_pricing(mapped: Dict[str, Any]) -> Dict[str, Any]:
    return compute_pricing(mapped)


def build_pricing_charts(result: Dict[str, Any]) -> Dict[str, Any]:
    products = pd.DataFrame(result.get("products") or [])
    if products.empty:
        return {}
    price_cols = [c for c in ["cost", "currentPrice", "competitorPrice", "recommendedPrice"] if c in products.columns and products[c].notna().any()]
    long_df = long_format(products, "product", price_cols, var_name="price", value_name="amount")
    prices = (
        alt.Chart(long_df)
        .mark_bar()
        .encode(
            x=alt.X("product:N", title="Product"),
            xOffset="price:N",
            y=alt.Y("amount:Q", title="Price", axis=alt.Axis(format="$,.2f")),
            color=alt.Color("price:N", title="Price"),
            tooltip=["product", "price", alt.Tooltip("amount:Q", format="$,.2f")],
        )
    )
    change = (
        alt.Chart(products)
        .mark_bar()
        .encode(
            x=alt.X("priceChangePct:Q", title="Price Change %", axis=alt.Axis(format=".1f")),
            y=alt.Y("product:N", title="Product", sort="-x"),
            color=alt.condition(alt.datum.priceChangePct >= 0, alt.value("#16a34a"), alt.value("#dc2626")),
            tooltip=["product", alt.Tooltip("priceChangePct:Q", format=".1f")],
        )
    )
    return {"price_comparison": to_vega_spec(prices), "price_change": to_vega_spec(change)}


def result_table(result: Dict[str, Any]) -> pd.DataFrame:
    return pd.DataFrame(result.get("products") or [])
