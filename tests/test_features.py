from __future__ import annotations

import dataclasses

import pytest

from core import (
    feature_forecasting,
    feature_inventory,
    feature_pricing,
    feature_reporting,
    feature_segmentation,
    feature_suppliers,
)
from core.features import FEATURES, create_pipeline, get_feature
from core.mapping import MappingError
from core.pipeline import ProcessingError
from core.stages import Stage


def _business(entries=None, **params):
    mapped = {"businessData": entries if entries is not None else list(feature_reporting.SAMPLE_ENTRIES)}
    mapped.update(params)
    return mapped


# ---------- business reporting ----------
def test_business_report_summary_for_sample_entries():
    result = feature_reporting.compute_business_report(_business())
    summary = result["summary"]
    assert summary["totalSales"] == 37000
    assert summary["totalExpenses"] == 21000
    assert summary["totalProfit"] == 16000
    assert summary["profitMargin"] == pytest.approx(43.24, abs=0.01)
    assert summary["salesGrowth"] == pytest.approx(170.0)
    assert summary["expenseGrowth"] == pytest.approx(150.0)


def test_business_report_periods_and_top_performers():
    result = feature_reporting.compute_business_report(_business())
    assert [p["period"] for p in result["periodData"]] == ["Jan 2025", "Feb 2025", "Mar 2025"]
    assert result["topPerformingPeriods"][0] == {"period": "Mar 2025", "sales": 15000.0, "profit": 7000.0}
    assert len(result["details"]) == 3


def test_business_summary_report_has_no_details():
    result = feature_reporting.compute_business_report(_business(reportType="summary"))
    assert "details" not in result
    assert len(result["periodData"]) == 3


def test_business_profit_defaults_to_sales_minus_expenses():
    entries = [
        {"date": "2025-01-06", "sales": 500, "expenses": 200},
        {"date": "2025-01-01", "sales": 300, "expenses": 100, "profit": None},
    ]
    result = feature_reporting.compute_business_report(_business(entries, aggregation="weekly"))
    assert result["summary"]["totalProfit"] == 500
    assert [p["period"] for p in result["periodData"]] == ["Week of 2024-12-30", "Week of 2025-01-06"]


def test_business_zero_sales_fails():
    entries = [{"date": "2025-01-01", "sales": 0, "expenses": 10}]
    with pytest.raises(ProcessingError) as excinfo:
        feature_reporting.compute_business_report(_business(entries))
    assert excinfo.value.code == "division_by_zero"


@pytest.mark.parametrize(
    "mapped, code",
    [
        ({"businessData": []}, "empty_input"),
        ("not a dict", "invalid_input"),
        ({"businessData": [{"date": "2025-01-01", "sales": 1}]}, "invalid_input"),
        ({"businessData": [{"date": "nope", "sales": 1, "expenses": 1}]}, "invalid_input"),
        (_business(aggregation="hourly"), "invalid_input"),
    ],
)
def test_business_rejects_malformed_input(mapped, code):
    with pytest.raises(ProcessingError) as excinfo:
        feature_reporting.compute_business_report(mapped)
    assert excinfo.value.code == code


def test_business_charts_are_vega_lite_specs():
    result = feature_reporting.compute_business_report(_business())
    charts = feature_reporting.build_business_charts(result)
    assert set(charts) == {"sales_expenses_trend", "top_periods"}
    assert all("$schema" in spec for spec in charts.values())
    trend = charts["sales_expenses_trend"]
    assert trend["title"] == "Performance by period"
    assert trend["width"] == "container"


# ---------- demand forecasting ----------
def _series(values, **params):
    dates = ["2025-01-01", "2025-02-01", "2025-03-01", "2025-04-01", "2025-05-01"]
    mapped = {"series": [{"date": d, "value": v} for d, v in zip(dates, values)]}
    mapped.update(params)
    return mapped


def test_linear_forecast_extends_trend():
    result = feature_forecasting.compute_demand_forecast(_series([10, 20, 30, 40], periods=2))
    assert [f["date"] for f in result["forecast"]] == ["2025-05-01", "2025-06-01"]
    assert [f["value"] for f in result["forecast"]] == pytest.approx([50.0, 60.0])
    assert result["trend"]["slope"] == pytest.approx(10.0)
    assert result["metrics"]["mape"] == pytest.approx(0.0, abs=1e-9)


def test_moving_average_forecast():
    result = feature_forecasting.compute_demand_forecast(_series([10, 20, 30, 40], periods=3, method="moving_average", window=2))
    assert [f["value"] for f in result["forecast"]] == pytest.approx([35.0, 35.0, 35.0])
    assert result["history"][0]["fitted"] is None
    assert result["history"][2]["fitted"] == pytest.approx(15.0)


def test_forecast_never_goes_negative():
    result = feature_forecasting.compute_demand_forecast(_series([40, 30, 20, 10], periods=6))
    assert min(f["value"] for f in result["forecast"]) == 0.0


def test_forecast_needs_two_points():
    with pytest.raises(ProcessingError) as excinfo:
        feature_forecasting.compute_demand_forecast(_series([10]))
    assert excinfo.value.code == "insufficient_data"


def test_forecast_rejects_bad_periods():
    with pytest.raises(ProcessingError):
        feature_forecasting.compute_demand_forecast(_series([1, 2, 3], periods=0))


# ---------- inventory ----------
def test_inventory_plan_marks_low_stock_critical():
    mapped = {
        "items": [{"sku": "SKU-1", "currentStock": 25, "leadTimeDays": 9, "dailyDemand": [2, 8, 2, 8, 2, 8]}],
        "serviceLevel": 0.95,
        "reviewPeriodDays": 5,
    }
    item = feature_inventory.compute_inventory_plan(mapped)["items"][0]
    assert item["avgDailyDemand"] == pytest.approx(5.0)
    assert item["demandStdDev"] == pytest.approx(3.0)
    assert item["safetyStock"] == 15
    assert item["reorderPoint"] == 60
    assert item["optimalStock"] == 85
    assert item["reorderQuantity"] == 60
    assert item["status"] == "Critical"


def test_inventory_accepts_average_demand_without_history():
    mapped = {
        "items": [
            {"sku": "A", "currentStock": 90, "leadTimeDays": 9, "avgDailyDemand": 5, "demandStdDev": 3, "unitCost": 2.5},
        ]
    }
    result = feature_inventory.compute_inventory_plan(mapped)
    assert result["items"][0]["status"] == "Optimal"
    assert result["summary"]["inventoryValue"] == pytest.approx(225.0)
    assert result["summary"]["statusCounts"]["Optimal"] == 1


@pytest.mark.parametrize(
    "current, expected",
    [(59, "Critical"), (60, "Low"), (85, "Optimal"), (106, "Optimal"), (107, "Overstocked")],
)
def test_stock_status_buckets(current, expected):
    assert feature_inventory.stock_status(current, 60, 85) == expected


def test_inventory_rejects_unknown_service_level_and_bad_lead_time():
    items = [{"sku": "A", "currentStock": 1, "leadTimeDays": 3, "avgDailyDemand": 1}]
    with pytest.raises(ProcessingError):
        feature_inventory.compute_inventory_plan({"items": items, "serviceLevel": 0.5})
    with pytest.raises(ProcessingError):
        feature_inventory.compute_inventory_plan({"items": [{**items[0], "leadTimeDays": 0}]})
    with pytest.raises(ProcessingError):
        feature_inventory.compute_inventory_plan({"items": [{**items[0], "dailyDemand": [1, -2]}]})


# ---------- pricing ----------
def test_pricing_strategies():
    assert feature_pricing.recommend_price("cost_plus", 70, 90, None, 0.3) == pytest.approx(100.0)
    assert feature_pricing.recommend_price("competitive", 70, 90, 100, 0.3) == pytest.approx(98.0)
    assert feature_pricing.recommend_price("competitive", 95, 90, 100, 0.3) == pytest.approx(99.75)
    assert feature_pricing.recommend_price("value", 70, 90, 120, 0.3) == pytest.approx(110.0)
    assert feature_pricing.recommend_price("value", 70, 90, None, 0.3) == pytest.approx(95.0)


def test_pricing_result_summary():
    mapped = {
        "products": [
            {"product": "Widget", "cost": 70, "currentPrice": 90, "unitsSold": 10},
            {"product": "Gadget", "cost": 35, "currentPrice": 60},
        ],
        "strategy": "cost_plus",
        "targetMargin": 30,
    }
    result = feature_pricing.compute_pricing(mapped)
    widget, gadget = result["products"]
    assert widget["recommendedPrice"] == 100.0
    assert widget["revenueImpact"] == pytest.approx(100.0)
    assert gadget["recommendedPrice"] == 50.0
    assert gadget["revenueImpact"] is None
    assert result["summary"]["priceIncreases"] == 1
    assert result["summary"]["priceDecreases"] == 1
    assert result["summary"]["revenueImpact"] == pytest.approx(100.0)


@pytest.mark.parametrize(
    "product, params",
    [
        ({"product": "A", "cost": 0, "currentPrice": 10}, {}),
        ({"product": "A", "cost": 5, "currentPrice": 10}, {"targetMargin": 100}),
        ({"product": "A", "cost": 5, "currentPrice": 10}, {"strategy": "competitive"}),
        ({"product": "A", "cost": 5, "currentPrice": 10}, {"strategy": "surge"}),
    ],
)
def test_pricing_rejects_invalid_input(product, params):
    with pytest.raises(ProcessingError):
        feature_pricing.compute_pricing({"products": [product], **params})


# ---------- segmentation ----------
def _customers():
    return [
        {"customerId": "A", "recencyDays": 1, "frequency": 50, "monetary": 5000},
        {"customerId": "B", "recencyDays": 10, "frequency": 40, "monetary": 4000},
        {"customerId": "C", "recencyDays": 20, "frequency": 30, "monetary": 3000},
        {"customerId": "D", "recencyDays": 30, "frequency": 20, "monetary": 2000},
        {"customerId": "E", "recencyDays": 40, "frequency": 10, "monetary": 1000},
    ]


def test_segmentation_scores_and_segments():
    result = feature_segmentation.compute_segmentation({"customers": _customers(), "bins": 5})
    by_id = {c["customerId"]: c for c in result["customers"]}
    assert by_id["A"]["rfmScore"] == "555"
    assert by_id["E"]["rfmScore"] == "111"
    assert [by_id[k]["segment"] for k in "ABCDE"] == ["Champions", "Champions", "Loyal", "Potential", "Lost"]
    counts = {s["segment"]: s["count"] for s in result["segments"]}
    assert counts == {"Champions": 2, "Loyal": 1, "Potential": 1, "Lost": 1}
    assert sum(s["share"] for s in result["segments"]) == pytest.approx(100.0)


def test_lapsed_high_value_customer_is_at_risk():
    assert feature_segmentation.assign_segment(1, 3, 4, 5) == "At Risk"


def test_segmentation_rejects_bad_input():
    with pytest.raises(ProcessingError) as excinfo:
        feature_segmentation.compute_segmentation({"customers": []})
    assert excinfo.value.code == "empty_input"
    with pytest.raises(ProcessingError):
        feature_segmentation.compute_segmentation({"customers": _customers(), "bins": 6})
    bad = _customers()
    bad[0]["monetary"] = -5
    with pytest.raises(ProcessingError):
        feature_segmentation.compute_segmentation({"customers": bad})


# ---------- suppliers ----------
def test_supplier_scores_rank_and_grade():
    mapped = {
        "suppliers": [
            {"supplier": "Slow Co", "quality": 60, "delivery": 60, "cost": 60, "responsiveness": 60},
            {"supplier": "Acme", "quality": 90, "delivery": 90, "cost": 90, "responsiveness": 90},
            {"supplier": "Budget", "quality": 40, "delivery": 40, "cost": 40, "responsiveness": 40},
        ]
    }
    result = feature_suppliers.compute_supplier_scores(mapped)
    ranked = [(s["rank"], s["supplier"], s["grade"]) for s in result["suppliers"]]
    assert ranked == [(1, "Acme", "A"), (2, "Slow Co", "C"), (3, "Budget", "D")]
    assert result["summary"]["topSupplier"] == "Acme"
    assert sum(result["weights"].values()) == pytest.approx(1.0)


def test_supplier_weights_are_normalised():
    weights = feature_suppliers.normalize_weights({"quality": 2, "delivery": 2, "cost": 0, "responsiveness": 0})
    assert weights == {"quality": 0.5, "delivery": 0.5, "cost": 0.0, "responsiveness": 0.0}


def test_supplier_weights_must_not_all_be_zero():
    with pytest.raises(ProcessingError):
        feature_suppliers.normalize_weights({"quality": 0, "delivery": 0, "cost": 0, "responsiveness": 0})
    with pytest.raises(ProcessingError):
        feature_suppliers.normalize_weights({"price": 1})


def test_supplier_scores_must_be_percentages():
    mapped = {"suppliers": [{"supplier": "X", "quality": 120, "delivery": 50, "cost": 50, "responsiveness": 50}]}
    with pytest.raises(ProcessingError):
        feature_suppliers.compute_supplier_scores(mapped)


# ---------- registry ----------
def test_registry_has_six_features_with_distinct_tables():
    assert len(FEATURES) == 6
    assert len({f.table_name for f in FEATURES.values()}) == 6
    with pytest.raises(LookupError):
        get_feature("astrology")


def test_build_mapped_applies_field_map_and_defaults():
    feature = get_feature("business-reporting")
    data = {"Sheet1": [{"Date": "2025-01-01", "Sales": "10000", "Expenses": 6000}]}
    mapped = feature.build_mapped(data, {"date": "Date", "sales": "Sales", "expenses": "Expenses"}, {"aggregation": "daily"})
    assert mapped["businessData"] == [{"date": "2025-01-01", "sales": 10000.0, "expenses": 6000.0}]
    assert mapped["aggregation"] == "daily"
    assert mapped["reportType"] == "detailed"


def test_build_mapped_requires_fields():
    feature = get_feature("inventory-management")
    with pytest.raises(MappingError):
        feature.build_mapped({"Sheet1": [{"sku": "A"}]}, {"sku": "sku"})


def test_feature_without_strategy_needs_analytics(user_session, record_store):
    feature = dataclasses.replace(get_feature("pricing-strategies"), process=None)
    with pytest.raises(ValueError):
        create_pipeline(feature, session=user_session, record_store=record_store)


@pytest.mark.asyncio
async def test_business_reporting_end_to_end(user_session, record_store):
    feature = get_feature("business-reporting")
    controller = create_pipeline(feature, session=user_session, record_store=record_store)
    data = {"Sheet1": list(feature_reporting.SAMPLE_ENTRIES)}
    controller.on_input_processed(data)
    controller.on_data_mapped(
        feature.build_mapped(data, {"date": "date", "sales": "sales", "expenses": "expenses", "profit": "profit"})
    )
    outcome = await controller.run_processing()
    assert outcome.ok
    assert controller.state.active_stage is Stage.VISUALIZATION
    assert controller.state.result["summary"]["totalProfit"] == 16000
    assert set(feature.charts(controller.state.result)) == {"sales_expenses_trend", "top_periods"}
    assert list(feature.table(controller.state.result)["period"]) == ["Jan 2025", "Feb 2025", "Mar 2025"]

    saved = await controller.save_result()
    assert saved.ok
    rows = await record_store.get("business_reports", {"user_id": "user-1"})
    assert rows[0]["data"]["summary"]["totalProfit"] == 16000


@pytest.mark.parametrize("key", sorted(FEATURES))
def test_every_feature_charts_empty_result_safely(key):
    assert FEATURES[key].charts({}) == {}
    assert FEATURES[key].table(None).empty
