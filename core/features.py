"""Registry of the dashboard's analytics features.

Each feature bundles its column fields, default parameters, processing
strategy, chart builder and result table. Pages and API routes look features
up by key and get a `PipelineController` through `create_pipeline`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from core import (
    feature_forecasting,
    feature_inventory,
    feature_pricing,
    feature_reporting,
    feature_segmentation,
    feature_suppliers,
)
from core.analytics import AnalyticsClient, AnalyticsStrategy
from core.mapping import FieldSpec, build_records
from core.pipeline import Notifier, PipelineController, ProcessingStrategy
from core.reports import build_pdf_report
from core.session import SessionContext
from core.store import RecordStore

SPREADSHEET_FILE_TYPES = (".xlsx", ".xls", ".csv")


@dataclass(frozen=True)
class FeatureSpec:
    key: str
    title: str
    description: str
    api_endpoint: str
    table_name: str
    records_key: str
    fields: Tuple[FieldSpec, ...]
    default_params: Dict[str, Any] = field(default_factory=dict)
    process: Optional[ProcessingStrategy] = None
    chart_builder: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None
    table_builder: Optional[Callable[[Dict[str, Any]], pd.DataFrame]] = None
    allowed_file_types: Tuple[str, ...] = SPREADSHEET_FILE_TYPES

    @property
    def required_fields(self) -> List[FieldSpec]:
        return [f for f in self.fields if f.required]

    def build_mapped(
        self,
        data: Any,
        field_map: Dict[str, Optional[str]],
        params: Optional[Dict[str, Any]] = None,
        sheet: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Mapped parameter object: `{records_key: [...], **params}`."""
        mapped = copy.deepcopy(self.default_params)
        mapped.update(params or {})
        mapped[self.records_key] = build_records(data, self.fields, field_map, sheet=sheet)
        return mapped

    def charts(self, result: Any) -> Dict[str, Any]:
        if self.chart_builder is None or not isinstance(result, dict):
            return {}
        return self.chart_builder(result)

    def table(self, result: Any) -> pd.DataFrame:
        if self.table_builder is None or not isinstance(result, dict):
            return pd.DataFrame()
        return self.table_builder(result)

    def report(self, result: Any, *, generated_at: Optional[datetime] = None) -> bytes:
        """PDF of the key figures and primary table of `result`."""
        data = result if isinstance(result, dict) else {}
        return build_pdf_report(f"{self.title} Report", data, self.table(result), generated_at=generated_at)

    def strategy(self, analytics: Optional[AnalyticsClient] = None) -> ProcessingStrategy:
        if self.process is not None:
            return self.process
        if analytics is None:
            raise ValueError(f"Feature '{self.key}' needs an analytics client to process data")
        return AnalyticsStrategy(analytics, self.api_endpoint)


FEATURES: Dict[str, FeatureSpec] = {
    spec.key: spec
    for spec in (
        FeatureSpec(
            key="business-reporting",
            title="Business Reporting",
            description="Summarise sales, expenses and profit by period.",
            api_endpoint="business-analytics",
            table_name="business_reports",
            records_key=feature_reporting.RECORDS_KEY,
            fields=feature_reporting.FIELDS,
            default_params=feature_reporting.DEFAULT_PARAMS,
            process=feature_reporting.process_business_report,
            chart_builder=feature_reporting.build_business_charts,
            table_builder=feature_reporting.result_table,
        ),
        FeatureSpec(
            key="demand-forecasting",
            title="Demand Forecasting",
            description="Project future demand from a dated history.",
            api_endpoint="forecasting/timeseries",
            table_name="demand_forecasts",
            records_key=feature_forecasting.RECORDS_KEY,
            fields=feature_forecasting.FIELDS,
            default_params=feature_forecasting.DEFAULT_PARAMS,
            process=feature_forecasting.process_demand_forecast,
            chart_builder=feature_forecasting.build_forecast_charts,
            table_builder=feature_forecasting.result_table,
        ),
        FeatureSpec(
            key="inventory-management",
            title="Inventory Optimization",
            description="Safety stock, reorder points and stock status per SKU.",
            api_endpoint="inventory/optimize",
            table_name="inventory_plans",
            records_key=feature_inventory.RECORDS_KEY,
            fields=feature_inventory.FIELDS,
            default_params=feature_inventory.DEFAULT_PARAMS,
            process=feature_inventory.process_inventory_plan,
            chart_builder=feature_inventory.build_inventory_charts,
            table_builder=feature_inventory.result_table,
        ),
        FeatureSpec(
            key="pricing-strategies",
            title="Pricing Strategies",
            description="Recommend prices from cost, margin targets and competitors.",
            api_endpoint="pricing/recommend",
            table_name="pricing_strategies",
            records_key=feature_pricing.RECORDS_KEY,
            fields=feature_pricing.FIELDS,
            default_params=feature_pricing.DEFAULT_PARAMS,
            process=feature_pricing.process_pricing,
            chart_builder=feature_pricing.build_pricing_charts,
            table_builder=feature_pricing.result_table,
        ),
        FeatureSpec(
            key="customer-segmentation",
            title="Customer Segmentation",
            description="RFM scoring and segment profiles.",
            api_endpoint="customers/segment",
            table_name="customer_segments",
            records_key=feature_segmentation.RECORDS_KEY,
            fields=feature_segmentation.FIELDS,
            default_params=feature_segmentation.DEFAULT_PARAMS,
            process=feature_segmentation.process_segmentation,
            chart_builder=feature_segmentation.build_segmentation_charts,
            table_builder=feature_segmentation.result_table,
        ),
        FeatureSpec(
            key="supplier-performance",
            title="Supplier Performance",
            description="Weighted supplier scorecards and grades.",
            api_endpoint="suppliers/score",
            table_name="supplier_scores",
            records_key=feature_suppliers.RECORDS_KEY,
            fields=feature_suppliers.FIELDS,
            default_params=feature_suppliers.DEFAULT_PARAMS,
            process=feature_suppliers.process_supplier_scores,
            chart_builder=feature_suppliers.build_supplier_charts,
            table_builder=feature_suppliers.result_table,
        ),
    )
}


def feature_keys() -> Sequence[str]:
    return list(FEATURES)


def get_feature(key: str) -> FeatureSpec:
    try:
        return FEATURES[key]
    except KeyError:
        raise LookupError(f"Unknown feature '{key}'") from None


def create_pipeline(
    feature: FeatureSpec,
    *,
    session: SessionContext,
    record_store: RecordStore,
    analytics: Optional[AnalyticsClient] = None,
    timeout: Optional[float] = None,
    notify: Optional[Notifier] = None,
) -> PipelineController:
    return PipelineController(
        strategy=feature.strategy(analytics),
        session=session,
        record_store=record_store,
        table_name=feature.table_name,
        title=feature.title,
        timeout=timeout,
        notify=notify,
    )
