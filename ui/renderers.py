"""Streamlit renderers for the five pipeline stages.

Defaults cover any feature; `build_registry` layers the feature-specific
Mapping and Visualization renderers (and the manual entry Input for business
reporting) on top of them.
"""

import asyncio
from typing import Any, Dict, Optional

import pandas as pd
import streamlit as st

from core import feature_reporting
from core.features import FeatureSpec
from core.mapping import MappingError, suggest_field_map
from core.parsers import UploadError, input_frame, process_upload, sheet_names
from core.pipeline import PipelineState
from core.stages import (
    DataMapped,
    InputProcessed,
    NavigateTo,
    ProcessRequested,
    SaveRequested,
    Stage,
    StageAction,
    StageRegistry,
)
from core.store import ObjectStorage
from ui.feature_views import KPI_TILES, PARAM_WIDGETS, display_table
from ui.layout import card

NOT_MAPPED = "(not mapped)"


class FileInputRenderer:
    stage = Stage.INPUT

    def __init__(self, feature: FeatureSpec, storage: ObjectStorage, *, bucket: str, max_size_mb: float):
        self.feature = feature
        self.storage = storage
        self.bucket = bucket
        self.max_size_mb = max_size_mb

    def render(self, state: PipelineState) -> Optional[StageAction]:
        with card("Upload data", actions=", ".join(self.feature.allowed_file_types)):
            upload = st.file_uploader(
                "Choose a file",
                type=[t.lstrip(".") for t in self.feature.allowed_file_types],
                key=f"{self.feature.key}_upload",
            )
            st.caption(f"Maximum size {self.max_size_mb:g} MB.")
            if upload is None or not st.button("Process File", key=f"{self.feature.key}_process_file", type="primary"):
                return None
            try:
                with st.spinner("Uploading and parsing..."):
                    data, url = asyncio.run(
                        process_upload(
                            upload.name,
                            upload.getvalue(),
                            storage=self.storage,
                            bucket=self.bucket,
                            allowed_file_types=self.feature.allowed_file_types,
                            max_size_mb=self.max_size_mb,
                        )
                    )
            except UploadError as exc:
                st.error(str(exc))
                return None
            return InputProcessed(data, url)


class ManualBusinessInputRenderer:
    """Editable entry table seeded with sample rows, plus the file upload path."""

    stage = Stage.INPUT

    def __init__(self, upload: FileInputRenderer):
        self.upload = upload

    def render(self, state: PipelineState) -> Optional[StageAction]:
        action: Optional[StageAction] = None
        manual_tab, upload_tab = st.tabs(["Enter data", "Upload file"])
        with manual_tab:
            seed = pd.DataFrame(feature_reporting.SAMPLE_ENTRIES)
            edited = st.data_editor(
                seed,
                num_rows="dynamic",
                use_container_width=True,
                key="business_manual_entries",
                column_config={
                    "date": st.column_config.TextColumn("Date (YYYY-MM-DD)", required=True),
                    "sales": st.column_config.NumberColumn("Sales", min_value=0, format="$%d"),
                    "expenses": st.column_config.NumberColumn("Expenses", min_value=0, format="$%d"),
                    "profit": st.column_config.NumberColumn("Profit", format="$%d"),
                },
            )
            if st.button("Use These Entries", key="business_use_entries", type="primary"):
                rows = edited.dropna(how="all")
                if rows.empty:
                    st.error("Add at least one row.")
                else:
                    records = rows.astype(object).where(rows.notna(), None).to_dict(orient="records")
                    action = InputProcessed({"Sheet1": records})
        with upload_tab:
            upload_action = self.upload.render(state)
        return action or upload_action


class DefaultMappingRenderer:
    stage = Stage.MAPPING

    def render(self, state: PipelineState) -> Optional[StageAction]:
        st.write("Review the captured input before mapping.")
        frame = input_frame(state.input)
        if not frame.empty:
            st.dataframe(frame.head(50), hide_index=True, use_container_width=True)
        else:
            st.json(state.input, expanded=False)
        if st.button("Use Default Mapping", type="primary"):
            return DataMapped(state.input)
        return None


class FeatureMappingRenderer:
    stage = Stage.MAPPING

    def __init__(self, feature: FeatureSpec):
        self.feature = feature

    def render(self, state: PipelineState) -> Optional[StageAction]:
        prefix = f"{self.feature.key}_map"
        sheets = sheet_names(state.input)
        sheet = st.selectbox("Sheet", sheets, key=f"{prefix}_sheet") if len(sheets) > 1 else None
        frame = input_frame(state.input, sheet)
        if frame.empty:
            st.warning("The input has no tabular rows. Upload a spreadsheet or enter rows manually.")
            return None

        with st.expander("Preview", expanded=False):
            st.dataframe(frame.head(20), hide_index=True, use_container_width=True)

        columns = [str(c) for c in frame.columns]
        guess = suggest_field_map(self.feature.fields, columns)
        field_map: Dict[str, Optional[str]] = {}
        with card("Columns"):
            cols = st.columns(2)
            for i, field in enumerate(self.feature.fields):
                options = columns if field.required else [NOT_MAPPED] + columns
                default = guess.get(field.name)
                if default in options:
                    index = options.index(default)
                else:
                    index = 0 if not field.required else None
                choice = cols[i % 2].selectbox(
                    field.label + ("" if field.required else " (optional)"),
                    options,
                    index=index,
                    placeholder="Choose a column",
                    key=f"{prefix}_{field.name}",
                )
                field_map[field.name] = None if choice in (None, NOT_MAPPED) else choice

        params: Dict[str, Any] = {}
        widget = PARAM_WIDGETS.get(self.feature.key)
        if widget is not None:
            with card("Parameters"):
                params = widget(prefix, self.feature.default_params)

        ready = all(field_map.get(f.name) for f in self.feature.required_fields)
        if not st.button("Map Data", key=f"{prefix}_submit", type="primary", disabled=not ready):
            return None
        try:
            mapped = self.feature.build_mapped(state.input, field_map, params, sheet)
        except MappingError as exc:
            st.error(str(exc))
            return None
        return DataMapped(mapped)


class DefaultProcessingRenderer:
    stage = Stage.PROCESSING

    def render(self, state: PipelineState) -> Optional[StageAction]:
        with st.expander("Mapped parameters", expanded=False):
            st.json(state.mapped, expanded=False)
        label = "Re-run Processing" if state.result is not None else "Process Data"
        if st.button(label, type="primary", disabled=state.is_processing):
            return ProcessRequested()
        return None


class DefaultVisualizationRenderer:
    stage = Stage.VISUALIZATION

    def render(self, state: PipelineState) -> Optional[StageAction]:
        st.json(state.result, expanded=True)
        if st.button("Continue to Storage", type="primary"):
            return NavigateTo(Stage.STORAGE)
        return None


class FeatureVisualizationRenderer:
    stage = Stage.VISUALIZATION

    def __init__(self, feature: FeatureSpec):
        self.feature = feature

    def render(self, state: PipelineState) -> Optional[StageAction]:
        result = state.result if isinstance(state.result, dict) else {}
        tiles = KPI_TILES.get(self.feature.key)
        if tiles is not None:
            tiles(result)

        charts = self.feature.charts(result)
        for name, spec in charts.items():
            with card(name.replace("_", " ").title()):
                st.vega_lite_chart(spec, use_container_width=True)

        table = self.feature.table(result)
        if not table.empty:
            with card("Details"):
                st.dataframe(display_table(table), hide_index=True, use_container_width=True)
                st.download_button(
                    "Download CSV",
                    data=table.to_csv(index=False).encode("utf-8"),
                    file_name=f"{self.feature.key}.csv",
                    mime="text/csv",
                    key=f"{self.feature.key}_download",
                )
                st.download_button(
                    "Download PDF Report",
                    data=self.feature.report(result),
                    file_name=f"{self.feature.key}-report.pdf",
                    mime="application/pdf",
                    key=f"{self.feature.key}_download_pdf",
                )
        if st.button("Continue to Storage", type="primary", key=f"{self.feature.key}_to_storage"):
            return NavigateTo(Stage.STORAGE)
        return None


class DefaultStorageRenderer:
    stage = Stage.STORAGE

    def render(self, state: PipelineState) -> Optional[StageAction]:
        title = st.text_input("Title (optional)", placeholder="Defaults to the feature name and timestamp")
        if st.button("Save Results", type="primary", disabled=state.is_saving):
            return SaveRequested(title.strip() or None)
        return None


def default_renderers(feature: FeatureSpec, storage: ObjectStorage, *, bucket: str, max_size_mb: float):
    return [
        FileInputRenderer(feature, storage, bucket=bucket, max_size_mb=max_size_mb),
        DefaultMappingRenderer(),
        DefaultProcessingRenderer(),
        DefaultVisualizationRenderer(),
        DefaultStorageRenderer(),
    ]


def build_registry(feature: FeatureSpec, storage: ObjectStorage, *, bucket: str, max_size_mb: float) -> StageRegistry:
    defaults = default_renderers(feature, storage, bucket=bucket, max_size_mb=max_size_mb)
    overrides = [FeatureMappingRenderer(feature), FeatureVisualizationRenderer(feature)]
    if feature.key == "business-reporting":
        overrides.append(ManualBusinessInputRenderer(defaults[0]))
    registry = StageRegistry(defaults, overrides)
    missing = registry.missing()
    if missing:
        raise LookupError(f"{feature.title}: no renderer for {', '.join(s.value for s in missing)}")
    return registry
