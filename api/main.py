from __future__ import annotations

import copy
import logging
import math
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from typing import Callable, Optional

import numpy as np
import pandas as pd
from fastapi import Depends, FastAPI, File, Header, HTTPException, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from api.schemas import (
    CreatePipelineRequest,
    DocumentRequest,
    FeatureModel,
    FeatureProcessRequest,
    FieldModel,
    InputRequest,
    MappingRequest,
    ProcessRequest,
    SaveRequest,
    StageRequest,
    TextRequest,
)
from core.analytics import AnalyticsClient, AnalyticsResponse
from core.config import (
    Settings,
    build_analytics_client,
    build_object_storage,
    build_record_store,
    configure_logging,
    get_settings,
)
from core.features import FEATURES, FeatureSpec, create_pipeline, get_feature
from core.mapping import MappingError
from core.parsers import UploadError, process_upload
from core.pipeline import PipelineController, execute_strategy
from core.session import SessionContext, SessionUser
from core.store import ObjectStorage, RecordStore, StoreError

logger = logging.getLogger(__name__)


@dataclass
class PipelineEntry:
    id: str
    feature: FeatureSpec
    controller: PipelineController
    owner: str
    last_access: float = 0.0


def _json(data: object, status_code: int = 200) -> JSONResponse:
    """Return JSON with safe encoding for pandas/numpy objects."""

    def _safe_float(value: object) -> float | None:
        try:
            out = float(value)  # type: ignore[arg-type]
        except Exception:
            return None
        if math.isnan(out) or math.isinf(out):
            return None
        return out

    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(
            data,
            custom_encoder={
                type(pd.NA): lambda _: None,
                np.integer: int,
                float: _safe_float,
                np.floating: _safe_float,
                np.bool_: bool,
                np.ndarray: lambda arr: arr.tolist(),
                pd.Timestamp: lambda ts: ts.isoformat(),
            },
        ),
    )


def _error(exc: Exception, status_code: int = 500) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc), "type": type(exc).__name__})


def _envelope(response: AnalyticsResponse) -> dict:
    if response.success:
        return {"success": True, "data": response.data}
    return {"success": False, "error": asdict(response.error) if response.error else None}


def _feature_model(feature: FeatureSpec) -> FeatureModel:
    return FeatureModel(
        key=feature.key,
        title=feature.title,
        description=feature.description,
        table_name=feature.table_name,
        allowed_file_types=list(feature.allowed_file_types),
        fields=[FieldModel(name=f.name, label=f.label, kind=f.kind, required=f.required) for f in feature.fields],
        default_params=feature.default_params,
    )


def _pipeline_payload(entry: PipelineEntry, **extra: object) -> dict:
    return {"id": entry.id, "feature": entry.feature.key, "state": entry.controller.state.to_dict(), **extra}


def current_session(
    x_user_id: Optional[str] = Header(default=None),
    x_user_name: str = Header(default=""),
    x_user_email: str = Header(default=""),
) -> SessionContext:
    """Identity forwarded by the upstream identity provider."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return SessionContext.authenticated(SessionUser(id=x_user_id, name=x_user_name, email=x_user_email))


def create_app(
    settings: Optional[Settings] = None,
    *,
    record_store: Optional[RecordStore] = None,
    object_storage: Optional[ObjectStorage] = None,
    analytics: Optional[AnalyticsClient] = None,
    clock: Callable[[], float] = time.monotonic,
) -> FastAPI:
    settings = settings or get_settings()
    record_store = record_store or build_record_store(settings)
    object_storage = object_storage or build_object_storage(settings)
    analytics = analytics or build_analytics_client(settings)
    pipelines: dict[str, PipelineEntry] = {}
    tables = {f.table_name for f in FEATURES.values()}

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        for entry in list(pipelines.values()):
            entry.controller.close()
        pipelines.clear()

    app = FastAPI(title="Insight Dashboard API", version="0.1.0", lifespan=lifespan)
    app.state.pipelines = pipelines
    app.state.record_store = record_store
    app.state.object_storage = object_storage

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _feature_or_404(key: str) -> FeatureSpec:
        try:
            return get_feature(key)
        except LookupError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from None

    def _drop(pipeline_id: str, reason: str) -> None:
        entry = pipelines.pop(pipeline_id, None)
        if entry is not None:
            entry.controller.close()
            logger.info("Pipeline %s closed (%s)", pipeline_id, reason)

    def _evict_idle() -> None:
        cutoff = clock() - settings.pipeline_idle_seconds
        for pipeline_id, entry in list(pipelines.items()):
            if entry.last_access < cutoff:
                _drop(pipeline_id, "idle")

    def _make_room(owner: str) -> None:
        owned = sorted((e for e in pipelines.values() if e.owner == owner), key=lambda e: e.last_access)
        for entry in owned[: max(0, len(owned) - settings.max_pipelines_per_user + 1)]:
            _drop(entry.id, "per-user limit")

    def _entry(pipeline_id: str, session: SessionContext) -> PipelineEntry:
        _evict_idle()
        entry = pipelines.get(pipeline_id)
        if entry is None or entry.owner != session.user_id:
            raise HTTPException(status_code=404, detail=f"Pipeline '{pipeline_id}' not found")
        entry.last_access = clock()
        return entry

    def _table_or_404(table: str) -> str:
        if table not in tables:
            raise HTTPException(status_code=404, detail=f"Unknown table '{table}'")
        return table

    @app.get("/health")
    def health():
        return {"status": "ok", "env": settings.app_env, "storage": settings.storage_backend}

    @app.get("/features")
    def features():
        return _json({"features": [_feature_model(f).model_dump() for f in FEATURES.values()]})

    @app.post("/features/{key}/process")
    async def process_feature(key: str, body: FeatureProcessRequest, session: SessionContext = Depends(current_session)):
        feature = _feature_or_404(key)
        try:
            strategy = feature.strategy(analytics)
        except ValueError as exc:
            return _error(exc)
        outcome = await execute_strategy(
            strategy,
            copy.deepcopy(body.mapped),
            timeout=settings.processing_timeout_seconds,
            label=f"{key} for user {session.user_id}",
        )
        return _json(outcome.to_envelope())

    # ---------- pipelines ----------
    @app.post("/pipelines", status_code=201)
    def create_pipeline_route(body: CreatePipelineRequest, session: SessionContext = Depends(current_session)):
        feature = _feature_or_404(body.feature)
        try:
            controller = create_pipeline(
                feature,
                session=session,
                record_store=record_store,
                analytics=analytics,
                timeout=settings.processing_timeout_seconds,
            )
        except Exception as exc:
            logger.exception("create_pipeline failed")
            return _error(exc)
        _evict_idle()
        _make_room(session.user_id)
        entry = PipelineEntry(
            id=uuid.uuid4().hex, feature=feature, controller=controller, owner=session.user_id, last_access=clock()
        )
        pipelines[entry.id] = entry
        logger.info("Pipeline %s created for %s by user %s", entry.id, feature.key, session.user_id)
        return _json(_pipeline_payload(entry), status_code=201)

    @app.get("/pipelines/{pipeline_id}")
    def get_pipeline(pipeline_id: str, session: SessionContext = Depends(current_session)):
        return _json(_pipeline_payload(_entry(pipeline_id, session)))

    @app.delete("/pipelines/{pipeline_id}")
    def close_pipeline(pipeline_id: str, session: SessionContext = Depends(current_session)):
        _entry(pipeline_id, session)
        _drop(pipeline_id, "closed by client")
        return {"closed": pipeline_id}

    @app.post("/pipelines/{pipeline_id}/input")
    def pipeline_input(pipeline_id: str, body: InputRequest, session: SessionContext = Depends(current_session)):
        entry = _entry(pipeline_id, session)
        if body.data is None:
            return _json({"error": "Input data is required", "type": "ValueError"}, status_code=400)
        entry.controller.on_input_processed(body.data, body.source_url)
        return _json(_pipeline_payload(entry))

    @app.post("/pipelines/{pipeline_id}/upload")
    async def pipeline_upload(
        pipeline_id: str,
        file: UploadFile = File(...),
        session: SessionContext = Depends(current_session),
    ):
        entry = _entry(pipeline_id, session)
        try:
            content = await file.read()
            data, url = await process_upload(
                file.filename or "",
                content,
                storage=object_storage,
                bucket=settings.upload_bucket,
                allowed_file_types=entry.feature.allowed_file_types,
                max_size_mb=settings.max_upload_mb,
            )
        except UploadError as exc:
            return _error(exc, 400)
        except Exception as exc:
            logger.exception("pipeline_upload failed")
            return _error(exc)
        entry.controller.on_input_processed(data, url)
        return _json(_pipeline_payload(entry))

    @app.post("/pipelines/{pipeline_id}/mapping")
    def pipeline_mapping(pipeline_id: str, body: MappingRequest, session: SessionContext = Depends(current_session)):
        entry = _entry(pipeline_id, session)
        state = entry.controller.state
        if state.input is None:
            return _json({"error": "No input captured yet", "type": "StageNotReady"}, status_code=409)
        try:
            if body.data is not None:
                mapped = body.data
            elif body.field_map is not None:
                mapped = entry.feature.build_mapped(state.input, body.field_map, body.params, body.sheet)
            else:
                return _json({"error": "Provide either data or field_map", "type": "ValueError"}, status_code=400)
        except MappingError as exc:
            return _error(exc, 422)
        except Exception as exc:
            logger.exception("pipeline_mapping failed")
            return _error(exc)
        entry.controller.on_data_mapped(mapped)
        return _json(_pipeline_payload(entry))

    @app.post("/pipelines/{pipeline_id}/process")
    async def pipeline_process(
        pipeline_id: str,
        body: ProcessRequest = ProcessRequest(),
        session: SessionContext = Depends(current_session),
    ):
        entry = _entry(pipeline_id, session)
        try:
            outcome = await entry.controller.run_processing(restart=body.restart)
        except Exception as exc:
            logger.exception("pipeline_process failed")
            return _error(exc)
        return _json(_pipeline_payload(entry, outcome=outcome.to_envelope() if outcome else None))

    @app.post("/pipelines/{pipeline_id}/save")
    async def pipeline_save(
        pipeline_id: str,
        body: SaveRequest = SaveRequest(),
        session: SessionContext = Depends(current_session),
    ):
        entry = _entry(pipeline_id, session)
        outcome = await entry.controller.save_result(body.title)
        return _json(_pipeline_payload(entry, outcome=outcome.to_envelope() if outcome else None))

    @app.post("/pipelines/{pipeline_id}/stage")
    def pipeline_stage(pipeline_id: str, body: StageRequest, session: SessionContext = Depends(current_session)):
        entry = _entry(pipeline_id, session)
        changed = entry.controller.set_active_stage(body.stage)
        return _json(_pipeline_payload(entry, changed=changed))

    @app.get("/pipelines/{pipeline_id}/charts")
    def pipeline_charts(pipeline_id: str, session: SessionContext = Depends(current_session)):
        entry = _entry(pipeline_id, session)
        result = entry.controller.state.result
        if result is None:
            return _json({"error": "No result to chart yet", "type": "StageNotReady"}, status_code=409)
        try:
            return _json({"charts": entry.feature.charts(result)})
        except Exception as exc:
            logger.exception("pipeline_charts failed")
            return _error(exc)

    @app.get("/pipelines/{pipeline_id}/export")
    def pipeline_export(pipeline_id: str, session: SessionContext = Depends(current_session)):
        entry = _entry(pipeline_id, session)
        export_df = entry.feature.table(entry.controller.state.result)
        if export_df is None or not hasattr(export_df, "to_csv"):
            export_df = pd.DataFrame()
        csv_bytes = export_df.to_csv(index=False).encode("utf-8")
        filename = f"{entry.feature.key}.csv"
        return Response(content=csv_bytes, media_type="text/csv", headers={"Content-Disposition": f"attachment; filename={filename}"})

    @app.get("/pipelines/{pipeline_id}/export.pdf")
    def pipeline_export_pdf(pipeline_id: str, session: SessionContext = Depends(current_session)):
        entry = _entry(pipeline_id, session)
        result = entry.controller.state.result
        if result is None:
            return _json({"error": "No result to report yet", "type": "StageNotReady"}, status_code=409)
        try:
            pdf_bytes = entry.feature.report(result)
        except Exception as exc:
            logger.exception("pipeline_export_pdf failed")
            return _error(exc)
        filename = f"{entry.feature.key}-report.pdf"
        return Response(
            content=pdf_bytes, media_type="application/pdf", headers={"Content-Disposition": f"attachment; filename={filename}"}
        )

    # ---------- saved records ----------
    @app.get("/records/{table}")
    async def list_records(table: str, session: SessionContext = Depends(current_session)):
        _table_or_404(table)
        try:
            rows = await record_store.get(table, {"user_id": session.user_id})
        except StoreError as exc:
            logger.exception("list_records %s failed", table)
            return _error(exc, 502)
        return _json({"records": rows})

    @app.delete("/records/{table}/{record_id}")
    async def delete_record(table: str, record_id: str, session: SessionContext = Depends(current_session)):
        _table_or_404(table)
        try:
            rows = await record_store.get(table, {"id": record_id, "user_id": session.user_id})
            if not rows:
                return _json({"error": f"Record '{record_id}' not found", "type": "NotFound"}, status_code=404)
            await record_store.delete(table, record_id)
        except StoreError as exc:
            logger.exception("delete_record %s/%s failed", table, record_id)
            return _error(exc, 502)
        return {"deleted": record_id}

    # ---------- AI helpers ----------
    @app.post("/ai/text")
    async def ai_text(body: TextRequest, session: SessionContext = Depends(current_session)):
        response = await analytics.generate_text(
            body.prompt, max_tokens=body.max_tokens, temperature=body.temperature, top_p=body.top_p
        )
        return _json(_envelope(response))

    @app.post("/ai/document")
    async def ai_document(body: DocumentRequest, session: SessionContext = Depends(current_session)):
        response = await analytics.analyze_document(body.text, body.analysis_type)
        return _json(_envelope(response))

    return app


configure_logging(get_settings().log_level)
app = create_app()
