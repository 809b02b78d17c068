import asyncio
from typing import Dict, List

import pandas as pd
import streamlit as st

from core.config import (
    build_analytics_client,
    build_credentials_provider,
    build_object_storage,
    build_record_store,
    configure_logging,
    get_settings,
)
from core.features import FEATURES, FeatureSpec, create_pipeline
from core.pipeline import PipelineController
from core.session import SessionContext
from core.stages import Stage
from core.store import StoreError
from ui.layout import card, format_stage_summary, inject_base_styles, render_page_header
from ui.renderers import build_registry

settings = get_settings()
configure_logging(settings.log_level)


@st.cache_resource
def get_services() -> Dict[str, object]:
    return {
        "records": build_record_store(settings),
        "objects": build_object_storage(settings),
        "analytics": build_analytics_client(settings),
        "auth": build_credentials_provider(settings),
    }


services = get_services()


# ---------- session helpers ----------
def current_session() -> SessionContext:
    return st.session_state.get("session") or SessionContext.anonymous()


def queue_toast(kind: str, message: str):
    st.session_state.setdefault("_toasts", []).append((kind, message))


def flush_toasts():
    for kind, message in st.session_state.pop("_toasts", []):
        st.toast(message, icon="✅" if kind == "success" else "⚠️")


def close_pipeline():
    controller = st.session_state.pop("pipeline", None)
    st.session_state.pop("pipeline_page", None)
    if controller is not None:
        controller.close()


def get_pipeline(feature: FeatureSpec, session: SessionContext) -> PipelineController:
    controller = st.session_state.get("pipeline")
    if (
        controller is not None
        and not controller.closed
        and st.session_state.get("pipeline_page") == feature.key
        and controller.session == session
    ):
        return controller
    close_pipeline()
    controller = create_pipeline(
        feature,
        session=session,
        record_store=services["records"],
        analytics=services["analytics"],
        timeout=settings.processing_timeout_seconds,
        notify=queue_toast,
    )
    st.session_state["pipeline"] = controller
    st.session_state["pipeline_page"] = feature.key
    return controller


def load_saved(feature: FeatureSpec, session: SessionContext) -> List[dict]:
    return asyncio.run(services["records"].get(feature.table_name, {"user_id": session.user_id}))


# ---------- pages ----------
def render_login():
    inject_base_styles()
    st.title("Insight Dashboard")
    st.caption("Sign in to run and save analyses.")
    with st.form("login"):
        email = st.text_input("Email", value="")
        password = st.text_input("Password", type="password")
        submitted = st.form_submit_button("Sign in", type="primary")
    if submitted:
        session = services["auth"].authenticate(email, password)
        if session.is_authenticated:
            st.session_state["session"] = session
            st.rerun()
        st.error("Invalid email or password.")


def render_dashboard(session: SessionContext):
    render_page_header("Dashboard", "Home")
    user = session.current_user()
    st.write(f"Welcome back, **{user.name or user.email}**.")
    rows = []
    for feature in FEATURES.values():
        try:
            saved = load_saved(feature, session)
        except StoreError as exc:
            st.warning(f"{feature.title}: could not load saved results ({exc})")
            saved = []
        rows.append(
            {
                "Feature": feature.title,
                "Description": feature.description,
                "Saved results": len(saved),
                "Last saved": saved[0].get("created_at", "") if saved else "",
            }
        )
    with card("Features"):
        st.dataframe(pd.DataFrame(rows), hide_index=True, use_container_width=True)


def render_saved_records(feature: FeatureSpec, session: SessionContext):
    try:
        saved = load_saved(feature, session)
    except StoreError as exc:
        st.warning(f"Could not load saved results: {exc}")
        return
    with card("Saved results", actions=f"{len(saved)} saved"):
        if not saved:
            st.info("Nothing saved yet.")
            return
        for row in saved[:20]:
            c1, c2, c3 = st.columns([6, 3, 1])
            c1.write(row.get("title") or row.get("id"))
            c2.caption(str(row.get("created_at", "")))
            if c3.button("Delete", key=f"delete_{row['id']}"):
                try:
                    asyncio.run(services["records"].delete(feature.table_name, row["id"]))
                except StoreError as exc:
                    queue_toast("error", f"Delete failed: {exc}")
                st.rerun()


def render_feature_page(feature: FeatureSpec, session: SessionContext):
    controller = get_pipeline(feature, session)
    state = controller.state
    registry = build_registry(feature, services["objects"], bucket=settings.upload_bucket, max_size_mb=settings.max_upload_mb)

    export_df = feature.table(state.result) if state.result is not None else None
    render_page_header(
        feature.title,
        f"Features / {feature.title}",
        format_stage_summary(state.active_stage, state.enabled_stages()),
        export_df=export_df,
        export_name=f"{feature.key}.csv",
    )
    st.caption(feature.description)

    if state.error is not None:
        c1, c2 = st.columns([9, 1])
        c1.error(f"{state.error.message} ({state.error.code})")
        if c2.button("Dismiss", key="dismiss_error"):
            controller.dismiss_error()
            st.rerun()

    enabled = state.enabled_stages()
    st.session_state["stage_choice"] = state.active_stage if state.active_stage in enabled else enabled[0]
    st.radio(
        "Stage",
        enabled,
        key="stage_choice",
        on_change=lambda: controller.set_active_stage(st.session_state["stage_choice"]),
        format_func=lambda s: f"{s.index + 1}. {s.label}",
        horizontal=True,
        label_visibility="collapsed",
    )

    action = registry.render(state)
    if action is not None:
        with st.spinner("Working..."):
            asyncio.run(controller.dispatch(action))
        st.rerun()

    if state.active_stage == Stage.STORAGE:
        render_saved_records(feature, session)


def render_settings():
    render_page_header("Settings", "Home / Settings")
    with card("Environment"):
        st.dataframe(
            pd.DataFrame(
                [
                    {"Setting": "Environment", "Value": settings.app_env},
                    {"Setting": "Storage backend", "Value": settings.storage_backend},
                    {"Setting": "Upload bucket", "Value": settings.upload_bucket},
                    {"Setting": "Max upload (MB)", "Value": f"{settings.max_upload_mb:g}"},
                    {"Setting": "Analytics endpoint", "Value": f"{settings.analytics_base_url}/{settings.analytics_api_version}"},
                    {"Setting": "Analytics API key", "Value": "configured" if settings.analytics_api_key else "missing"},
                    {
                        "Setting": "Processing timeout",
                        "Value": f"{settings.processing_timeout_seconds:g}s" if settings.processing_timeout_seconds else "none",
                    },
                ]
            ),
            hide_index=True,
            use_container_width=True,
        )


# ---------- UI setup ----------
st.set_page_config(page_title="Insight Dashboard", layout="wide")
inject_base_styles()
flush_toasts()

session = current_session()
if not session.is_authenticated:
    close_pipeline()
    render_login()
    st.stop()

pages = ["Dashboard"] + [f.title for f in FEATURES.values()] + ["Settings"]
by_title = {f.title: f for f in FEATURES.values()}
with st.sidebar:
    user = session.current_user()
    st.markdown(f"**{user.name}**  \n{user.email}")
    st.markdown("### Navigate")
    page = st.radio("Navigate", pages, index=0, label_visibility="collapsed")
    st.markdown("---")
    if st.button("Sign out"):
        close_pipeline()
        st.session_state.pop("session", None)
        st.rerun()

if page in by_title:
    render_feature_page(by_title[page], session)
else:
    close_pipeline()
    if page == "Settings":
        render_settings()
    else:
        render_dashboard(session)
