from __future__ import annotations

from datetime import datetime

import pytest

from core.pipeline import PipelineController
from core.session import SessionContext, SessionUser
from core.store import MemoryRecordStore

FIXED_NOW = datetime(2025, 3, 31, 9, 30, 0)


@pytest.fixture
def user_session() -> SessionContext:
    return SessionContext.authenticated(SessionUser(id="user-1", name="Ada", email="ada@example.com"))


@pytest.fixture
def record_store() -> MemoryRecordStore:
    return MemoryRecordStore()


@pytest.fixture
def make_controller(user_session, record_store):
    notices = []

    def _make(strategy, *, session=None, store=None, timeout=None):
        controller = PipelineController(
            strategy=strategy,
            session=session or user_session,
            record_store=store or record_store,
            table_name="test_results",
            title="Test Feature",
            timeout=timeout,
            notify=lambda kind, message: notices.append((kind, message)),
            clock=lambda: FIXED_NOW,
        )
        controller.notices = notices
        return controller

    return _make
