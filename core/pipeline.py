"""Pipeline controller shared by every feature page.

One controller instance belongs to one page session. It owns a `PipelineState`,
sequences the five stages, gates manual navigation, runs the feature's
processing strategy and forwards results to the record store.

Processing failures are values, not crashes: strategies raise
`ProcessingError` (or anything else), or return a failed `Outcome` or
`{"success": False, "error": ...}` envelope, and the controller records an
`ErrorInfo` on the state while keeping the previous result intact.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
import math
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

import numpy as np

from core.session import SessionContext
from core.stages import (
    STAGE_ORDER,
    DataMapped,
    InputProcessed,
    NavigateTo,
    ProcessRequested,
    SaveRequested,
    Stage,
    StageAction,
)
from core.store import RecordStore

logger = logging.getLogger(__name__)

ProcessingStrategy = Callable[[Any], Union[Awaitable[Any], Any]]
Notifier = Callable[[str, str], None]


class ProcessingError(Exception):
    """Raised by a processing strategy when the mapped data cannot be processed."""

    def __init__(self, message: str, code: str = "processing_error"):
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class ErrorInfo:
    message: str
    code: str = "processing_error"


@dataclass(frozen=True)
class Outcome:
    ok: bool
    data: Any = None
    error: Optional[ErrorInfo] = None

    @classmethod
    def success(cls, data: Any) -> "Outcome":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, message: str, code: str = "processing_error") -> "Outcome":
        return cls(ok=False, error=ErrorInfo(message=message, code=code))

    def to_envelope(self) -> Dict[str, Any]:
        if self.ok:
            return {"success": True, "data": self.data}
        return {"success": False, "error": asdict(self.error) if self.error else None}


@dataclass(frozen=True)
class PipelineState:
    input: Any = None
    mapped: Any = None
    result: Any = None
    error: Optional[ErrorInfo] = None
    active_stage: Stage = Stage.INPUT
    is_processing: bool = False
    is_saving: bool = False
    source_url: str = ""

    def can_enter(self, stage: Stage) -> bool:
        stage = Stage(stage)
        if stage is Stage.INPUT:
            return True
        if stage is Stage.MAPPING:
            return self.input is not None
        if stage is Stage.PROCESSING:
            return self.mapped is not None
        return self.result is not None

    def enabled_stages(self) -> List[Stage]:
        return [s for s in STAGE_ORDER if self.can_enter(s)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input": self.input,
            "mapped": self.mapped,
            "result": self.result,
            "error": asdict(self.error) if self.error else None,
            "active_stage": self.active_stage.value,
            "is_processing": self.is_processing,
            "is_saving": self.is_saving,
            "source_url": self.source_url,
            "enabled_stages": [s.value for s in self.enabled_stages()],
        }


def find_non_finite(value: Any, path: str = "result") -> Optional[str]:
    """Return the path of the first NaN/Infinity inside a result, if any."""
    if isinstance(value, (float, np.floating)):
        return None if math.isfinite(float(value)) else path
    if isinstance(value, dict):
        for key, item in value.items():
            found = find_non_finite(item, f"{path}.{key}")
            if found:
                return found
    elif isinstance(value, (list, tuple)):
        for idx, item in enumerate(value):
            found = find_non_finite(item, f"{path}[{idx}]")
            if found:
                return found
    return None


ENVELOPE_KEYS = {"success", "data", "error"}


def as_outcome(value: Any) -> Outcome:
    """Normalise a strategy's return value into an `Outcome`.

    Accepts a plain result, an `Outcome`, or a `{success, data, error}`
    envelope. A failed envelope becomes a failed outcome; plain results are
    checked for NaN/Infinity.
    """
    if isinstance(value, Outcome):
        if not value.ok:
            return value if value.error is not None else Outcome.failure("Processing failed")
        value = value.data
    elif isinstance(value, dict) and value.get("success") is False:
        error = value.get("error")
        if isinstance(error, dict):
            return Outcome.failure(str(error.get("message") or "Processing failed"), str(error.get("code") or "processing_error"))
        return Outcome.failure(str(error) if error else "Processing failed")
    elif isinstance(value, dict) and value.get("success") is True and set(value) <= ENVELOPE_KEYS:
        value = value.get("data")

    bad_path = find_non_finite(value)
    if bad_path:
        return Outcome.failure(f"Processing produced a non-finite number at {bad_path}", "invalid_result")
    return Outcome.success(value)


async def execute_strategy(
    strategy: ProcessingStrategy, mapped: Any, *, timeout: Optional[float] = None, label: str = "processing"
) -> Outcome:
    """Run one strategy call and fold every failure mode into an `Outcome`.

    Cancellation is not a failure and propagates to the caller.
    """
    try:
        value = strategy(mapped)
        if inspect.isawaitable(value):
            value = await (asyncio.wait_for(value, timeout=timeout) if timeout else value)
    except ProcessingError as exc:
        return Outcome.failure(exc.message, exc.code)
    except asyncio.TimeoutError:
        limit = f" after {timeout:g} seconds" if timeout else ""
        return Outcome.failure(f"Processing timed out{limit}", "timeout")
    except Exception as exc:
        logger.exception("%s: processing strategy failed", label)
        return Outcome.failure(str(exc) or type(exc).__name__)
    return as_outcome(value)


class PipelineController:
    def __init__(
        self,
        *,
        strategy: ProcessingStrategy,
        session: SessionContext,
        record_store: RecordStore,
        table_name: str,
        title: str,
        timeout: Optional[float] = None,
        notify: Optional[Notifier] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._strategy = strategy
        self._session = session
        self._store = record_store
        self._table_name = table_name
        self._title = title
        self._timeout = timeout or None
        self._notify = notify
        self._clock = clock

        self._state = PipelineState()
        self._seq = 0
        self._inflight: Optional[asyncio.Future] = None
        self._closed = False

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def session(self) -> SessionContext:
        return self._session

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def closed(self) -> bool:
        return self._closed

    def _set(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)

    def _invalidate_inflight(self, reason: str) -> None:
        self._seq += 1
        task = self._inflight
        self._inflight = None
        if task is not None and not task.done():
            logger.info("Cancelling in-flight processing of %s (%s)", self._table_name, reason)
            task.cancel()

    # ---------- stage callbacks ----------
    def on_input_processed(self, data: Any, source_url: str = "") -> None:
        if self._closed:
            return
        self._invalidate_inflight("new input")
        self._state = replace(
            self._state,
            input=data,
            source_url=source_url or "",
            mapped=None,
            result=None,
            error=None,
            is_processing=False,
            active_stage=Stage.MAPPING,
        )
        logger.info("%s: input captured, advancing to mapping", self._title)

    def on_data_mapped(self, data: Any) -> None:
        if self._closed:
            return
        if self._state.input is None:
            logger.warning("%s: mapping ignored, no input captured yet", self._title)
            return
        if self._state.is_processing:
            self._invalidate_inflight("mapping changed")
        self._set(mapped=data, is_processing=False, active_stage=Stage.PROCESSING)
        logger.info("%s: parameters mapped, advancing to processing", self._title)

    def set_active_stage(self, stage: Stage) -> bool:
        if self._closed:
            return False
        stage = Stage(stage)
        if not self._state.can_enter(stage):
            logger.debug("%s: navigation to %s rejected", self._title, stage.value)
            return False
        self._set(active_stage=stage)
        return True

    # ---------- processing ----------
    async def run_processing(self, *, restart: bool = False) -> Optional[Outcome]:
        if self._closed or self._state.mapped is None:
            return None
        if self._state.is_processing:
            if not restart:
                logger.info("%s: processing already in flight, ignoring re-run", self._title)
                return None
            self._invalidate_inflight("restart requested")

        self._seq += 1
        seq = self._seq
        task = asyncio.ensure_future(
            execute_strategy(self._strategy, copy.deepcopy(self._state.mapped), timeout=self._timeout, label=self._title)
        )
        self._inflight = task
        self._set(is_processing=True)
        logger.info("%s: processing run %d started", self._title, seq)

        try:
            outcome = await task
        except asyncio.CancelledError:
            if seq == self._seq:
                raise
            logger.info("%s: processing run %d superseded", self._title, seq)
            return Outcome.failure("Processing run was superseded by a newer request", "superseded")
        finally:
            if seq == self._seq:
                self._inflight = None
                self._set(is_processing=False)

        if seq != self._seq:
            logger.info("%s: discarding stale outcome of run %d", self._title, seq)
            return Outcome.failure("Processing run was superseded by a newer request", "superseded")

        if outcome.ok:
            self._set(result=outcome.data, error=None, active_stage=Stage.VISUALIZATION)
            logger.info("%s: processing run %d succeeded", self._title, seq)
        else:
            self._set(error=outcome.error)
            logger.warning("%s: processing run %d failed: %s", self._title, seq, outcome.error.message)
        return outcome

    # ---------- storage ----------
    async def save_result(self, title: Optional[str] = None) -> Optional[Outcome]:
        state = self._state
        if self._closed or state.result is None:
            return None
        user_id = self._session.user_id
        if not user_id:
            logger.info("%s: save skipped, no authenticated user", self._title)
            return None
        if state.is_saving:
            return None

        record = {
            "title": title or f"{self._title} - {self._clock().strftime('%Y-%m-%d %H:%M:%S')}",
            "data": state.result,
            "input_data": state.input,
            "mapped_data": state.mapped,
            "user_id": user_id,
            "file_url": state.source_url,
        }
        self._set(is_saving=True)
        try:
            saved = await self._store.insert(self._table_name, record)
        except Exception as exc:
            logger.exception("%s: saving result to %s failed", self._title, self._table_name)
            outcome = Outcome.failure(f"Error saving data: {exc}", "storage_error")
        else:
            outcome = Outcome.success(saved)
        finally:
            self._set(is_saving=False)

        if self._notify is not None:
            if outcome.ok:
                self._notify("success", "Data saved successfully!")
            else:
                self._notify("error", outcome.error.message)
        return outcome

    # ---------- renderer bridge ----------
    async def dispatch(self, action: Optional[StageAction]) -> Optional[Outcome]:
        if action is None:
            return None
        if isinstance(action, InputProcessed):
            self.on_input_processed(action.data, action.source_url)
        elif isinstance(action, DataMapped):
            self.on_data_mapped(action.data)
        elif isinstance(action, ProcessRequested):
            return await self.run_processing(restart=action.restart)
        elif isinstance(action, SaveRequested):
            return await self.save_result(action.title)
        elif isinstance(action, NavigateTo):
            self.set_active_stage(action.stage)
        else:
            raise TypeError(f"Unsupported stage action: {type(action).__name__}")
        return None

    def dismiss_error(self) -> None:
        if self._state.error is not None:
            self._set(error=None)

    def close(self) -> None:
        """Tear down on page unmount; later calls become no-ops."""
        if self._closed:
            return
        self._invalidate_inflight("pipeline closed")
        self._closed = True
        self._set(is_processing=False)
        logger.info("%s: pipeline closed", self._title)
