"""Stage contract shared by every feature page.

A feature page is a five-stage pipeline. Each stage is drawn by a renderer that
receives the current `PipelineState` and returns the action the user took (or
`None`). The controller applies the action; it never looks inside the data
flowing between stages.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Protocol, Union, runtime_checkable

if TYPE_CHECKING:
    from core.pipeline import PipelineState


class Stage(str, Enum):
    INPUT = "input"
    MAPPING = "mapping"
    PROCESSING = "processing"
    VISUALIZATION = "visualization"
    STORAGE = "storage"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def index(self) -> int:
        return STAGE_ORDER.index(self)

    def next(self) -> "Stage":
        """Following stage; STORAGE is terminal and returns itself."""
        idx = self.index
        return STAGE_ORDER[min(idx + 1, len(STAGE_ORDER) - 1)]


STAGE_ORDER = (Stage.INPUT, Stage.MAPPING, Stage.PROCESSING, Stage.VISUALIZATION, Stage.STORAGE)


# ---------- user actions ----------
@dataclass(frozen=True)
class InputProcessed:
    data: Any
    source_url: str = ""


@dataclass(frozen=True)
class DataMapped:
    data: Any


@dataclass(frozen=True)
class ProcessRequested:
    restart: bool = False


@dataclass(frozen=True)
class SaveRequested:
    title: Optional[str] = None


@dataclass(frozen=True)
class NavigateTo:
    stage: Stage


StageAction = Union[InputProcessed, DataMapped, ProcessRequested, SaveRequested, NavigateTo]


@runtime_checkable
class StageRenderer(Protocol):
    """One stage of a feature page.

    `render` draws the stage for the given state and returns the user action it
    produced during this pass, or None when the user did nothing.
    """

    stage: Stage

    def render(self, state: "PipelineState") -> Optional[StageAction]:
        ...


class StageRegistry:
    """Renderers for the five stages, feature overrides on top of defaults."""

    def __init__(self, defaults: Iterable[StageRenderer], overrides: Iterable[StageRenderer] = ()):
        self._renderers: Dict[Stage, StageRenderer] = {}
        for renderer in list(defaults) + list(overrides):
            self.register(renderer)

    def register(self, renderer: StageRenderer) -> None:
        if not isinstance(renderer, StageRenderer):
            raise TypeError(f"{type(renderer).__name__} does not implement StageRenderer")
        self._renderers[Stage(renderer.stage)] = renderer

    def get(self, stage: Stage) -> StageRenderer:
        try:
            return self._renderers[stage]
        except KeyError:
            raise LookupError(f"No renderer registered for stage '{stage.value}'") from None

    def missing(self) -> List[Stage]:
        return [s for s in STAGE_ORDER if s not in self._renderers]

    def render(self, state: "PipelineState") -> Optional[StageAction]:
        return self.get(state.active_stage).render(state)
