from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from core.stages import Stage


class FieldModel(BaseModel):
    name: str
    label: str
    kind: str
    required: bool


class FeatureModel(BaseModel):
    key: str
    title: str
    description: str
    table_name: str
    allowed_file_types: List[str]
    fields: List[FieldModel]
    default_params: Dict[str, Any] = Field(default_factory=dict)


class FeatureProcessRequest(BaseModel):
    mapped: Dict[str, Any]


class CreatePipelineRequest(BaseModel):
    feature: str


class InputRequest(BaseModel):
    data: Any
    source_url: str = ""


class MappingRequest(BaseModel):
    """Either a ready mapped object (`data`) or a column map run through the feature."""

    data: Optional[Dict[str, Any]] = None
    field_map: Optional[Dict[str, Optional[str]]] = None
    params: Dict[str, Any] = Field(default_factory=dict)
    sheet: Optional[str] = None


class ProcessRequest(BaseModel):
    restart: bool = False


class SaveRequest(BaseModel):
    title: Optional[str] = None


class StageRequest(BaseModel):
    stage: Stage


class TextRequest(BaseModel):
    prompt: str = Field(min_length=1)
    max_tokens: int = Field(default=1000, gt=0)
    temperature: float = Field(default=0.7, ge=0, le=2)
    top_p: float = Field(default=0.9, gt=0, le=1)


class DocumentRequest(BaseModel):
    text: str = Field(min_length=1)
    analysis_type: Literal["summary", "entities", "sentiment", "keywords"] = "summary"
