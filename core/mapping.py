"""Column mapping helpers shared by the feature Mapping stages.

A mapping turns an Input payload (spreadsheet records) into the feature's
mapped parameter object: a list of normalized records plus feature params.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence

import pandas as pd

from core.parsers import input_frame
from core.pipeline import ProcessingError

FieldKind = Literal["number", "text", "date", "list"]


class MappingError(ValueError):
    """The chosen columns/parameters cannot produce a mapped object."""


@dataclass(frozen=True)
class FieldSpec:
    name: str
    label: str
    kind: FieldKind = "number"
    required: bool = True


def _norm(name: object) -> str:
    return re.sub(r"[^a-z0-9]", "", str(name).lower())


def suggest_field_map(fields: Sequence[FieldSpec], columns: Iterable[object]) -> Dict[str, Optional[str]]:
    """Best-effort column guess by normalized name or label."""
    by_norm = {_norm(c): str(c) for c in columns}
    out: Dict[str, Optional[str]] = {}
    for f in fields:
        out[f.name] = by_norm.get(_norm(f.name)) or by_norm.get(_norm(f.label))
    return out


def _parse_number_list(value: object) -> Optional[List[float]]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        items = list(value)
    else:
        items = [p for p in re.split(r"[,;\s]+", str(value).strip()) if p]
    nums = pd.to_numeric(pd.Series(items, dtype=object), errors="coerce")
    if nums.isna().any():
        return None
    return [float(v) for v in nums]


def coerce_value(value: object, kind: FieldKind) -> Any:
    if kind == "list":
        return _parse_number_list(value)
    if value is None or (not isinstance(value, (list, tuple)) and pd.isna(value)):
        return None
    if kind == "number":
        num = pd.to_numeric(value, errors="coerce")
        return None if pd.isna(num) else float(num)
    if kind == "date":
        ts = pd.to_datetime(value, errors="coerce")
        return None if pd.isna(ts) else ts.date().isoformat()
    s = str(value).strip()
    return s or None


def build_records(
    data: Any,
    fields: Sequence[FieldSpec],
    field_map: Dict[str, Optional[str]],
    *,
    sheet: Optional[str] = None,
) -> List[Dict[str, Any]]:
    df = input_frame(data, sheet)
    if df.empty:
        raise MappingError("The uploaded data has no tabular rows to map.")
    missing = [f.label for f in fields if f.required and not field_map.get(f.name)]
    if missing:
        raise MappingError(f"Missing required fields: {', '.join(missing)}")
    absent = [c for c in field_map.values() if c and c not in df.columns]
    if absent:
        raise MappingError(f"Columns not found in data: {', '.join(absent)}")

    records: List[Dict[str, Any]] = []
    for row in df.to_dict(orient="records"):
        rec = {}
        for f in fields:
            col = field_map.get(f.name)
            if col:
                rec[f.name] = coerce_value(row.get(col), f.kind)
        if all(rec.get(f.name) is None for f in fields if f.required):
            continue
        records.append(rec)
    if not records:
        raise MappingError("No rows contained values for the required fields.")
    return records


# ---------- strategy-side helpers ----------
def records_frame(mapped: Any, key: str, columns: Sequence[str], label: str) -> pd.DataFrame:
    """Validated frame of `mapped[key]`; raises ProcessingError on malformed data."""
    if not isinstance(mapped, dict):
        raise ProcessingError(f"Expected mapped {label} parameters, got {type(mapped).__name__}", "invalid_input")
    rows = mapped.get(key)
    if not isinstance(rows, list) or not rows:
        raise ProcessingError(f"No {label} records to process", "empty_input")
    df = pd.DataFrame(rows)
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ProcessingError(f"{label.capitalize()} records are missing fields: {', '.join(missing)}", "invalid_input")
    return df


def require_numeric(df: pd.DataFrame, columns: Sequence[str], label: str) -> pd.DataFrame:
    for col in columns:
        df[col] = pd.to_numeric(df[col], errors="coerce")
        bad = int(df[col].isna().sum())
        if bad:
            raise ProcessingError(f"{bad} {label} record(s) have a non-numeric '{col}'", "invalid_input")
    return df
