from __future__ import annotations

import io
import json
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import docx
import pandas as pd
from pypdf import PdfReader

from core.store import ObjectStorage, StoreError

logger = logging.getLogger(__name__)

DEFAULT_ALLOWED_FILE_TYPES = [".pdf", ".xlsx", ".xls", ".docx"]

CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".xls": "application/vnd.ms-excel",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".csv": "text/csv",
}


class UploadError(Exception):
    """File rejected or unreadable; shown inline on the Input stage."""


def file_extension(filename: str) -> str:
    name = (filename or "").strip()
    if "." not in name:
        return ""
    return "." + name.rsplit(".", 1)[-1].lower()


def validate_upload(filename: str, size: int, allowed_file_types: Iterable[str], max_size_mb: float = 10) -> str:
    allowed = [t.lower() for t in allowed_file_types]
    ext = file_extension(filename)
    if ext not in allowed:
        raise UploadError(f"File type not supported. Please upload {', '.join(allowed)} files.")
    if size > max_size_mb * 1024 * 1024:
        raise UploadError(f"File size exceeds the maximum limit of {max_size_mb:g}MB.")
    return ext


def frame_records(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """JSON-safe records: NaN -> None, timestamps -> ISO strings."""
    df = df.dropna(how="all")
    df.columns = [str(c).strip() for c in df.columns]
    return json.loads(df.to_json(orient="records", date_format="iso"))


def parse_excel(content: bytes) -> Dict[str, List[Dict[str, Any]]]:
    try:
        sheets = pd.read_excel(io.BytesIO(content), sheet_name=None)
    except Exception as exc:
        logger.exception("Error parsing Excel")
        raise UploadError("Failed to parse Excel file") from exc
    return {str(name): frame_records(df) for name, df in sheets.items()}


def parse_csv(content: bytes) -> Dict[str, List[Dict[str, Any]]]:
    try:
        df = pd.read_csv(io.BytesIO(content))
    except Exception as exc:
        logger.exception("Error parsing CSV")
        raise UploadError("Failed to parse CSV file") from exc
    return {"Sheet1": frame_records(df)}


def parse_pdf(content: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(content))
        return "".join((page.extract_text() or "") + "\n" for page in reader.pages)
    except Exception as exc:
        logger.exception("Error parsing PDF")
        raise UploadError("Failed to parse PDF file") from exc


def parse_docx(content: bytes) -> str:
    try:
        document = docx.Document(io.BytesIO(content))
        return "\n".join(p.text for p in document.paragraphs)
    except Exception as exc:
        logger.exception("Error parsing DOCX")
        raise UploadError("Failed to parse DOCX file") from exc


PARSERS: Dict[str, Callable[[bytes], Any]] = {
    ".xlsx": parse_excel,
    ".xls": parse_excel,
    ".csv": parse_csv,
    ".pdf": parse_pdf,
    ".docx": parse_docx,
}


def parse_file(filename: str, content: bytes) -> Any:
    ext = file_extension(filename)
    parser = PARSERS.get(ext)
    if parser is None:
        raise UploadError(f"No parser available for {ext or 'files without an extension'}")
    return parser(content)


async def process_upload(
    filename: str,
    content: bytes,
    *,
    storage: ObjectStorage,
    bucket: str = "uploads",
    allowed_file_types: Iterable[str] = DEFAULT_ALLOWED_FILE_TYPES,
    max_size_mb: float = 10,
    clock: Callable[[], float] = time.time,
) -> Tuple[Any, str]:
    """Validate, upload and parse one file. Returns (parsed data, public URL)."""
    ext = validate_upload(filename, len(content), allowed_file_types, max_size_mb)
    path = f"{int(clock() * 1000)}_{filename}"
    try:
        url = await storage.upload(bucket, path, content, CONTENT_TYPES.get(ext, "application/octet-stream"))
    except StoreError as exc:
        raise UploadError(f"Upload failed: {exc}") from exc
    data = parse_file(filename, content)
    logger.info("Uploaded and parsed %s (%d bytes)", filename, len(content))
    return data, url


# ---------- helpers for mapping stages ----------
def sheet_names(data: Any) -> List[str]:
    if isinstance(data, dict):
        return [k for k, v in data.items() if isinstance(v, list)]
    return []


def input_frame(data: Any, sheet: Optional[str] = None) -> pd.DataFrame:
    """Tabular view of an Input payload: records list or {sheet: records}."""
    if data is None or isinstance(data, str):
        return pd.DataFrame()
    if isinstance(data, list):
        return pd.DataFrame(data)
    if isinstance(data, dict):
        names = sheet_names(data)
        if not names:
            return pd.DataFrame()
        key = sheet if sheet in names else names[0]
        return pd.DataFrame(data[key])
    return pd.DataFrame()
