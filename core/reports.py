"""PDF reports of a processed feature result.

A report has a title, a generation timestamp, a key-figures block built from
the result's scalar values, and the feature's primary table.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from fpdf import FPDF

MARGIN_MM = 15
WIDE_TABLE_COLUMNS = 6

_SCALARS = (str, int, float)


def humanize(key: str) -> str:
    """camelCase / snake_case key -> 'Title Case' label."""
    words = re.sub(r"(?<=[a-z0-9])(?=[A-Z])", " ", str(key)).replace("_", " ").split()
    return " ".join(w[:1].upper() + w[1:] for w in words)


def format_value(value: Any) -> str:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return "N/A"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, int):
        return f"{value:,}"
    if isinstance(value, float):
        return f"{value:,.0f}" if value.is_integer() else f"{value:,.2f}"
    return str(value)


def _is_flat(mapping: Dict[str, Any]) -> bool:
    return all(v is None or isinstance(v, _SCALARS) for v in mapping.values())


def summary_items(result: Dict[str, Any]) -> List[Tuple[str, str]]:
    """Key figures: top-level scalars, plus one level into nested dicts like `summary`."""
    items: List[Tuple[str, str]] = []
    for key, value in result.items():
        if isinstance(value, _SCALARS):
            items.append((humanize(key), format_value(value)))
        elif isinstance(value, dict):
            for sub_key, sub_value in value.items():
                if sub_value is None or isinstance(sub_value, _SCALARS):
                    items.append((humanize(sub_key), format_value(sub_value)))
                elif isinstance(sub_value, dict) and sub_value and _is_flat(sub_value):
                    joined = ", ".join(f"{k} {format_value(v)}" for k, v in sub_value.items())
                    items.append((humanize(sub_key), joined))
    return items


def _latin1(text: str) -> str:
    # core PDF fonts only cover latin-1
    return text.encode("latin-1", "replace").decode("latin-1")


def build_pdf_report(
    title: str,
    result: Dict[str, Any],
    table: Optional[pd.DataFrame] = None,
    *,
    generated_at: Optional[datetime] = None,
) -> bytes:
    generated_at = generated_at or datetime.now()
    wide = table is not None and len(table.columns) > WIDE_TABLE_COLUMNS

    pdf = FPDF(orientation="L" if wide else "P", unit="mm", format="A4")
    pdf.set_margins(MARGIN_MM, MARGIN_MM, MARGIN_MM)
    pdf.set_auto_page_break(auto=True, margin=MARGIN_MM)
    pdf.set_title(_latin1(title))
    pdf.add_page()

    pdf.set_font("Helvetica", "B", 18)
    pdf.cell(0, 10, _latin1(title), new_x="LMARGIN", new_y="NEXT")
    pdf.set_font("Helvetica", size=10)
    pdf.cell(0, 6, f"Generated on: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}", new_x="LMARGIN", new_y="NEXT")
    pdf.ln(4)

    items = summary_items(result)
    if items:
        pdf.set_font("Helvetica", "B", 14)
        pdf.cell(0, 8, "Key figures", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", size=10)
        with pdf.table(col_widths=(1, 2), first_row_as_headings=False) as grid:
            for label, value in items:
                row = grid.row()
                row.cell(_latin1(label))
                row.cell(_latin1(value))
        pdf.ln(6)

    if table is not None and not table.empty:
        pdf.set_font("Helvetica", "B", 14)
        pdf.cell(0, 8, "Details", new_x="LMARGIN", new_y="NEXT")
        pdf.set_font("Helvetica", size=7 if wide else 9)
        with pdf.table() as grid:
            header = grid.row()
            for column in table.columns:
                header.cell(_latin1(humanize(column)))
            for record in table.itertuples(index=False):
                row = grid.row()
                for value in record:
                    row.cell(_latin1(_cell_text(value)))

    return bytes(pdf.output())


def _cell_text(value: Any) -> str:
    if isinstance(value, (list, tuple, dict)):
        return str(value)
    if value is None or pd.isna(value):
        return ""
    if hasattr(value, "item"):
        value = value.item()
    return format_value(value)
