from __future__ import annotations

from typing import Any, Dict, Optional, Sequence, Union

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()

CHART_HEIGHT = 320


def long_format(
    df: pd.DataFrame,
    id_vars: Union[str, Sequence[str]],
    value_vars: Sequence[str],
    var_name: str = "metric",
    value_name: str = "value",
) -> pd.DataFrame:
    """Wide result rows -> one row per (id, measure) for colour-encoded charts."""
    ids = [id_vars] if isinstance(id_vars, str) else list(id_vars)
    present = [c for c in value_vars if c in df.columns]
    return df.melt(id_vars=ids, value_vars=present, var_name=var_name, value_name=value_name).dropna(subset=[value_name])


def to_vega_spec(chart: alt.TopLevelMixin, title: Optional[str] = None) -> Dict[str, Any]:
    """Altair chart -> Vega-Lite dict sized for the Visualization stage."""
    props: Dict[str, Any] = {"width": "container", "height": CHART_HEIGHT}
    if title:
        props["title"] = title
    return chart.properties(**props).to_dict()
