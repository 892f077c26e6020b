import io
import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend
import matplotlib.pyplot as plt
from pydantic import BaseModel, ConfigDict, Field

from datachat.chart_normalizer import ChartSpec

logger = logging.getLogger(__name__)

FALLBACK_VALUE_KEY = "value"
FALLBACK_NAME_KEY = "name"
NO_DATA_MESSAGE = "No data available"
SUPPORTED_CHART_TYPES = ("bar", "line", "pie")


def runtime_type(value: Any) -> str:
    """Type name of a row value as it would look once decoded from JSON"""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"


def field_types(row: Dict[str, Any]) -> List[Tuple[str, str]]:
    return [(key, runtime_type(value)) for key, value in row.items()]


def _first_key_of_type(
    fields: Sequence[Tuple[str, str]], wanted: str, fallback: str
) -> str:
    for key, type_name in fields:
        if type_name == wanted:
            return key
    return fallback


def infer_value_key(fields: Sequence[Tuple[str, str]]) -> str:
    return _first_key_of_type(fields, "number", FALLBACK_VALUE_KEY)


def infer_name_key(fields: Sequence[Tuple[str, str]]) -> str:
    return _first_key_of_type(fields, "string", FALLBACK_NAME_KEY)


def infer_keys(rows: Sequence[Dict[str, Any]]) -> Tuple[str, str]:
    """(name key, value key) from the first row"""
    fields = field_types(rows[0]) if rows else []
    return infer_name_key(fields), infer_value_key(fields)


def percent_label(share: float) -> int:
    """Whole-number percentage of a 0..1 share, halves rounded up"""
    return int(math.floor(share * 100 + 0.5))


class PieSlice(BaseModel):
    name: Any = None
    value: float
    color: str
    percent: int
    label: str


class RenderedChart(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    kind: str
    chart_type: str = Field(alias="chartType")
    title: str
    name_key: Optional[str] = Field(default=None, alias="nameKey")
    value_key: Optional[str] = Field(default=None, alias="valueKey")
    data: List[Dict[str, Any]] = Field(default_factory=list)
    color: Optional[str] = None
    grid: bool = False
    interpolation: Optional[str] = None
    slices: List[PieSlice] = Field(default_factory=list)
    message: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


def _magnitude(value: Any) -> float:
    if runtime_type(value) != "number":
        return 0.0
    try:
        number = float(value)
    except OverflowError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def _pie_slices(
    rows: Sequence[Dict[str, Any]], name_key: str, value_key: str, colors: Sequence[str]
) -> List[PieSlice]:
    values = [_magnitude(row.get(value_key)) for row in rows]
    total = sum(values)

    slices = []
    for index, (row, value) in enumerate(zip(rows, values)):
        name = row.get(name_key)
        percent = percent_label(value / total) if total else 0
        slices.append(
            PieSlice(
                name=name,
                value=value,
                color=colors[index % len(colors)],
                percent=percent,
                label=f"{name} {percent}%",
            )
        )
    return slices


def render_chart(spec: ChartSpec) -> RenderedChart:
    """
    Map a ChartSpec onto a concrete chart description.

    Bar and line charts plot the first string field against the first numeric
    field of the first row; pie charts use the same keys for slice labels and
    sizes. Unknown types and empty data give a placeholder instead of raising.
    """
    chart_type = spec.chart_type.lower()
    base = {"chartType": spec.chart_type, "title": spec.title}

    if not spec.rows:
        return RenderedChart(kind="placeholder", message=NO_DATA_MESSAGE, **base)

    if chart_type not in SUPPORTED_CHART_TYPES:
        logger.info("Chart type %r is not supported", spec.chart_type)
        return RenderedChart(
            kind="placeholder",
            message=f'Chart type "{spec.chart_type}" not supported',
            **base,
        )

    name_key, value_key = infer_keys(spec.rows)
    colors = spec.color_scheme
    common = dict(
        nameKey=name_key, valueKey=value_key, data=spec.rows, color=colors[0], **base
    )

    if chart_type == "bar":
        return RenderedChart(kind="bar", grid=True, **common)
    if chart_type == "line":
        return RenderedChart(kind="line", grid=True, interpolation="monotone", **common)
    return RenderedChart(
        kind="pie", slices=_pie_slices(spec.rows, name_key, value_key, colors), **common
    )


def _label(value: Any) -> str:
    return "" if value is None else str(value)


def render_png(chart: RenderedChart, width: float = 8, height: float = 5) -> bytes:
    """Draw a rendered chart with matplotlib and return PNG bytes"""
    fig, ax = plt.subplots(figsize=(width, height))
    try:
        ax.set_title(chart.title)

        if chart.kind == "placeholder":
            ax.axis("off")
            ax.text(0.5, 0.5, chart.message or "", ha="center", va="center", fontsize=14)
        elif chart.kind == "pie":
            sizes = [piece.value for piece in chart.slices]
            if sum(sizes) > 0:
                ax.pie(
                    sizes,
                    labels=[piece.label for piece in chart.slices],
                    colors=[piece.color for piece in chart.slices],
                )
            ax.axis("equal")
        else:
            labels = [_label(row.get(chart.name_key)) for row in chart.data]
            values = [_magnitude(row.get(chart.value_key)) for row in chart.data]
            positions = list(range(len(values)))

            if chart.kind == "bar":
                ax.bar(positions, values, color=chart.color)
            else:
                ax.plot(positions, values, color=chart.color, linewidth=2, marker="o")

            ax.set_xticks(positions)
            ax.set_xticklabels(labels, rotation=45, ha="right")
            if chart.grid:
                ax.grid(True, linestyle="--", alpha=0.6)

        fig.tight_layout()
        buffer = io.BytesIO()
        fig.savefig(buffer, format="png", dpi=100)
        return buffer.getvalue()
    finally:
        plt.close(fig)
