"""
Chart response normalization.

The gateway answers chart requests with anything from a clean JSON object to
prose with a fenced JSON block to plain text. ``normalize_chart_response``
turns every one of those into a fully-defaulted ``ChartSpec``:

1. usable ``dataStructure.rows`` / ``dataStructure.example`` on the payload
   are taken as they are;
2. otherwise the first fenced code block in ``response`` is parsed;
3. with no fenced block, the first brace-balanced ``{...}`` span is parsed;
4. a parsed object is merged over the payload's own fields;
5. when nothing parses, a fixed illustrative bar chart is returned together
   with the raw text.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_COLOR_SCHEME = ["#8884d8", "#82ca9d", "#ffc658"]
DEFAULT_TITLE = "Chart Analysis"
UNKNOWN_CHART_TYPE = "unknown"
FALLBACK_INSIGHTS = ["Review the response for chart recommendations"]
FALLBACK_COLUMNS = [
    {"name": "category", "type": "string"},
    {"name": "value", "type": "number"},
]
FALLBACK_ROWS = [
    {"category": "Sample A", "value": 100},
    {"category": "Sample B", "value": 80},
    {"category": "Sample C", "value": 120},
    {"category": "Sample D", "value": 90},
]

FENCED_BLOCK_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


class ColumnSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str = "string"


class ChartSpec(BaseModel):
    """Canonical chart description; every field is present and defaulted"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    chart_type: str = Field(default=UNKNOWN_CHART_TYPE, alias="chartType")
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    columns: Optional[List[ColumnSpec]] = None
    insights: List[str] = Field(default_factory=list)
    color_scheme: List[str] = Field(
        default_factory=lambda: list(DEFAULT_COLOR_SCHEME), alias="colorScheme"
    )
    title: str = DEFAULT_TITLE
    raw_text: Optional[str] = Field(default=None, alias="rawText")

    @field_validator("chart_type", mode="before")
    @classmethod
    def check_chart_type(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip():
            return value
        return UNKNOWN_CHART_TYPE

    @field_validator("rows", mode="before")
    @classmethod
    def check_rows(cls, value: Any) -> List[Dict[str, Any]]:
        if not isinstance(value, list):
            return []
        return [row for row in value if isinstance(row, dict)]

    @field_validator("columns", mode="before")
    @classmethod
    def check_columns(cls, value: Any) -> Optional[List[Dict[str, str]]]:
        if not isinstance(value, list):
            return None
        columns = []
        for column in value:
            if isinstance(column, Mapping) and column.get("name") is not None:
                columns.append(
                    {
                        "name": str(column["name"]),
                        "type": str(column.get("type") or "string"),
                    }
                )
        return columns

    @field_validator("insights", mode="before")
    @classmethod
    def check_insights(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [insight for insight in value if isinstance(insight, str)]

    @field_validator("color_scheme", mode="before")
    @classmethod
    def check_color_scheme(cls, value: Any) -> List[str]:
        if isinstance(value, list):
            colors = [color for color in value if isinstance(color, str) and color]
            if colors:
                return colors
        return list(DEFAULT_COLOR_SCHEME)

    @field_validator("title", mode="before")
    @classmethod
    def check_title(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip():
            return value
        return DEFAULT_TITLE

    def to_payload(self) -> Dict[str, Any]:
        """camelCase dict for JSON responses"""
        return self.model_dump(by_alias=True)


@dataclass(frozen=True)
class StructuredPayload:
    fields: Dict[str, Any]
    raw_text: Optional[str] = None


@dataclass(frozen=True)
class RawTextPayload:
    text: str


ExtractedPayload = Union[StructuredPayload, RawTextPayload]


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not a valid JSON number")


def loads_strict(text: str) -> Any:
    """``json.loads`` that refuses NaN and Infinity literals"""
    return json.loads(text, parse_constant=_reject_constant)


def find_json_span(text: str) -> Optional[str]:
    """Return the first brace-balanced ``{...}`` span, ignoring braces in strings"""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    i = start
    while i < len(text):
        char = text[i]
        if in_string:
            if char == "\\":
                i += 2
                continue
            if char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
        i += 1
    return None


def extract_json_object(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Pull a JSON object out of LLM prose.

    A fenced block wins when there is one; otherwise the first top-level
    ``{...}`` span is tried. Returns None if nothing decodes to an object.
    """
    if not text:
        return None

    match = FENCED_BLOCK_RE.search(text)
    candidate = match.group(1) if match else find_json_span(text)
    if candidate is None:
        logger.debug("No JSON candidate found in response text")
        return None

    try:
        parsed = loads_strict(candidate)
    except ValueError as e:
        logger.warning("Failed to parse JSON from response: %s", e)
        return None

    if not isinstance(parsed, dict):
        logger.warning("Response JSON is a %s, not an object", type(parsed).__name__)
        return None
    return parsed


def _data_structure(fields: Mapping[str, Any]) -> Mapping[str, Any]:
    data_structure = fields.get("dataStructure")
    return data_structure if isinstance(data_structure, Mapping) else {}


def rows_of(fields: Mapping[str, Any]) -> List[Any]:
    """``dataStructure.rows`` when non-empty, else ``dataStructure.example``"""
    data_structure = _data_structure(fields)
    for key in ("rows", "example"):
        rows = data_structure.get(key)
        if isinstance(rows, list) and rows:
            return rows
    return []


def extract_payload(raw: Any) -> ExtractedPayload:
    if isinstance(raw, str):
        raw = {"response": raw}
    elif not isinstance(raw, Mapping):
        raw = {}

    text = raw.get("response")
    if not isinstance(text, str):
        text = None

    if rows_of(raw):
        return StructuredPayload(dict(raw), text)

    parsed = extract_json_object(text)
    if parsed is not None:
        merged = {key: value for key, value in raw.items() if key != "response"}
        merged.update(parsed)
        return StructuredPayload(merged, text)

    if not text and ("chartType" in raw or "dataStructure" in raw):
        return StructuredPayload(dict(raw), None)

    return RawTextPayload(text or "")


def fallback_spec(raw_text: Optional[str] = None) -> ChartSpec:
    return ChartSpec(
        chartType="bar",
        rows=[dict(row) for row in FALLBACK_ROWS],
        columns=FALLBACK_COLUMNS,
        insights=list(FALLBACK_INSIGHTS),
        colorScheme=list(DEFAULT_COLOR_SCHEME),
        title=DEFAULT_TITLE,
        rawText=raw_text or None,
    )


def spec_from_fields(fields: Mapping[str, Any], raw_text: Optional[str] = None) -> ChartSpec:
    chart_config = fields.get("config")
    title = chart_config.get("title") if isinstance(chart_config, Mapping) else None

    return ChartSpec(
        chartType=fields.get("chartType"),
        rows=rows_of(fields),
        columns=_data_structure(fields).get("columns"),
        insights=fields.get("insights"),
        colorScheme=fields.get("colorScheme"),
        title=title or fields.get("title"),
        rawText=raw_text,
    )


def normalize_chart_response(raw: Any) -> ChartSpec:
    """Resolve any gateway chart payload into a ChartSpec; never raises on bad shapes"""
    payload = extract_payload(raw)
    if isinstance(payload, StructuredPayload):
        return spec_from_fields(payload.fields, payload.raw_text)

    logger.info("No structured chart data in response, using fallback chart")
    return fallback_spec(payload.text)
