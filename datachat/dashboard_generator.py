import logging
import os
from typing import Any, Dict, List, Mapping

from datachat.chart_normalizer import (
    DEFAULT_COLOR_SCHEME,
    extract_json_object,
    normalize_chart_response,
)
from datachat.file_ingestor import parse_csv_rows
from datachat.prompt_composer import compose_dashboard_prompt

logger = logging.getLogger(__name__)

SAMPLE_ROW_LIMIT = 20
FALLBACK_WIDGET_ROWS = 10
DASHBOARD_CATEGORIES = ("sales", "marketing", "operations", "hr", "finance", "custom")


class NoDataError(ValueError):
    """Raised when no rows can be parsed from an uploaded file"""


def fallback_dashboard(
    file_name: str, sample_rows: List[Dict[str, Any]], total_rows: int
) -> Dict[str, Any]:
    stem = os.path.splitext(file_name)[0]
    return {
        "name": f"{stem} Dashboard",
        "description": f"AI-generated dashboard for {file_name}",
        "category": "custom",
        "layout": "grid",
        "metrics": [
            {
                "title": "Total Records",
                "value": str(total_rows),
                "change": "Data uploaded",
                "icon": "BarChart3",
            }
        ],
        "widgets": [
            {
                "id": "overview",
                "type": "chart",
                "title": "Data Overview",
                "chartType": "bar",
                "data": sample_rows[:FALLBACK_WIDGET_ROWS],
                "insights": [f"Analyzed {total_rows} records from {file_name}"],
                "colorScheme": list(DEFAULT_COLOR_SCHEME),
            }
        ],
    }


def _widget_to_chart(widget: Mapping[str, Any], index: int, rows: List[Dict[str, Any]]):
    data = widget.get("data")
    # Widgets that carry data are re-pointed at the file's real rows
    if isinstance(data, list) and data:
        data = rows
    spec = normalize_chart_response(
        {
            "chartType": widget.get("chartType"),
            "dataStructure": {"rows": data if isinstance(data, list) else []},
            "insights": widget.get("insights"),
            "colorScheme": widget.get("colorScheme"),
            "config": {"title": widget.get("title")},
        }
    )
    return {
        "id": str(widget.get("id") or f"widget{index + 1}"),
        "type": widget.get("type") or "chart",
        "title": spec.title,
        "chartSpec": spec.to_payload(),
    }


def _metrics(raw_metrics: Any) -> List[Dict[str, str]]:
    if not isinstance(raw_metrics, list):
        return []
    metrics = []
    for metric in raw_metrics:
        if not isinstance(metric, Mapping):
            continue
        metrics.append(
            {
                "title": str(metric.get("title", "")),
                "value": str(metric.get("value", "")),
                "change": str(metric.get("change", "")),
                "icon": str(metric.get("icon") or "BarChart3"),
            }
        )
    return metrics


def build_dashboard(
    config: Mapping[str, Any], file_name: str, rows: List[Dict[str, Any]]
) -> Dict[str, Any]:
    """Canonical dashboard config; every widget's chart goes through the normalizer"""
    real_rows = rows[:SAMPLE_ROW_LIMIT]
    widgets = config.get("widgets") if isinstance(config.get("widgets"), list) else []
    category = config.get("category")

    return {
        "name": str(config.get("name") or f"{os.path.splitext(file_name)[0]} Dashboard"),
        "description": str(config.get("description") or ""),
        "category": category if category in DASHBOARD_CATEGORIES else "custom",
        "layout": str(config.get("layout") or "grid"),
        "metrics": _metrics(config.get("metrics")),
        "widgets": [
            _widget_to_chart(widget, index, real_rows)
            for index, widget in enumerate(widgets)
            if isinstance(widget, Mapping)
        ],
    }


def generate_dashboard(client, file_text: str, file_name: str) -> Dict[str, Any]:
    """
    Ask the model for a whole dashboard for an uploaded file.

    Args:
        client: A GeminiClient (anything with ``complete(prompt, ...)``)
        file_text: The file as CSV text
        file_name: Original file name

    Returns:
        ``{"dashboardConfig", "dataPreview", "totalRows"}``
    """
    rows = parse_csv_rows(file_text, coerce_numbers=True)
    if not rows:
        raise NoDataError("No data could be parsed from the file")

    sample_rows = rows[:SAMPLE_ROW_LIMIT]
    logger.info("Analyzing %s: %d rows, %d columns", file_name, len(rows), len(rows[0]))

    prompt = compose_dashboard_prompt(
        file_name, list(rows[0].keys()), sample_rows, len(rows)
    )
    text = client.complete(prompt, temperature=0.3, max_tokens=4096)

    config = extract_json_object(text)
    if config is None:
        logger.warning("Dashboard response for %s was not JSON, using fallback", file_name)
        config = fallback_dashboard(file_name, sample_rows, len(rows))

    return {
        "dashboardConfig": build_dashboard(config, file_name, rows),
        "dataPreview": sample_rows,
        "totalRows": len(rows),
    }
