import json
from typing import Any, Dict, List, Optional

from datachat.file_ingestor import csv_headers, parse_csv_rows, prompt_text

SAMPLE_ROW_COUNT = 5

GENERAL_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Provide clear, concise, and accurate "
    "responses to user questions."
)

CHART_SYSTEM_PROMPT = """You are a data visualization expert. Based on the user's request, provide specific recommendations for creating charts.

Return your response as valid JSON with these exact fields:
{
  "chartType": "bar|line|pie|scatter",
  "dataStructure": {
    "columns": [{"name": "string", "type": "string|number"}],
    "rows": [{"key": "value"}]
  },
  "insights": ["insight 1", "insight 2"],
  "colorScheme": ["#8884d8", "#82ca9d", "#ffc658"],
  "config": {
    "title": "Chart Title",
    "xAxisLabel": "X Axis",
    "yAxisLabel": "Y Axis"
  }
}

Create sample data that matches the user's request with at least 4-5 data points."""

DASHBOARD_RESPONSE_SHAPE = """{
  "name": "Dashboard Name",
  "description": "Dashboard description",
  "category": "sales|marketing|operations|hr|finance|custom",
  "layout": "grid",
  "metrics": [
    {
      "title": "Metric Name",
      "value": "123,456",
      "change": "+12% from last month",
      "icon": "DollarSign|Users|TrendingUp|BarChart3"
    }
  ],
  "widgets": [
    {
      "id": "widget1",
      "type": "chart",
      "title": "Chart Title",
      "chartType": "bar|line|pie",
      "data": [{"name": "Item1", "value": 100}],
      "insights": ["Key insight about this chart"],
      "colorScheme": ["#8884d8", "#82ca9d", "#ffc658"]
    }
  ]
}"""


class EmptyPromptError(ValueError):
    """Raised when a question or prompt is blank"""


def system_prompt(request_type: str) -> str:
    return CHART_SYSTEM_PROMPT if request_type == "chart" else GENERAL_SYSTEM_PROMPT


def _require_text(question: Optional[str]) -> str:
    if not question or not question.strip():
        raise EmptyPromptError("Prompt cannot be empty")
    return question


def _file_context(file_text: Optional[str], file_name: Optional[str]) -> Optional[str]:
    """Headers plus the first few rows of the (truncated) file, or None"""
    text = prompt_text(file_text)
    headers = csv_headers(text)
    sample = parse_csv_rows(text, limit=SAMPLE_ROW_COUNT)
    if not headers or not sample:
        return None

    return (
        f"Context: I have uploaded a data file ({file_name or 'data file'}) "
        f"with the following structure:\n\n"
        f"Headers: {', '.join(headers)}\n"
        f"Sample data (first {SAMPLE_ROW_COUNT} rows):\n"
        f"{json.dumps(sample, indent=2)}"
    )


def compose_prompt(
    question: str, file_text: Optional[str] = None, file_name: Optional[str] = None
) -> str:
    """
    Build the prompt for a general question.

    Without usable file text the question is sent as-is; otherwise the file's
    headers and a short sample are put in front of it.
    """
    question = _require_text(question)
    context = _file_context(file_text, file_name)
    if context is None:
        return question

    return (
        f"{context}\n\n"
        f"User question: {question}\n\n"
        "Please answer the user's question based on this data context."
    )


def compose_chart_prompt(
    question: str, file_text: Optional[str] = None, file_name: Optional[str] = None
) -> str:
    question = _require_text(question)
    context = _file_context(file_text, file_name)
    if context is None:
        return question

    return (
        f"{context}\n\n"
        f"Chart request: {question}\n\n"
        "Recommend a chart for this request using the columns and values of "
        "the data above."
    )


def compose_dashboard_prompt(
    file_name: str,
    columns: List[str],
    sample_rows: List[Dict[str, Any]],
    total_rows: int,
) -> str:
    return f"""
Analyze this dataset and create a comprehensive dashboard configuration. Here's the data:

File: {file_name}
Columns: {', '.join(columns)}
Total Rows: {total_rows}
Sample Data: {json.dumps(sample_rows, indent=2)}

Create a dashboard configuration with:
1. An appropriate dashboard name and description
2. 3-6 relevant widgets with different chart types (bar, line, pie)
3. Key metrics cards
4. Insights about the data
5. Appropriate color schemes

Return ONLY a JSON object with this structure:
{DASHBOARD_RESPONSE_SHAPE}
"""
