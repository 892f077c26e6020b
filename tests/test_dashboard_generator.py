import json

import pytest

from datachat.chart_normalizer import DEFAULT_COLOR_SCHEME
from datachat.dashboard_generator import NoDataError, build_dashboard, generate_dashboard
from datachat.gemini_client import RateLimitError

CSV_TEXT = "region,revenue\n" + "\n".join(f"R{i},{i * 100}" for i in range(30))


class FakeClient:
    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    def complete(self, prompt, system=None, temperature=None, max_tokens=None):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.reply


def test_dashboard_from_fenced_reply_uses_real_rows():
    config = {
        "name": "Revenue Dashboard",
        "description": "Revenue by region",
        "category": "sales",
        "layout": "grid",
        "metrics": [{"title": "Total", "value": "43,500", "change": "+5%", "icon": "DollarSign"}],
        "widgets": [
            {
                "id": "w1",
                "type": "chart",
                "title": "Revenue by region",
                "chartType": "bar",
                "data": [{"name": "Item1", "value": 100}],
                "insights": ["R29 leads"],
                "colorScheme": ["#123456"],
            },
            {"id": "w2", "title": "Empty", "chartType": "pie", "data": []},
        ],
    }
    client = FakeClient("```json\n" + json.dumps(config) + "\n```")

    result = generate_dashboard(client, CSV_TEXT, "revenue.csv")

    dashboard = result["dashboardConfig"]
    assert dashboard["name"] == "Revenue Dashboard"
    assert dashboard["category"] == "sales"
    assert dashboard["metrics"][0]["icon"] == "DollarSign"
    assert result["totalRows"] == 30
    assert len(result["dataPreview"]) == 20

    first = dashboard["widgets"][0]["chartSpec"]
    assert first["chartType"] == "bar"
    assert first["rows"][0] == {"region": "R0", "revenue": 0}
    assert len(first["rows"]) == 20
    assert first["colorScheme"] == ["#123456"]
    assert first["title"] == "Revenue by region"

    second = dashboard["widgets"][1]["chartSpec"]
    assert second["rows"] == []
    assert second["colorScheme"] == DEFAULT_COLOR_SCHEME

    assert "File: revenue.csv" in client.prompts[0]
    assert "Total Rows: 30" in client.prompts[0]


def test_unparseable_reply_gives_fallback_dashboard():
    result = generate_dashboard(FakeClient("Sorry, I cannot help."), CSV_TEXT, "revenue.csv")

    dashboard = result["dashboardConfig"]
    assert dashboard["name"] == "revenue Dashboard"
    assert dashboard["category"] == "custom"
    assert dashboard["metrics"][0] == {
        "title": "Total Records",
        "value": "30",
        "change": "Data uploaded",
        "icon": "BarChart3",
    }
    widget = dashboard["widgets"][0]
    assert widget["id"] == "overview"
    assert widget["chartSpec"]["chartType"] == "bar"
    assert widget["chartSpec"]["insights"] == ["Analyzed 30 records from revenue.csv"]


def test_no_rows_raises():
    with pytest.raises(NoDataError):
        generate_dashboard(FakeClient("{}"), "only,header\n", "empty.csv")


def test_gateway_errors_propagate():
    with pytest.raises(RateLimitError):
        generate_dashboard(FakeClient(error=RateLimitError("slow down")), CSV_TEXT, "r.csv")


def test_build_dashboard_cleans_up_loose_config():
    dashboard = build_dashboard(
        {"category": "astrology", "widgets": ["junk", {"chartType": "line", "data": [1]}]},
        "data.csv",
        [{"d": "Mon", "n": 1}],
    )

    assert dashboard["name"] == "data Dashboard"
    assert dashboard["category"] == "custom"
    assert dashboard["metrics"] == []
    assert len(dashboard["widgets"]) == 1
    widget = dashboard["widgets"][0]
    assert widget["id"] == "widget2"
    assert widget["chartSpec"]["rows"] == [{"d": "Mon", "n": 1}]
