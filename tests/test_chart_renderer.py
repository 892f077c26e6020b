import json

import pytest

from datachat.chart_normalizer import ChartSpec, normalize_chart_response
from datachat.chart_renderer import (
    field_types,
    infer_keys,
    infer_name_key,
    infer_value_key,
    percent_label,
    render_chart,
    render_png,
    runtime_type,
)

PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def make_spec(chart_type, rows, colors=None):
    return ChartSpec(chartType=chart_type, rows=rows, colorScheme=colors)


@pytest.mark.parametrize(
    "value, expected",
    [
        (1, "number"),
        (2.5, "number"),
        ("x", "string"),
        (True, "boolean"),
        (None, "null"),
        ({"a": 1}, "object"),
        ([1], "object"),
    ],
)
def test_runtime_type(value, expected):
    assert runtime_type(value) == expected


def test_key_inference_uses_first_numeric_and_first_string_key():
    row = {"id": 7, "region": "North", "label": "n", "sales": 12.5}
    fields = field_types(row)

    assert infer_value_key(fields) == "id"
    assert infer_name_key(fields) == "region"
    # Same record, same answer
    assert infer_keys([row]) == infer_keys([row]) == ("region", "id")


def test_key_inference_ignores_column_names():
    fields = [("value", "string"), ("name", "number")]
    assert infer_value_key(fields) == "name"
    assert infer_name_key(fields) == "value"


def test_booleans_are_not_numbers():
    assert infer_keys([{"flag": True, "city": "A", "n": 3}]) == ("city", "n")


def test_fallback_key_names():
    assert infer_keys([{"a": 1, "b": 2}]) == ("name", "a")
    assert infer_keys([{"a": "x"}]) == ("a", "value")
    assert infer_keys([]) == ("name", "value")


def test_bar_chart():
    rows = [{"city": "A", "sales": 10}, {"city": "B", "sales": 30}]
    chart = render_chart(make_spec("Bar", rows, ["#ff0000"]))

    assert chart.kind == "bar"
    assert chart.name_key == "city"
    assert chart.value_key == "sales"
    assert chart.grid is True
    assert chart.color == "#ff0000"
    assert chart.data == rows


def test_line_chart_is_monotone():
    rows = [{"month": "Jan", "users": 5}, {"month": "Feb", "users": 9}]
    chart = render_chart(make_spec("LINE", rows))

    assert chart.kind == "line"
    assert chart.interpolation == "monotone"
    assert (chart.name_key, chart.value_key) == ("month", "users")


def test_pie_scenario_from_fenced_response():
    raw = {
        "response": '```json\n{"chartType":"pie","dataStructure":{"example":'
        '[{"city":"A","sales":10},{"city":"B","sales":30}]}}\n```'
    }

    chart = render_chart(normalize_chart_response(raw))

    assert chart.kind == "pie"
    assert (chart.name_key, chart.value_key) == ("city", "sales")
    assert [piece.percent for piece in chart.slices] == [25, 75]
    assert [piece.label for piece in chart.slices] == ["A 25%", "B 75%"]


def test_pie_colors_cycle_through_scheme():
    colors = ["#111111", "#222222", "#333333"]
    rows = [{"name": f"s{i}", "v": i + 1} for i in range(7)]

    chart = render_chart(make_spec("pie", rows, colors))

    assert [piece.color for piece in chart.slices] == [colors[i % 3] for i in range(7)]


def test_pie_with_zero_total():
    chart = render_chart(make_spec("pie", [{"k": "a", "v": 0}, {"k": "b", "v": 0}]))
    assert [piece.percent for piece in chart.slices] == [0, 0]


def test_percent_rounds_half_up():
    assert percent_label(0.125) == 13
    assert percent_label(1 / 3) == 33
    assert percent_label(2 / 3) == 67


def test_all_numeric_rows_get_unlabeled_categories():
    rows = [{"x": 1, "y": 2}, {"x": 3, "y": 4}]
    chart = render_chart(make_spec("pie", rows))

    assert chart.name_key == "name"
    assert chart.value_key == "x"
    assert [piece.name for piece in chart.slices] == [None, None]
    assert chart.slices[0].label == "None 25%"


def test_empty_rows_give_placeholder():
    chart = render_chart(make_spec("bar", []))

    assert chart.kind == "placeholder"
    assert chart.message == "No data available"


def test_scatter_is_not_supported():
    chart = render_chart(make_spec("scatter", [{"x": "a", "y": 1}]))

    assert chart.kind == "placeholder"
    assert chart.message == 'Chart type "scatter" not supported'


def test_render_does_not_mutate_spec():
    rows = [{"city": "A", "sales": 10}]
    spec = make_spec("pie", rows)
    before = json.dumps(spec.to_payload())

    render_chart(spec)

    assert json.dumps(spec.to_payload()) == before


def test_payload_uses_camel_case_keys():
    payload = render_chart(make_spec("bar", [{"c": "a", "v": 1}])).to_payload()
    assert payload["nameKey"] == "c"
    assert payload["valueKey"] == "v"
    assert payload["chartType"] == "bar"


@pytest.mark.parametrize(
    "chart_type, rows",
    [
        ("bar", [{"c": "a", "v": 1}, {"c": "b", "v": 2}]),
        ("line", [{"c": "a", "v": 1}, {"c": "b", "v": 2}]),
        ("pie", [{"c": "a", "v": 1}, {"c": "b", "v": 2}]),
        ("pie", [{"c": "a", "v": 0}]),
        ("bar", [{"x": 1, "y": 2}]),
        ("scatter", [{"c": "a", "v": 1}]),
        ("bar", []),
    ],
)
def test_render_png(chart_type, rows):
    png = render_png(render_chart(make_spec(chart_type, rows)))
    assert png.startswith(PNG_MAGIC)


def test_oversized_integers_count_as_zero():
    spec = normalize_chart_response(
        {"chartType": "pie", "dataStructure": {"rows": [{"c": "a", "v": 10**400}, {"c": "b", "v": 5}]}}
    )

    chart = render_chart(spec)

    assert [piece.value for piece in chart.slices] == [0.0, 5.0]
    assert [piece.percent for piece in chart.slices] == [0, 100]
    assert render_png(chart).startswith(PNG_MAGIC)
    assert render_png(render_chart(make_spec("bar", spec.rows))).startswith(PNG_MAGIC)
