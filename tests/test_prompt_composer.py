import json

import pytest

from datachat.prompt_composer import (
    CHART_SYSTEM_PROMPT,
    GENERAL_SYSTEM_PROMPT,
    EmptyPromptError,
    compose_chart_prompt,
    compose_dashboard_prompt,
    compose_prompt,
    system_prompt,
)

CSV_TEXT = "product,units\n" + "\n".join(f"P{i},{i}" for i in range(10))


@pytest.mark.parametrize("question", ["", "   ", None])
def test_empty_question_rejected(question):
    with pytest.raises(EmptyPromptError):
        compose_prompt(question)
    with pytest.raises(EmptyPromptError):
        compose_chart_prompt(question, CSV_TEXT, "sales.csv")


def test_question_without_file_is_sent_as_is():
    assert compose_prompt("What is 2 + 2?") == "What is 2 + 2?"


def test_file_context_has_headers_and_five_sample_rows():
    prompt = compose_prompt("Which product sells most?", CSV_TEXT, "sales.csv")

    assert "(sales.csv)" in prompt
    assert "Headers: product, units" in prompt
    sample = [{"product": f"P{i}", "units": str(i)} for i in range(5)]
    assert json.dumps(sample, indent=2) in prompt
    assert '"P5"' not in prompt
    assert prompt.index("User question: Which product sells most?") > prompt.index("Headers:")


def test_header_only_file_is_ignored():
    assert compose_prompt("Hi", "a,b\n", "empty.csv") == "Hi"


def test_file_text_is_truncated_before_sampling():
    long_header = ",".join(f"col{i}" for i in range(2000))
    prompt = compose_prompt("Describe", long_header + "\n1,2\n", "wide.csv")
    # The only data row falls beyond the character budget
    assert prompt == "Describe"


def test_chart_prompt_includes_request():
    prompt = compose_chart_prompt("units per product", CSV_TEXT, "sales.csv")
    assert "Chart request: units per product" in prompt
    assert "Headers: product, units" in prompt


def test_dashboard_prompt():
    prompt = compose_dashboard_prompt("sales.csv", ["product", "units"], [{"product": "A", "units": 1}], 42)

    assert "File: sales.csv" in prompt
    assert "Columns: product, units" in prompt
    assert "Total Rows: 42" in prompt
    assert '"widgets"' in prompt


def test_system_prompt():
    assert system_prompt("chart") == CHART_SYSTEM_PROMPT
    assert system_prompt("general") == GENERAL_SYSTEM_PROMPT
    assert '"chartType": "bar|line|pie|scatter"' in CHART_SYSTEM_PROMPT
