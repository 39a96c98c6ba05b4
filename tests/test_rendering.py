"""Tests for final answer rendering."""

import json

from parley.agent.rendering import render_answer
from parley.agent.tools.base import ToolOutcome


def _outcome(payload=None, text=None, tool="lookup"):
    if text is None:
        text = json.dumps(payload)
    return ToolOutcome(tool=tool, text=text, payload=payload)


def test_no_tool_returns_trimmed_text():
    assert render_answer("  hello  ") == "hello"
    assert render_answer(None) == ""


def test_model_text_wins_over_tool_result():
    assert render_answer("It is sunny in Paris.", _outcome(text="sunny")) == "It is sunny in Paris."


def test_empty_model_text_falls_back_to_plain_result():
    assert render_answer("", _outcome(text="  sunny ")) == "sunny"


def test_echoed_payload_is_replaced():
    payload = {"city": "Paris", "temp": 21}

    answer = render_answer(json.dumps(payload, indent=4), _outcome(payload))

    assert answer == "- city: Paris\n- temp: 21"


def test_marker_echo_is_replaced():
    answer = render_answer("[tool-result:lookup]\nsunny", _outcome(text="sunny"))
    assert answer == "sunny"


def test_error_payload():
    payload = {"error": "boom", "tool": "fail"}
    assert render_answer("", _outcome(payload, tool="fail")) == "The tool 'fail' failed: boom"


def test_null_error_field_is_not_a_failure():
    payload = {"error": None, "url": "https://example.org/report"}
    assert render_answer("", _outcome(payload)) == "https://example.org/report"


def test_url_field_is_answer():
    payload = {"image_url": "https://example.org/cat.png", "width": 10}
    assert render_answer("", _outcome(payload)) == "https://example.org/cat.png"


def test_short_list_becomes_bullets():
    assert render_answer("", _outcome(["a", "b", 3])) == "- a\n- b\n- 3"


def test_nested_payload_is_pretty_json():
    payload = {"items": [{"id": 1}], "next": None}
    assert render_answer("", _outcome(payload)) == json.dumps(payload, indent=2)


def test_json_text_without_payload_is_parsed():
    outcome = ToolOutcome(tool="lookup", text='{"a": 1}')
    assert render_answer("", outcome) == "- a: 1"
