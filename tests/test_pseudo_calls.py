"""Tests for recovering tool calls written as plain text."""

import json

from parley.agent.pseudo_calls import extract_pseudo_call
from parley.providers.base import Raw, Structured


def test_whole_body_json_object():
    call = extract_pseudo_call('{"name": "getWeather", "arguments": {"city": "Paris"}}')

    assert call is not None
    assert call.name == "getWeather"
    assert call.arguments == Structured({"city": "Paris"})
    assert json.loads(call.arguments_raw) == {"city": "Paris"}
    assert call.id.startswith("pseudo_")


def test_openai_shaped_body_with_string_arguments():
    text = json.dumps({
        "tool_calls": [
            {"id": "x", "type": "function", "function": {"name": "lookup", "arguments": '{"q": 1}'}},
        ],
    })

    call = extract_pseudo_call(text)

    assert call.name == "lookup"
    assert call.arguments == Structured({"q": 1})
    assert call.arguments_raw == '{"q": 1}'


def test_tagged_call_inside_prose():
    text = 'Let me check.\n<tool_call>{"name": "lookup", "arguments": {"q": "tides"}}</tool_call>'

    call = extract_pseudo_call(text)

    assert call.name == "lookup"
    assert call.arguments.as_dict() == {"q": "tides"}


def test_fenced_call_with_alternate_argument_key():
    text = 'Calling now:\n```json\n{"tool": "lookup", "args": {"q": "x"}}\n```\n'

    call = extract_pseudo_call(text)

    assert call.name == "lookup"
    assert call.arguments.as_dict() == {"q": "x"}


def test_name_line_followed_by_arguments():
    text = 'lookup\n{"q": "moon phase"}'

    call = extract_pseudo_call(text, ["lookup"])

    assert call.name == "lookup"
    assert call.arguments == Structured({"q": "moon phase"})


def test_name_line_for_unknown_tool_is_ignored():
    assert extract_pseudo_call('remove_everything\n{"path": "/"}', ["lookup"]) is None


def test_first_of_several_calls_wins():
    text = (
        '<tool_call>{"name": "first", "arguments": {}}</tool_call>\n'
        '<tool_call>{"name": "second", "arguments": {}}</tool_call>'
    )
    assert extract_pseudo_call(text).name == "first"


def test_text_with_tool_result_marker_is_never_a_call():
    text = '[tool-result:lookup]\n{"name": "lookup", "arguments": {"q": "x"}}'
    assert extract_pseudo_call(text) is None


def test_plain_prose_yields_nothing():
    assert extract_pseudo_call("The weather in Paris is sunny.") is None
    assert extract_pseudo_call("") is None
    assert extract_pseudo_call(None) is None


def test_object_without_arguments_is_not_a_call():
    assert extract_pseudo_call('{"name": "Bob", "age": 3}') is None
    assert extract_pseudo_call('{"name": "Bob"}', ["lookup"]) is None


def test_known_tool_without_arguments_gets_empty_object():
    call = extract_pseudo_call('{"name": "lookup"}', ["lookup"])

    assert call.name == "lookup"
    assert call.arguments == Structured({})


def test_non_object_arguments_are_kept_raw():
    call = extract_pseudo_call('{"name": "lookup", "arguments": "just text"}')

    assert isinstance(call.arguments, Raw)
    assert call.arguments.text == "just text"
    assert call.arguments_raw == "just text"
