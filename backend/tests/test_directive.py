"""
Unit tests for tool-call directive parsing and tool-result framing.
"""
import pytest

from encyclopedia_ai.services.ai.directive import (
    MalformedDirective,
    NoDirective,
    ToolDirective,
    format_directive,
    parse_tool_directive,
    strip_directives,
)
from encyclopedia_ai.services.ai.prompts import build_tool_result_message, extract_tool_result
from encyclopedia_ai.services.ai.schema import ToolCall


def test_plain_text_has_no_directive():
    outcome = parse_tool_directive("  Mitosis is cell division.  ")
    assert isinstance(outcome, NoDirective)
    assert outcome.text == "Mitosis is cell division."


def test_well_formed_directive():
    outcome = parse_tool_directive(
        'Let me check.\n<tool_call>\n{"tool": "search_articles", "params": {"query": "mitosis"}}\n</tool_call>'
    )
    assert isinstance(outcome, ToolDirective)
    assert outcome.call == ToolCall(tool="search_articles", params={"query": "mitosis"})


def test_first_directive_wins():
    text = (
        '<tool_call>{"tool": "get_categories", "params": {}}</tool_call>'
        '<tool_call>{"tool": "search_articles", "params": {"query": "x"}}</tool_call>'
    )
    outcome = parse_tool_directive(text)
    assert isinstance(outcome, ToolDirective)
    assert outcome.call.tool == "get_categories"


def test_missing_params_default_to_empty():
    outcome = parse_tool_directive('<tool_call>{"tool": "get_categories"}</tool_call>')
    assert isinstance(outcome, ToolDirective)
    assert outcome.call.params == {}


def test_non_object_params_are_coerced():
    outcome = parse_tool_directive('<tool_call>{"tool": "get_categories", "params": [1, 2]}</tool_call>')
    assert isinstance(outcome, ToolDirective)
    assert outcome.call.params == {}


@pytest.mark.parametrize(
    "payload",
    [
        "{not json}",
        '["search_articles"]',
        '{"params": {"query": "x"}}',
        '{"tool": 42}',
    ],
)
def test_malformed_payloads(payload):
    outcome = parse_tool_directive(f"Answer text. <tool_call>{payload}</tool_call>")
    assert isinstance(outcome, MalformedDirective)
    assert outcome.remainder == "Answer text."
    assert outcome.raw == payload
    assert outcome.error


def test_unclosed_tag_is_not_a_directive():
    outcome = parse_tool_directive('<tool_call>{"tool": "get_categories"}')
    assert isinstance(outcome, NoDirective)


def test_strip_directives_removes_every_block():
    text = "a <tool_call>{}</tool_call> b <tool_call>x</tool_call> c"
    assert strip_directives(text) == "a  b  c"


def test_format_directive_parses_back():
    call = ToolCall(tool="get_article_content", params={"slug": "célula"})
    outcome = parse_tool_directive(format_directive(call))
    assert isinstance(outcome, ToolDirective)
    assert outcome.call == call


def test_tool_result_survives_the_conversation():
    """A result injected as a user turn is recovered field for field."""
    result = {
        "count": 2,
        "articles": [
            {"slug": "mitosis", "title": "Mitosis", "summary": "Cell división", "views": 120},
            {"slug": "meiosis", "title": "Meiosis", "summary": None, "views": 80},
        ],
    }
    message = build_tool_result_message("search_articles", result)

    assert extract_tool_result(message) == ("search_articles", result)
    assert 'slug: "mitosis"' in message


def test_empty_search_result_hint():
    message = build_tool_result_message("search_articles", {"count": 0, "articles": []})
    assert "No results" in message


def test_extract_tool_result_rejects_other_text():
    assert extract_tool_result("just a user message") is None
    assert extract_tool_result('<tool_result tool="x">{oops</tool_result>') is None
