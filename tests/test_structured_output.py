# tests/test_structured_output.py
# Unit tests for inject_output_schema and extract_structured_output.

from agent_library.models import OutputFormat
from agent_library.structured import extract_structured_output, inject_output_schema

SCHEMA = {
    "type": "object",
    "properties": {"summary": {"type": "string"}, "score": {"type": "number"}},
    "required": ["summary"],
}


# --- extract_structured_output tests ---


def test_extract_whole_content():
    """Content that is a bare JSON object parses directly."""
    assert extract_structured_output('{"summary": "ok", "score": 3}') == {"summary": "ok", "score": 3}


def test_extract_fenced_json_block():
    """A ```json fenced block inside prose is recovered."""
    content = 'Here is the result:\n```json\n{"a":1}\n```\nDone.'
    assert extract_structured_output(content) == {"a": 1}


def test_extract_unlabelled_fence():
    """A fence without a language tag works too."""
    content = "Result:\n```\n{\"summary\": \"fenced\"}\n```"
    assert extract_structured_output(content) == {"summary": "fenced"}


def test_extract_object_in_prose():
    """Without fences, the span from the first { to the last } is tried."""
    content = 'The analysis is complete. {"summary": "inline", "nested": {"x": 1}} Let me know.'
    assert extract_structured_output(content) == {"summary": "inline", "nested": {"x": 1}}


def test_extract_prose_only_returns_none():
    """Plain prose has no structured output."""
    assert extract_structured_output("I could not finish the analysis.") is None


def test_extract_empty_returns_none():
    """None and empty content give None."""
    assert extract_structured_output(None) is None
    assert extract_structured_output("") is None


def test_extract_array_is_not_an_object():
    """A JSON array is not accepted as structured output."""
    assert extract_structured_output("[1, 2, 3]") is None


def test_extract_invalid_braces_returns_none():
    """Braces that do not parse as JSON give None."""
    assert extract_structured_output("use {curly} braces like {this}") is None


# --- inject_output_schema tests ---


def test_inject_appends_schema():
    """The schema is appended as pretty-printed JSON after the prompt."""
    prompt = inject_output_schema("Review this PR.", OutputFormat(schema=SCHEMA))
    assert prompt.startswith("Review this PR.")
    assert "## REQUIRED OUTPUT FORMAT" in prompt
    assert '"required": [\n    "summary"\n  ]' in prompt
    assert "ONLY the JSON object" in prompt


def test_inject_without_format_is_identity():
    """No output format leaves the prompt untouched."""
    assert inject_output_schema("Review this PR.", None) == "Review this PR."


def test_inject_other_format_type_is_identity():
    """Only json_schema formats are injected."""
    assert inject_output_schema("p", OutputFormat(schema=SCHEMA, type="text")) == "p"
