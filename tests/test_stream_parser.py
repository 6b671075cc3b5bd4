# tests/test_stream_parser.py
# Unit tests for JsonLineParser, decode_line, decode_output and scan_for_object.

import json
import threading

from agent_library.stream import (
    EVENT_RESULT,
    EVENT_TEXT,
    EVENT_TOOL_USE,
    JsonLineParser,
    StreamEvent,
    decode_line,
    decode_output,
    scan_for_object,
)


def translate(obj: dict) -> list[StreamEvent]:
    """Minimal provider translation used by these tests."""
    if obj.get("type") == "text":
        return [StreamEvent(type=EVENT_TEXT, text=obj.get("content", ""))]
    if obj.get("type") == "tool_use":
        return [StreamEvent(type=EVENT_TOOL_USE, tool_name=obj.get("name", ""), path=obj.get("path", ""))]
    if obj.get("type") == "result":
        return [StreamEvent(type=EVENT_RESULT, result=obj.get("result"))]
    return []


def summarize(events: list[StreamEvent]) -> list[tuple]:
    return [(e.type, e.text, e.tool_name, e.path, e.result) for e in events]


def feed_chunks(chunks: list[str]) -> list[StreamEvent]:
    events: list[StreamEvent] = []
    parser = JsonLineParser(translate, events.append)
    for chunk in chunks:
        parser.feed(chunk)
    parser.close()
    return events


SAMPLE_OUTPUT = (
    '{"type":"text","content":"Looking at the code"}\n'
    "Loading cached credentials.\n"
    '{"type":"tool_use","name":"read_file","path":"src/app.py"}\n'
    '{"type":"tool_use","name":"read_file","path":"src/café.py"}\n'
    "\n"
    '{"type":"result","result":"All good"}\n'
)


# --- JsonLineParser tests ---


def test_parser_split_result_event():
    """A result event split mid-key across two chunks yields exactly one event."""
    events = feed_chunks(['{"type":"resu', 'lt","result":"ok"}\n'])
    assert len(events) == 1
    assert events[0].type == EVENT_RESULT
    assert events[0].result == "ok"


def test_parser_same_events_for_any_split_point():
    """Every two-chunk split of the stream produces the single-chunk events."""
    expected = summarize(feed_chunks([SAMPLE_OUTPUT]))
    assert len(expected) == 5
    for i in range(len(SAMPLE_OUTPUT) + 1):
        assert summarize(feed_chunks([SAMPLE_OUTPUT[:i], SAMPLE_OUTPUT[i:]])) == expected


def test_parser_same_events_for_single_character_chunks():
    """Feeding one character at a time changes nothing."""
    expected = summarize(feed_chunks([SAMPLE_OUTPUT]))
    assert summarize(feed_chunks(list(SAMPLE_OUTPUT))) == expected


def test_parser_preserves_order():
    """Events come out in the order their lines arrived."""
    events = feed_chunks([SAMPLE_OUTPUT])
    assert [e.type for e in events] == [EVENT_TEXT, EVENT_TEXT, EVENT_TOOL_USE, EVENT_TOOL_USE, EVENT_RESULT]
    assert events[1].text == "Loading cached credentials."


def test_parser_close_flushes_unterminated_line():
    """A final line without a newline is decoded on close()."""
    events: list[StreamEvent] = []
    parser = JsonLineParser(translate, events.append)
    parser.feed('{"type":"result","result":"tail"}')
    assert events == []
    parser.close()
    assert len(events) == 1
    assert events[0].result == "tail"


def test_parser_close_twice_is_harmless():
    """The buffer is emptied by close(), so a second close emits nothing."""
    events: list[StreamEvent] = []
    parser = JsonLineParser(translate, events.append)
    parser.feed('{"type":"result","result":"x"}')
    parser.close()
    parser.close()
    assert len(events) == 1


def test_parser_drops_chunks_after_close():
    """Output arriving after close() is dropped, not half-parsed."""
    events: list[StreamEvent] = []
    parser = JsonLineParser(translate, events.append)
    parser.feed('{"type":"result","result":"done"}\n')
    parser.close()
    parser.feed('{"type":"text","content":"late"}\n')
    parser.close()
    assert [event.result for event in events] == ["done"]


def test_parser_feed_and_close_from_two_threads():
    """A reader thread still feeding while close() runs never splits a line."""
    events: list[StreamEvent] = []
    parser = JsonLineParser(translate, events.append)
    line = '{"type":"text","content":"chunk"}\n'

    def reader():
        for _ in range(200):
            parser.feed(line[:10])
            parser.feed(line[10:])

    thread = threading.Thread(target=reader)
    thread.start()
    parser.close()
    thread.join()
    assert all(event.text == "chunk" for event in events)


# --- decode_line tests ---


def test_decode_line_plain_text_becomes_text_event():
    """Non-JSON lines that do not look like JSON are CLI text."""
    events = decode_line("Warning: using default model", translate)
    assert len(events) == 1
    assert events[0].type == EVENT_TEXT
    assert events[0].text == "Warning: using default model"


def test_decode_line_malformed_json_dropped():
    """A line that starts like JSON but does not parse is dropped."""
    assert decode_line('{"type": "result", "result": ', translate) == []
    assert decode_line("[1, 2", translate) == []


def test_decode_line_non_object_json_ignored():
    """JSON arrays and scalars carry no events."""
    assert decode_line("[1, 2, 3]", translate) == []
    assert decode_line("42", translate) == []


def test_decode_line_unknown_type_ignored():
    """Objects the provider does not recognize produce no events."""
    assert decode_line('{"type":"init","session_id":"abc"}', translate) == []


def test_decode_line_translate_error_dropped():
    """An exception from the translate function drops the line instead of raising."""
    def broken(obj):
        raise KeyError("content")

    assert decode_line('{"type":"text"}', broken) == []


# --- decode_output / scan_for_object tests ---


def test_decode_output_matches_parser():
    """decode_output is the one-chunk parser."""
    assert summarize(decode_output(SAMPLE_OUTPUT, translate)) == summarize(feed_chunks([SAMPLE_OUTPUT]))


def test_decode_output_empty():
    """Empty output decodes to no events."""
    assert decode_output("", translate) == []


def test_scan_for_object_finds_first_match():
    """The first JSON object line satisfying the predicate is returned."""
    output = "\n".join([
        "banner",
        json.dumps({"type": "text", "content": "hi"}),
        json.dumps({"type": "result", "usage": {"input_tokens": 1}}),
        json.dumps({"type": "result", "usage": {"input_tokens": 2}}),
    ])
    found = scan_for_object(output, lambda o: "usage" in o)
    assert found == {"type": "result", "usage": {"input_tokens": 1}}


def test_scan_for_object_no_match():
    """None when no line matches."""
    assert scan_for_object('text\n{"a": 1}\n{broken', lambda o: "b" in o) is None
