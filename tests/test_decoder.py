"""Tests for chatbridge.llm.stream.decoder.ResponseDecoder."""

from __future__ import annotations

import json

import pytest

from chatbridge.llm.stream.decoder import ChatTurnState, ResponseDecoder
from chatbridge.llm.types import CancellationToken, TextPart, ToolCallPart
from tests.mock_transport import (
    CancellingStream,
    PartCollector,
    chunked,
    finish_event,
    split_at,
    sse,
    text_event,
    tool_event,
    whole,
)

HELLO_STREAM = (
    b'data: {"choices":[{"delta":{"content":"Hel"}}]}\n'
    b'data: {"choices":[{"delta":{"content":"lo"}}]}\n'
    b"data: [DONE]\n"
)

LOOKUP_STREAM = sse(
    {"choices": [{"delta": {"tool_calls": [
        {"index": 0, "id": "call_1", "function": {"name": "lookup", "arguments": '{"q":'}}
    ]}}]},
    {"choices": [{"delta": {"tool_calls": [
        {"index": 0, "function": {"arguments": '"x"}'}}
    ]}, "finish_reason": "tool_calls"}]},
    "[DONE]",
)

MIXED_STREAM = sse(
    text_event("Looking "),
    text_event("that up. "),
    tool_event(0, call_id="c0", name="search", arguments='{"term": "py'),
    tool_event(1, call_id="c1", name="fetch", arguments='{"url": '),
    tool_event(0, arguments='thon", "limit": 3}'),
    tool_event(1, arguments='"https://example.com/ü"}'),
    finish_event(),
    "[DONE]",
)


async def _decode(stream, token: CancellationToken | None = None) -> PartCollector:
    sink = PartCollector()
    decoder = ResponseDecoder(ChatTurnState(), sink)
    await decoder.decode_stream(stream, token or CancellationToken())
    return sink


class TestTextStreaming:
    @pytest.mark.asyncio
    async def test_hello_example(self):
        sink = await _decode(whole(HELLO_STREAM))
        assert sink.parts == [TextPart("Hel"), TextPart("lo")]

    @pytest.mark.asyncio
    async def test_stream_without_done_is_tolerated(self):
        data = sse(text_event("a"), text_event("b"))
        sink = await _decode(whole(data))
        assert sink.texts == ["a", "b"]

    @pytest.mark.asyncio
    async def test_final_line_without_newline(self):
        data = b'data: {"choices":[{"delta":{"content":"end"}}]}'
        sink = await _decode(whole(data))
        assert sink.texts == ["end"]

    @pytest.mark.asyncio
    async def test_done_stops_processing(self):
        data = sse(text_event("kept"), "[DONE]", text_event("ignored"))
        sink = await _decode(whole(data))
        assert sink.texts == ["kept"]

    @pytest.mark.asyncio
    async def test_malformed_event_is_skipped(self):
        data = sse(text_event("one"), '{"choices": [BROKEN', text_event("two"), "[DONE]")
        sink = await _decode(whole(data))
        assert sink.texts == ["one", "two"]

    @pytest.mark.asyncio
    async def test_non_data_lines_are_ignored(self):
        data = b": ping\n\nevent: message\n" + HELLO_STREAM
        sink = await _decode(whole(data))
        assert sink.texts == ["Hel", "lo"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            '{"choices": ["oops"]}',
            '{"choices": [{"delta": "oops"}]}',
            '{"choices": [{"delta": {"tool_calls": [null]}}]}',
            '{"choices": [{"delta": {"tool_calls": [{"index": 0, "function": "oops"}]}}]}',
            '{"choices": [{"delta": {"tool_calls": {"index": 0}}}]}',
        ],
    )
    async def test_wrongly_shaped_event_is_skipped(self, payload):
        data = sse(text_event("a"), payload, text_event("b"), "[DONE]")
        sink = await _decode(whole(data))
        assert sink.texts == ["a", "b"]
        assert sink.tool_calls == []


class TestChunkBoundaryInvariance:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("size", [1, 2, 3, 7, 16, 64])
    async def test_fixed_chunk_sizes(self, size):
        expected = (await _decode(whole(MIXED_STREAM))).parts
        sink = await _decode(chunked(MIXED_STREAM, size))
        assert sink.parts == expected

    @pytest.mark.asyncio
    async def test_every_single_split_point(self):
        expected = (await _decode(whole(LOOKUP_STREAM))).parts
        for point in range(1, len(LOOKUP_STREAM)):
            sink = await _decode(split_at(LOOKUP_STREAM, [point]))
            assert sink.parts == expected, point

    @pytest.mark.asyncio
    async def test_multibyte_split(self):
        data = (
            'data: {"choices":[{"delta":{"content":"ünïcödé"}}]}\n'
            "data: [DONE]\n"
        ).encode("utf-8")
        sink = await _decode(chunked(data, 1))
        assert "".join(sink.texts) == "ünïcödé"


class TestStructuredToolCalls:
    @pytest.mark.asyncio
    async def test_lookup_example(self):
        sink = await _decode(whole(LOOKUP_STREAM))
        assert sink.parts == [
            ToolCallPart(call_id="call_1", name="lookup", arguments={"q": "x"})
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("n_pieces", [1, 2, 5, 13])
    async def test_arguments_split_into_n_events(self, n_pieces):
        args = json.dumps({"query": "weather in Oslo", "days": [1, 2, 3]})
        step = max(1, len(args) // n_pieces)
        pieces = [args[i : i + step] for i in range(0, len(args), step)]
        events = [tool_event(0, call_id="c", name="forecast", arguments=pieces[0])]
        events += [tool_event(0, arguments=p) for p in pieces[1:]]
        sink = await _decode(whole(sse(*events, finish_event(), "[DONE]")))
        (call,) = sink.tool_calls
        assert call.arguments == json.loads(args)

    @pytest.mark.asyncio
    async def test_interleaved_calls(self):
        sink = await _decode(whole(MIXED_STREAM))
        assert sink.texts == ["Looking ", "that up. "]
        assert [(c.name, c.arguments) for c in sink.tool_calls] == [
            ("search", {"term": "python", "limit": 3}),
            ("fetch", {"url": "https://example.com/ü"}),
        ]

    @pytest.mark.asyncio
    async def test_open_call_finalized_at_done(self):
        data = sse(tool_event(0, name="ping", arguments="{}"), "[DONE]")
        sink = await _decode(whole(data))
        assert [c.name for c in sink.tool_calls] == ["ping"]

    @pytest.mark.asyncio
    async def test_open_call_finalized_at_end_of_stream(self):
        data = sse(tool_event(0, name="ping", arguments="{}"))
        sink = await _decode(whole(data))
        assert [c.name for c in sink.tool_calls] == ["ping"]

    @pytest.mark.asyncio
    async def test_no_duplicate_after_finish(self):
        data = sse(
            tool_event(0, name="ping", arguments="{}", finish_reason="tool_calls"),
            tool_event(0, arguments="{}"),
            finish_event(),
            "[DONE]",
        )
        sink = await _decode(whole(data))
        assert len(sink.tool_calls) == 1

    @pytest.mark.asyncio
    async def test_bad_arguments_give_placeholder_and_stream_continues(self):
        data = sse(
            tool_event(0, call_id="bad", name="broken", arguments="{nope"),
            tool_event(1, call_id="good", name="ok", arguments='{"a": 1}'),
            finish_event(),
            text_event("after"),
            "[DONE]",
        )
        sink = await _decode(whole(data))
        bad, good = sink.tool_calls
        assert bad.call_id == "bad" and bad.error and bad.arguments == {}
        assert good.error is None and good.arguments == {"a": 1}
        assert sink.texts == ["after"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_index", ["null", '"1"', "true"])
    async def test_non_integer_index_is_skipped(self, bad_index):
        data = sse(
            '{"choices": [{"delta": {"tool_calls": [{"index": %s, "id": "x", '
            '"function": {"name": "stray", "arguments": "{}"}}]}}]}' % bad_index,
            tool_event(1, call_id="c1", name="ping", arguments="{}"),
            finish_event(),
            "[DONE]",
        )
        sink = await _decode(whole(data))
        assert [(c.call_id, c.name) for c in sink.tool_calls] == [("c1", "ping")]


class TestInlineTextToolCalls:
    SECTION = (
        "<|tool_calls_section_begin|><|tool_call_begin|>functions.lookup:0"
        '<|tool_call_argument_begin|>{"q": "x"}<|tool_call_end|><|tool_calls_section_end|>'
    )

    @pytest.mark.asyncio
    async def test_sectioned_call_split_over_events(self):
        pieces = [self.SECTION[i : i + 9] for i in range(0, len(self.SECTION), 9)]
        data = sse(*[text_event(p) for p in pieces], "[DONE]")
        sink = await _decode(whole(data))
        assert sink.parts == [
            ToolCallPart(call_id="functions.lookup:0", name="lookup", arguments={"q": "x"})
        ]

    @pytest.mark.asyncio
    async def test_tagged_call_with_prose(self):
        data = sse(
            text_event("Checking. "),
            text_event('<tool_call>{"name": "lookup", '),
            text_event('"arguments": {"q": "x"}}</tool_call>'),
            "[DONE]",
        )
        sink = await _decode(whole(data))
        assert sink.texts == ["Checking. "]
        (call,) = sink.tool_calls
        assert call.name == "lookup"
        assert call.arguments == {"q": "x"}
        assert call.call_id == "text_call_1"

    @pytest.mark.asyncio
    async def test_same_inline_call_emitted_once(self):
        call = '<tool_call>{"name": "lookup", "arguments": {"q": "x"}}</tool_call>'
        data = sse(text_event(call), text_event(call), "[DONE]")
        sink = await _decode(whole(data))
        assert len(sink.tool_calls) == 1

    @pytest.mark.asyncio
    async def test_same_id_emitted_once(self):
        first = '<tool_call>{"id": "t1", "name": "a", "arguments": {}}</tool_call>'
        second = '<tool_call>{"id": "t1", "name": "b", "arguments": {}}</tool_call>'
        data = sse(text_event(first), text_event(second), "[DONE]")
        sink = await _decode(whole(data))
        assert [c.name for c in sink.tool_calls] == ["a"]

    @pytest.mark.asyncio
    async def test_different_arguments_are_distinct(self):
        a = '<tool_call>{"name": "lookup", "arguments": {"q": "x"}}</tool_call>'
        b = '<tool_call>{"name": "lookup", "arguments": {"q": "y"}}</tool_call>'
        data = sse(text_event(a), text_event(b), "[DONE]")
        sink = await _decode(whole(data))
        assert [c.arguments for c in sink.tool_calls] == [{"q": "x"}, {"q": "y"}]

    @pytest.mark.asyncio
    async def test_inline_copy_of_structured_call_is_suppressed(self):
        data = sse(
            tool_event(0, call_id="c0", name="lookup", arguments='{"q": "x"}'),
            finish_event(),
            text_event('<tool_call>{"name": "lookup", "arguments": {"q": "x"}}</tool_call>'),
            "[DONE]",
        )
        sink = await _decode(whole(data))
        assert len(sink.tool_calls) == 1

    @pytest.mark.asyncio
    async def test_leading_whitespace_before_tool_call_is_dropped(self):
        data = sse(
            text_event("\n\n"),
            text_event('<tool_call>{"name": "f", "arguments": {}}</tool_call>'),
            "[DONE]",
        )
        sink = await _decode(whole(data))
        assert sink.texts == []
        assert len(sink.tool_calls) == 1

    @pytest.mark.asyncio
    async def test_leading_whitespace_before_prose_is_kept(self):
        data = sse(text_event("\n"), text_event("Hi"), "[DONE]")
        sink = await _decode(whole(data))
        assert sink.texts == ["\nHi"]

    @pytest.mark.asyncio
    async def test_whitespace_only_reply_is_emitted(self):
        sink = await _decode(whole(sse(text_event("\n"), "[DONE]")))
        assert sink.parts == [TextPart("\n")]

    @pytest.mark.asyncio
    async def test_whitespace_before_structured_call_is_dropped(self):
        data = sse(text_event("\n"), tool_event(0, name="ping", arguments="{}"), "[DONE]")
        sink = await _decode(whole(data))
        assert sink.texts == []
        assert [c.name for c in sink.tool_calls] == ["ping"]

    @pytest.mark.asyncio
    async def test_unterminated_valid_call_emitted_at_end(self):
        data = sse(text_event('<tool_call>{"name": "f", "arguments": {"a": 1}}'))
        sink = await _decode(whole(data))
        assert [(c.name, c.arguments) for c in sink.tool_calls] == [("f", {"a": 1})]

    @pytest.mark.asyncio
    async def test_unterminated_broken_call_dropped(self):
        data = sse(text_event("ok "), text_event('<tool_call>{"name": "f", "argu'), "[DONE]")
        sink = await _decode(whole(data))
        assert sink.texts == ["ok "]
        assert sink.tool_calls == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_before_first_read(self):
        token = CancellationToken()
        token.cancel()
        sink = await _decode(whole(HELLO_STREAM), token)
        assert sink.parts == []

    @pytest.mark.asyncio
    async def test_cancel_mid_stream(self):
        token = CancellationToken()
        stream = CancellingStream(
            [sse(text_event("one")), sse(text_event("two"), "[DONE]")], token
        )
        sink = await _decode(stream, token)
        assert sink.texts == ["one"]
        assert stream.served == 1

    @pytest.mark.asyncio
    async def test_cancel_leaves_partial_tool_call_unreported(self):
        token = CancellationToken()
        stream = CancellingStream(
            [
                sse(tool_event(0, name="slow", arguments='{"a":')),
                sse(tool_event(0, arguments="1}"), finish_event()),
            ],
            token,
        )
        sink = await _decode(stream, token)
        assert sink.parts == []


class TestNonStreaming:
    def _decode_json(self, document) -> PartCollector:
        sink = PartCollector()
        ResponseDecoder(ChatTurnState(), sink).decode_json(document)
        return sink

    def test_message_content(self):
        sink = self._decode_json({"choices": [{"message": {"content": "hi"}}]})
        assert sink.parts == [TextPart("hi")]

    def test_alternate_shape(self):
        sink = self._decode_json({"assistant": {"response": [{"content": "alt"}]}})
        assert sink.parts == [TextPart("alt")]

    def test_unknown_shape_is_pretty_printed(self):
        doc = {"result": {"text": "odd"}}
        sink = self._decode_json(doc)
        assert sink.parts == [TextPart(json.dumps(doc, indent=2))]

    def test_empty_content_is_still_one_part(self):
        sink = self._decode_json({"choices": [{"message": {"content": ""}}]})
        assert sink.parts == [TextPart("")]

    def test_structured_tool_calls(self):
        doc = {
            "choices": [
                {
                    "message": {
                        "content": None,
                        "tool_calls": [
                            {
                                "id": "c9",
                                "type": "function",
                                "function": {"name": "lookup", "arguments": '{"q": "x"}'},
                            }
                        ],
                    }
                }
            ]
        }
        sink = self._decode_json(doc)
        assert sink.parts == [
            ToolCallPart(call_id="c9", name="lookup", arguments={"q": "x"})
        ]


class TestTurnState:
    def test_fresh_state_is_empty(self):
        state = ChatTurnState()
        assert state.tool_call_buffers == {}
        assert state.completed_indices == set()
        assert state.has_emitted_text is False
        assert state.emitted_text_tool_keys == set()
        assert state.emitted_text_tool_ids == set()

    @pytest.mark.asyncio
    async def test_text_sets_has_emitted_text(self):
        state = ChatTurnState()
        decoder = ResponseDecoder(state, PartCollector())
        await decoder.decode_stream(whole(HELLO_STREAM), CancellationToken())
        assert state.has_emitted_text is True

    @pytest.mark.asyncio
    async def test_wire_names_mapped_to_declared_names(self):
        sink = PartCollector()
        state = ChatTurnState(tool_names={"fs_read": "fs.read"})
        data = sse(
            tool_event(0, call_id="c0", name="fs_read", arguments="{}"),
            finish_event(),
            text_event('<tool_call>{"name": "fs_read", "arguments": {"p": 1}}</tool_call>'),
            "[DONE]",
        )
        await ResponseDecoder(state, sink).decode_stream(whole(data), CancellationToken())
        assert [c.name for c in sink.tool_calls] == ["fs.read", "fs.read"]
