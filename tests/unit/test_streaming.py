"""流式响应处理单元测试。

覆盖增量工具调用转换器在任意切分位置下的行为，以及生成器对上游连接的管理。
"""

import httpx
import orjson
import pytest

from atc_svc.services.chat.sse import SSEEventParser, parse_frame
from atc_svc.services.chat.streaming import (
    BUFFERING,
    DONE,
    StreamingToolTranscoder,
    partial_marker_index,
    process_streaming_response,
    synthesize_event,
)
from atc_svc.services.toolify.markers import MarkerSet
from atc_svc.tracing import RequestTracer

from tests.fixtures.builders import ChunkBuilder
from tests.fixtures.mocks import MockStreamingResponse, split_bytes


def summarize(output: str) -> dict:
    """把转换器的输出还原为客户端看到的内容。"""
    frames = [parse_frame(raw) for raw in SSEEventParser().push_text(output)]
    content = ""
    reasoning = ""
    tool_calls = []
    done = False
    for frame in frames:
        if frame.is_done:
            done = True
            continue
        if not isinstance(frame.payload, dict):
            continue
        delta = frame.payload["choices"][0].get("delta") or {}
        content += delta.get("content") or ""
        reasoning += delta.get("reasoning_content") or ""
        tool_calls.extend(delta.get("tool_calls") or [])
    return {
        "content": content,
        "reasoning": reasoning,
        "calls": [(c["index"], c["function"]["name"], c["function"]["arguments"]) for c in tool_calls],
        "done": done,
    }


def run(transcoder: StreamingToolTranscoder, *parts: str, finish: bool = False) -> str:
    output = []
    for part in parts:
        output.extend(transcoder.feed(part))
    if finish:
        output.extend(transcoder.finish())
    return "".join(output)


def pieces(text: str, size: int) -> list[str]:
    return [text[i:i + size] for i in range(0, len(text), size)]


@pytest.fixture
def chunks() -> ChunkBuilder:
    return ChunkBuilder()


@pytest.fixture
def tool_stream(markers, chunks) -> str:
    """说明文字加一次工具调用，调用文本被切成多个事件。"""
    call = markers.format_call("get_weather", '{"city": "Paris"}')
    return chunks.stream(["I'll check", " the weather.\n", *pieces(call, 7)])


@pytest.mark.unit
class TestPartialMarkerIndex:
    """暂扣位置计算测试。"""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ("hello", 5),
            ("hello <", 6),
            ("hello <!", 6),
            ("hello <!<", 6),
            ("hello <!<!", 10),
            ("", 0),
        ],
    )
    def test_longest_proper_prefix(self, text, expected):
        """测试只暂扣最长的、是分隔符真前缀的后缀。"""
        assert partial_marker_index(text, "<!<!") == expected


@pytest.mark.unit
class TestSynthesizeEvent:
    """合成事件测试。"""

    def test_replaces_delta_and_clears_finish_reason(self, chunks):
        """测试保留元数据，替换 delta 并清空 finish_reason。"""
        template = chunks.envelope({"content": "x", "reasoning_content": "r"}, finish_reason="stop")

        event = synthesize_event(template, {"content": "tail"})

        assert event["id"] == template["id"]
        assert event["model"] == template["model"]
        assert event["choices"][0]["delta"] == {"content": "tail"}
        assert event["choices"][0]["finish_reason"] is None
        assert template["choices"][0]["delta"]["content"] == "x"

    def test_template_without_choices(self):
        """测试模板没有 choices 时补一个。"""
        event = synthesize_event({"id": "x"}, {"content": "tail"})

        assert event["choices"] == [{"index": 0, "delta": {"content": "tail"}, "finish_reason": None}]


@pytest.mark.unit
class TestStreamingToolTranscoder:
    """增量工具调用转换测试。"""

    def test_plain_text_passthrough(self, markers, chunks):
        """测试没有工具调用时内容逐字转发。"""
        stream = chunks.stream(["Hello", ", world", "!"])

        summary = summarize(run(StreamingToolTranscoder(markers), stream))

        assert summary == {"content": "Hello, world!", "reasoning": "", "calls": [], "done": True}

    def test_tool_call_extracted(self, markers, tool_stream):
        """测试工具调用被提取，分隔符不出现在输出中。"""
        transcoder = StreamingToolTranscoder(markers)

        output = run(transcoder, tool_stream)
        summary = summarize(output)

        assert summary["content"] == "I'll check the weather.\n"
        assert summary["calls"] == [(0, "get_weather", '{"city": "Paris"}')]
        assert summary["done"] is True
        assert transcoder.state == DONE
        for token in markers.as_dict().values():
            assert token not in output

    def test_tool_calls_event_precedes_done(self, markers, tool_stream):
        """测试合成的 tool_calls 事件紧挨在 [DONE] 之前。"""
        events = SSEEventParser().push_text(run(StreamingToolTranscoder(markers), tool_stream))

        assert events[-1] == "data: [DONE]"
        payload = orjson.loads(events[-2][len("data: "):])
        call = payload["choices"][0]["delta"]["tool_calls"][0]
        assert call["id"].startswith("call_")
        assert call["type"] == "function"
        assert payload["choices"][0]["finish_reason"] is None

    def test_every_split_point_is_equivalent(self, markers, tool_stream):
        """测试在任意位置切分上游数据，客户端看到的结果都相同。"""
        expected = summarize(run(StreamingToolTranscoder(markers), tool_stream))

        for i in range(len(tool_stream) + 1):
            transcoder = StreamingToolTranscoder(markers)
            summary = summarize(run(transcoder, tool_stream[:i], tool_stream[i:]))
            assert summary == expected, f"split at {i}"

    def test_character_at_a_time(self, markers, tool_stream):
        """测试逐字符输入。"""
        expected = summarize(run(StreamingToolTranscoder(markers), tool_stream))

        summary = summarize(run(StreamingToolTranscoder(markers), *tool_stream))

        assert summary == expected

    def test_content_split_at_every_position(self, markers, chunks):
        """测试调用文本在任意位置被切成两个事件时，结果都相同。"""
        text = "Checking now.\n" + markers.format_call("get_weather", '{"city": "Paris"}')

        for i in range(len(text) + 1):
            summary = summarize(run(StreamingToolTranscoder(markers), chunks.stream([text[:i], text[i:]])))
            assert summary["content"] == "Checking now.\n", f"split at {i}"
            assert summary["calls"] == [(0, "get_weather", '{"city": "Paris"}')]

    def test_streamed_result_matches_non_streaming_parse(self, markers, toolify):
        """测试流式结果与一次性解析完整文本的结果一致。"""
        text = "Sure.\n" + markers.format_call("a", '{"x": 1}') + "\n" + markers.format_call("b", "[]")
        stream = ChunkBuilder().stream(pieces(text, 5))

        summary = summarize(run(toolify.create_transcoder(), stream))
        parsed = toolify.parser.parse(text)

        assert summary["content"].strip() == parsed.content
        assert summary["calls"] == [(c.index, c.name, c.arguments) for c in parsed.tool_calls]

    def test_partial_marker_is_held_back(self, markers, chunks):
        """测试可能是半个分隔符的尾部被暂扣，确认之后再输出。"""
        transcoder = StreamingToolTranscoder(markers)
        half = markers.call_start[:2]

        first = run(transcoder, chunks.event(chunks.content("Hello " + half)))

        assert summarize(first)["content"] == "Hello "
        assert transcoder.pending_tail == half

        second = run(transcoder, chunks.event(chunks.content(" world")))

        assert summarize(second)["content"] == half + " world"
        assert transcoder.pending_tail == ""

    def test_pending_tail_flushed_at_done(self, markers, chunks):
        """测试流结束时暂扣的尾部作为普通内容输出。"""
        half = markers.call_start[:1]
        stream = chunks.stream(["abc " + half])

        summary = summarize(run(StreamingToolTranscoder(markers), stream))

        assert summary["content"] == "abc " + half
        assert summary["calls"] == []

    def test_reasoning_preserved_while_buffering(self, markers, chunks):
        """测试缓冲期间事件的其他字段照常转发。"""
        call = markers.format_call("get_weather", "{}")
        stream = (
            chunks.event(chunks.content("Hi " + call[:4]))
            + chunks.event(chunks.envelope({"reasoning_content": "thinking", "content": call[4:]}))
            + "data: [DONE]\n\n"
        )

        summary = summarize(run(StreamingToolTranscoder(markers), stream))

        assert summary["content"] == "Hi "
        assert summary["reasoning"] == "thinking"
        assert [name for _, name, _ in summary["calls"]] == ["get_weather"]

    def test_unparsable_frames_forwarded_raw(self, markers, chunks):
        """测试无法解析的事件原样转发。"""
        stream = ": keep-alive\n\ndata: not json\n\n" + chunks.stream(["ok"])

        output = run(StreamingToolTranscoder(markers), stream)

        assert output.startswith(": keep-alive\n\ndata: not json\n\n")
        assert summarize(output)["content"] == "ok"

    def test_frames_after_done_forwarded_raw(self, markers, chunks):
        """测试 [DONE] 之后的事件原样转发。"""
        stream = chunks.stream(["ok"]) + 'data: {"late": true}\n\n'

        output = run(StreamingToolTranscoder(markers), stream)

        assert output.endswith('data: [DONE]\n\ndata: {"late": true}\n\n')

    def test_invalid_arguments_not_leaked(self, markers, chunks):
        """测试参数不合法的调用被丢弃，其文本也不会泄露给客户端。"""
        stream = chunks.stream(["Text.\n" + markers.format_call("broken", "{nope")])

        output = run(StreamingToolTranscoder(markers), stream)
        summary = summarize(output)

        assert summary["calls"] == []
        assert summary["content"] == "Text.\n"
        assert markers.call_start not in output

    def test_residual_text_after_call(self, markers, chunks):
        """测试调用块之后的多余文本作为内容补发。"""
        stream = chunks.stream([markers.format_call("f", "{}") + "\ntrailing note"])

        summary = summarize(run(StreamingToolTranscoder(markers), stream))

        assert summary["content"] == "trailing note"
        assert len(summary["calls"]) == 1

    def test_abnormal_end_without_done(self, markers, tool_stream):
        """测试上游没有发送 [DONE] 时尽力输出，但不补发 [DONE]。"""
        stream = tool_stream.replace("data: [DONE]\n\n", "")
        transcoder = StreamingToolTranscoder(markers)

        summary = summarize(run(transcoder, stream, finish=True))

        assert summary["calls"] == [(0, "get_weather", '{"city": "Paris"}')]
        assert summary["done"] is False
        assert transcoder.state == DONE

    def test_unterminated_last_frame_processed_on_finish(self, markers, chunks):
        """测试流结束时缺少空行的最后一个事件仍会被处理。"""
        call = markers.format_call("f", '{"a": 1}')
        stream = chunks.event(chunks.content("x" + call[:3])) + chunks.event(chunks.content(call[3:])).rstrip("\n")

        summary = summarize(run(StreamingToolTranscoder(markers), stream, finish=True))

        assert summary["content"] == "x"
        assert summary["calls"] == [(0, "f", '{"a": 1}')]

    def test_finish_after_done_is_noop(self, markers, tool_stream):
        """测试已收到 [DONE] 后 finish 不再输出。"""
        transcoder = StreamingToolTranscoder(markers)
        run(transcoder, tool_stream)

        assert transcoder.finish() == []

    def test_self_overlapping_marker(self, chunks):
        """测试自身前后缀重叠的起始分隔符在任意切分下都能被识别。"""
        markers = MarkerSet(
            call_start="<!<!",
            call_end="!>!>",
            name_start="<n>",
            name_end="</n>",
            args_start="<a>",
            args_end="</a>",
            result_start="<r>",
            result_end="</r>",
        )
        text = "see <!<" + markers.format_call("f", "{}")

        for i in range(len(text) + 1):
            stream = chunks.stream([text[:i], text[i:]])
            summary = summarize(run(StreamingToolTranscoder(markers), stream))
            assert summary["content"] == "see <!<", f"split at {i}"
            assert [name for _, name, _ in summary["calls"]] == ["f"]


@pytest.mark.unit
class TestProcessStreamingResponse:
    """流式响应生成器测试。"""

    async def _collect(self, generator) -> bytes:
        return b"".join([chunk async for chunk in generator])

    @pytest.mark.asyncio
    async def test_byte_at_a_time(self, markers, tool_stream):
        """测试逐字节到达（切断多字节字符）时结果不变。"""
        expected = summarize(run(StreamingToolTranscoder(markers), tool_stream))
        response = MockStreamingResponse(split_bytes(tool_stream, 1))

        data = await self._collect(
            process_streaming_response(response, StreamingToolTranscoder(markers), RequestTracer())
        )

        assert summarize(data.decode("utf-8")) == expected
        assert response.closed is True

    @pytest.mark.asyncio
    async def test_raw_passthrough(self, tool_stream):
        """测试没有转换器时按字节透传。"""
        raw_chunks = split_bytes(tool_stream, 13)
        response = MockStreamingResponse(raw_chunks)

        data = await self._collect(process_streaming_response(response, None, RequestTracer()))

        assert data == tool_stream.encode("utf-8")
        assert response.closed is True

    @pytest.mark.asyncio
    async def test_upstream_read_error(self, markers, tool_stream):
        """测试上游读取中断时尽力输出已缓冲的调用，不补发 [DONE]。"""
        stream = tool_stream.replace("data: [DONE]\n\n", "")
        response = MockStreamingResponse(
            split_bytes(stream, 50), error=httpx.ReadError("connection reset")
        )

        data = await self._collect(
            process_streaming_response(response, StreamingToolTranscoder(markers), RequestTracer())
        )
        summary = summarize(data.decode("utf-8"))

        assert summary["calls"] == [(0, "get_weather", '{"city": "Paris"}')]
        assert summary["done"] is False
        assert response.closed is True

    @pytest.mark.asyncio
    async def test_client_disconnect_closes_upstream(self, markers, tool_stream):
        """测试客户端断开后关闭上游，缓冲内容被丢弃。"""
        response = MockStreamingResponse(split_bytes(tool_stream, 40))
        transcoder = StreamingToolTranscoder(markers)
        generator = process_streaming_response(response, transcoder, RequestTracer())

        received = []
        async for chunk in generator:
            received.append(chunk)
            if transcoder.state == BUFFERING:
                break
        await generator.aclose()

        assert response.closed is True
        assert transcoder.state == BUFFERING
        assert transcoder.tool_calls == []
        assert response.chunks_read < len(split_bytes(tool_stream, 40))

    @pytest.mark.asyncio
    async def test_trace_saved(self, markers, tool_stream, tmp_path):
        """测试启用追踪时流结束后写入追踪文件。"""
        tracer = RequestTracer(enabled=True, trace_dir=tmp_path)
        response = MockStreamingResponse([tool_stream.encode("utf-8")])

        await self._collect(process_streaming_response(response, StreamingToolTranscoder(markers), tracer))

        trace = orjson.loads((tmp_path / f"{tracer.request_id}.json").read_bytes())
        phases = [p["phase"] for p in trace["phases"]]
        assert phases == ["STREAM_TOOL_CALLS", "STREAM_END"]
        assert trace["phases"][-1]["content"]["completed"] is True
