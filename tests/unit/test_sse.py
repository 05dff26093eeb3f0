"""SSE 事件解析与编码单元测试。"""

import pytest

from atc_svc.services.chat.sse import (
    SSEEventParser,
    encode_json,
    encode_raw,
    extract_data_lines,
    parse_frame,
)


@pytest.mark.unit
class TestSSEEventParser:
    """增量切分测试。"""

    def test_split_complete_events(self):
        """测试按空行切分事件，不完整的尾部保留。"""
        parser = SSEEventParser()

        events = parser.push_text('data: {"a":1}\n\ndata: {"b":2}\n\ndata: {"c"')

        assert events == ['data: {"a":1}', 'data: {"b":2}']
        assert parser.buffer == 'data: {"c"'

    def test_event_split_across_chunks(self):
        """测试跨块的事件在收齐后才输出。"""
        parser = SSEEventParser()

        assert parser.push_text("data: hel") == []
        assert parser.push_text("lo\n") == []
        assert parser.push_text("\n") == ["data: hello"]

    def test_crlf_normalized_across_chunks(self):
        """测试跨块的 CRLF 也能正确归并。"""
        parser = SSEEventParser()

        assert parser.push_text("data: x\r\n\r") == []
        assert parser.push_text("\n") == ["data: x"]

    def test_drain(self):
        """测试取出剩余内容。"""
        parser = SSEEventParser()
        parser.push_text("data: tail")

        assert parser.drain() == "data: tail"
        assert parser.drain() is None

    def test_drain_ignores_whitespace(self):
        """测试只剩空白时没有可取出的事件。"""
        parser = SSEEventParser()
        parser.push_text("data: x\n\n\n")

        assert parser.drain() is None


@pytest.mark.unit
class TestParseFrame:
    """单个事件解析测试。"""

    def test_json_payload(self):
        """测试 JSON 数据行。"""
        frame = parse_frame('data: {"a": 1}')

        assert frame.payload == {"a": 1}
        assert frame.is_done is False

    def test_done_sentinel(self):
        """测试结束哨兵。"""
        assert parse_frame("data: [DONE]").is_done is True

    def test_multiline_data(self):
        """测试多行 data 按换行拼接后解码。"""
        frame = parse_frame('data: {"a":\ndata: 1}')

        assert frame.payload == {"a": 1}

    def test_comment_and_event_lines(self):
        """测试注释行和其他字段被忽略。"""
        frame = parse_frame(': keep-alive\nevent: message\ndata: {"a":2}')

        assert frame.payload == {"a": 2}

    @pytest.mark.parametrize("raw", [": ping", "data: not json", "event: end"])
    def test_unparsable_frame(self, raw):
        """测试无法解析的事件保留原文。"""
        frame = parse_frame(raw)

        assert frame.payload is None
        assert frame.is_done is False
        assert frame.raw == raw

    def test_data_without_space(self):
        """测试冒号后没有空格的 data 行。"""
        assert extract_data_lines('data:{"a":1}') == ['{"a":1}']


@pytest.mark.unit
class TestEncoders:
    """编码测试。"""

    def test_encode_json(self):
        """测试 JSON 事件编码。"""
        assert encode_json({"a": "é"}) == 'data: {"a":"é"}\n\n'

    def test_encode_raw(self):
        """测试原文事件编码。"""
        assert encode_raw(": ping") == ": ping\n\n"
