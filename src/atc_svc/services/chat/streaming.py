"""流式聊天响应处理模块。

本模块负责把上游的 SSE 流转发给客户端，并在启用工具时实时提取分隔符包裹的
工具调用：

- 文本中出现起始分隔符之前的内容照常转发
- 可能是半个起始分隔符的尾部会被暂扣，直到下一块数据确认
- 起始分隔符出现后的内容全部缓冲，流结束时统一解析，再以合成的
  ``delta.tool_calls`` 事件发送给客户端

除了被隐藏的分隔符文本和追加的合成事件之外，输出与上游事件流逐事件兼容。
"""

import codecs
import copy
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from .sse import (
    DONE_SENTINEL,
    SSEEventParser,
    encode_data,
    encode_json,
    encode_raw,
    parse_frame,
)
from ..toolify.markers import MarkerSet
from ..toolify.parser import ToolCallParser
from ...logger import get_logger, json_str
from ...models import ToolCall
from ...tracing import RequestTracer

logger = get_logger(__name__)

SCANNING = "scanning"
BUFFERING = "buffering"
DONE = "done"


def partial_marker_index(text: str, marker: str) -> int:
    """计算可以安全输出的前缀长度。

    如果 ``text`` 的某个后缀恰好是 ``marker`` 的真前缀，这段后缀可能是跨块的
    半个分隔符，必须暂扣。返回最长此类后缀的起始位置；没有则返回 ``len(text)``。

    :param text: 待检查文本
    :param marker: 起始分隔符
    :return: 安全切分位置
    """
    for i in range(len(marker) - 1, 0, -1):
        if text.endswith(marker[:i]):
            return len(text) - i
    return len(text)


def _first_choice(envelope: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    choices = envelope.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return None


def _delta_content(envelope: Dict[str, Any]) -> Any:
    choice = _first_choice(envelope)
    if choice is None or not isinstance(choice.get("delta"), dict):
        return None
    return choice["delta"].get("content")


def _with_content(envelope: Dict[str, Any], text: str) -> Dict[str, Any]:
    event = copy.deepcopy(envelope)
    choice = _first_choice(event)
    if not isinstance(choice.get("delta"), dict):
        choice["delta"] = {}
    choice["delta"]["content"] = text
    return event


def _without_content(envelope: Dict[str, Any]) -> Dict[str, Any]:
    event = copy.deepcopy(envelope)
    choice = _first_choice(event)
    if choice is not None and isinstance(choice.get("delta"), dict):
        choice["delta"].pop("content", None)
    return event


def synthesize_event(envelope: Dict[str, Any], delta: Dict[str, Any]) -> Dict[str, Any]:
    """以最近一次的上游事件为模板合成新事件。

    保留模板的元数据（id、model、created 等），只替换第一个 choice 的 ``delta``，
    并将 ``finish_reason`` 置为 null。模板没有 choices 时补一个。

    :param envelope: 模板事件
    :param delta: 新的 delta
    :return: 新事件（模板不被修改）
    """
    event = copy.deepcopy(envelope)
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        choices = event["choices"] = [{"index": 0}]
    if not isinstance(choices[0], dict):
        choices[0] = {"index": 0}
    choices[0]["delta"] = delta
    choices[0]["finish_reason"] = None
    return event


def build_tool_calls_event(envelope: Dict[str, Any], tool_calls: List[ToolCall]) -> Dict[str, Any]:
    """构造携带 ``delta.tool_calls`` 的合成事件。"""
    return synthesize_event(
        envelope, {"tool_calls": [tc.to_openai(with_index=True) for tc in tool_calls]}
    )


class StreamingToolTranscoder:
    """SSE 流的增量工具调用转换器。

    状态机：``scanning`` → ``buffering``（看到起始分隔符后）→ ``done``
    （收到 ``[DONE]`` 或流异常结束）。每个流式请求一个实例，不跨请求共享，
    也不允许并发调用。

    :param markers: 分隔符
    :param parser: 可选的共享解析器
    """

    def __init__(self, markers: MarkerSet, parser: ToolCallParser | None = None):
        self.markers = markers
        self.start_marker = markers.call_start
        self.parser = parser or ToolCallParser(markers)
        self.frames = SSEEventParser()
        self.state = SCANNING
        self.pending_tail = ""
        self.tool_buffer = ""
        self.last_envelope: Dict[str, Any] | None = None
        self.tool_calls: List[ToolCall] = []

    def feed(self, text: str) -> List[str]:
        """处理一块上游文本。

        :param text: 已解码的上游文本，可以在任意位置被切断
        :return: 需要发送给客户端的 SSE 文本，按顺序排列
        """
        if not text:
            return []
        output: List[str] = []
        for raw_event in self.frames.push_text(text):
            output.extend(self._process_frame(raw_event))
        return output

    def finish(self) -> List[str]:
        """上游在没有 ``[DONE]`` 的情况下结束时调用。

        处理缓冲区中残留的事件，然后与收到 ``[DONE]`` 时一样尽力输出暂存内容，
        但不会补发 ``[DONE]``。

        :return: 需要发送给客户端的 SSE 文本
        """
        if self.state == DONE:
            return []

        output: List[str] = []
        remaining = self.frames.drain()
        if remaining is not None:
            output.extend(self._process_frame(remaining))

        if self.state != DONE:
            logger.info("[TOOLIFY] Upstream stream ended without [DONE], flushing buffered content")
            output.extend(self._flush())
            self.state = DONE
        return output

    def _process_frame(self, raw_event: str) -> List[str]:
        if self.state == DONE:
            return [encode_raw(raw_event)]

        frame = parse_frame(raw_event)

        if frame.is_done:
            output = self._flush()
            output.append(encode_data(DONE_SENTINEL))
            self.state = DONE
            return output

        # 无法解析的事件原样转发
        if not isinstance(frame.payload, dict):
            return [encode_raw(raw_event)]

        envelope = frame.payload
        self.last_envelope = envelope

        content = _delta_content(envelope)
        if not isinstance(content, str) or not content:
            return [encode_raw(raw_event)]

        if self.state == BUFFERING:
            self.tool_buffer += content
            return [encode_json(_without_content(envelope))]

        combined = self.pending_tail + content
        idx = combined.find(self.start_marker)

        if idx != -1:
            self.tool_buffer = combined[idx:]
            self.pending_tail = ""
            self.state = BUFFERING
            logger.info("[TOOLIFY] Tool call start marker detected in stream")
            return [self._content_event(envelope, combined[:idx])]

        safe_end = partial_marker_index(combined, self.start_marker)
        self.pending_tail = combined[safe_end:]
        return [self._content_event(envelope, combined[:safe_end])]

    def _content_event(self, envelope: Dict[str, Any], text: str) -> str:
        if text:
            return encode_json(_with_content(envelope, text))
        return encode_json(_without_content(envelope))

    def _flush(self) -> List[str]:
        output: List[str] = []
        if self.last_envelope is None:
            return output

        if self.state == BUFFERING:
            result = self.parser.parse(self.tool_buffer)
            self.tool_buffer = ""
            self.tool_calls = result.tool_calls
            if result.content:
                output.append(encode_json(synthesize_event(self.last_envelope, {"content": result.content})))
            if result.tool_calls:
                output.append(encode_json(build_tool_calls_event(self.last_envelope, result.tool_calls)))
                logger.info(
                    "[TOOLIFY] Emitting {} tool call(s): {}",
                    len(result.tool_calls),
                    json_str([tc.name for tc in result.tool_calls]),
                )
        elif self.pending_tail:
            output.append(encode_json(synthesize_event(self.last_envelope, {"content": self.pending_tail})))
            self.pending_tail = ""

        return output


async def process_streaming_response(
    response: httpx.Response,
    transcoder: StreamingToolTranscoder | None,
    tracer: RequestTracer,
    upstream_url: str = "",
) -> AsyncGenerator[bytes, None]:
    """把上游流式响应转发给客户端。

    读取一块、转换、交给客户端，如此循环；每次 ``yield`` 都等待客户端接收，
    因此慢客户端会自然地对上游读取形成背压。

    :param response: 以流模式打开且状态码成功的上游响应，本函数负责关闭
    :param transcoder: 工具调用转换器；为 None 时按字节原样透传
    :param tracer: 请求追踪器
    :param upstream_url: 上游 URL（仅用于日志）
    :yields: 发送给客户端的字节

    .. note::
       客户端断开时生成器被取消，上游连接在 ``finally`` 中关闭，
       已缓冲的工具调用文本直接丢弃，不再尝试输出。
       上游读取失败或超时则与流提前结束一样做尽力输出。
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    chunk_count = 0
    completed = False

    try:
        try:
            async for chunk in response.aiter_bytes():
                chunk_count += 1
                if transcoder is None:
                    yield chunk
                    continue
                for event in transcoder.feed(decoder.decode(chunk)):
                    yield event.encode("utf-8")
        except httpx.HTTPError as e:
            logger.warning(
                "Upstream stream interrupted: url={}, error_type={}, error={}",
                upstream_url,
                type(e).__name__,
                str(e),
            )
            tracer.log("PROXY_ERROR", {"message": str(e), "type": type(e).__name__})

        if transcoder is not None:
            tail_events = transcoder.feed(decoder.decode(b"", final=True))
            tail_events.extend(transcoder.finish())
            for event in tail_events:
                yield event.encode("utf-8")
            if transcoder.tool_calls:
                tracer.log(
                    "STREAM_TOOL_CALLS",
                    [tc.to_openai() for tc in transcoder.tool_calls],
                )
        completed = True
    finally:
        await response.aclose()
        if not completed:
            logger.info(
                "Client disconnected, upstream stream aborted: url={}, chunks={}",
                upstream_url,
                chunk_count,
            )
        logger.info(
            "Streaming finished: url={}, chunks={}, completed={}",
            upstream_url,
            chunk_count,
            completed,
        )
        tracer.log("STREAM_END", {"chunks": chunk_count, "completed": completed})
        tracer.save()
