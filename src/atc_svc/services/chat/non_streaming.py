"""非流式聊天响应处理模块。

本模块负责处理完整接收的上游响应体：在启用工具时从助手消息的文本中
提取工具调用，并改写为 OpenAI 的结构化 ``tool_calls``。
"""

import copy
from typing import Any

import httpx
import orjson
from fastapi import Response

from ..toolify.markers import MarkerSet
from ..toolify.parser import ToolCallParser
from ...logger import get_logger, json_str
from ...tracing import RequestTracer

logger = get_logger(__name__)


class NonStreamFinisher:
    """非流式响应的工具调用提取器。

    :param markers: 分隔符
    :param parser: 可选的共享解析器
    """

    def __init__(self, markers: MarkerSet, parser: ToolCallParser | None = None):
        self.markers = markers
        self.parser = parser or ToolCallParser(markers)

    def finish(self, body: Any, has_tools: bool) -> Any:
        """改写完整的响应体。

        仅当 ``has_tools`` 且 ``choices[0].message.content`` 为非空文本时解析；
        找到工具调用后设置 ``message.tool_calls``，用剩余文本（或 None）替换
        ``message.content``，并将 ``finish_reason`` 设为 ``"tool_calls"``。
        其余情况原样返回。

        :param body: 上游响应体（解码后的 JSON）
        :param has_tools: 本轮是否启用工具
        :return: 改写后的响应体（输入不被修改）
        """
        if not has_tools or not isinstance(body, dict):
            return body

        choices = body.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return body

        message = choices[0].get("message")
        if not isinstance(message, dict):
            return body

        content = message.get("content")
        if not isinstance(content, str) or not content:
            return body

        result = self.parser.parse(content)
        if not result.tool_calls:
            return body

        finished = copy.deepcopy(body)
        choice = finished["choices"][0]
        choice["message"]["tool_calls"] = [tc.to_openai() for tc in result.tool_calls]
        choice["message"]["content"] = result.content
        choice["finish_reason"] = "tool_calls"

        logger.info(
            "[TOOLIFY] Non-streaming response carries {} tool call(s): {}",
            len(result.tool_calls),
            json_str([tc.name for tc in result.tool_calls]),
        )
        return finished


async def process_non_streaming_response(
    response: httpx.Response,
    finisher: NonStreamFinisher | None,
    tracer: RequestTracer,
    upstream_url: str = "",
) -> Response:
    """读取完整的上游响应并转换。

    :param response: 状态码成功的上游响应，本函数负责读取并关闭
    :param finisher: 工具调用提取器；为 None 时响应体原样转发
    :param tracer: 请求追踪器
    :param upstream_url: 上游 URL（仅用于日志）
    :return: 发送给客户端的响应

    .. note::
       响应体不是合法 JSON 时原样转发，不视为错误。
    """
    try:
        raw = await response.aread()
    finally:
        await response.aclose()

    media_type = response.headers.get("content-type", "application/json")

    if finisher is None:
        tracer.log("UPSTREAM_RESPONSE", {"status": response.status_code, "bytes": len(raw)})
        return Response(status_code=response.status_code, content=raw, media_type=media_type)

    try:
        body = orjson.loads(raw)
    except orjson.JSONDecodeError:
        logger.warning(
            "Upstream returned non-JSON body, relaying unchanged: url={}, body={}",
            upstream_url,
            raw[:200].decode("utf-8", errors="ignore"),
        )
        tracer.log("UPSTREAM_RESPONSE", {"status": response.status_code, "raw": raw.decode("utf-8", errors="replace")})
        return Response(status_code=response.status_code, content=raw, media_type=media_type)

    finished = finisher.finish(body, has_tools=True)
    tracer.log("UPSTREAM_RESPONSE", finished)

    return Response(
        status_code=response.status_code,
        content=orjson.dumps(finished),
        media_type="application/json",
    )
