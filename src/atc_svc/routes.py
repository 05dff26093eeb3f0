"""API路由模块。

本模块定义透明代理的唯一入口：请求路径即上游地址，例如::

    POST /https://api.openai.com/v1/chat/completions

聊天补全请求在转发前注入工具协议，响应在返回前还原工具调用；
其他请求原样转发。
"""

from typing import Any, Dict

import httpx
import orjson
from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from .config import get_settings
from .exceptions import InvalidRequestError, ProxyError, SecurityError, UpstreamConnectionError
from .logger import get_logger, json_str
from .services.chat.non_streaming import process_non_streaming_response
from .services.chat.streaming import StreamingToolTranscoder, process_streaming_response
from .services.http_client import get_http_client
from .services.toolify.core import ToolifyCore, get_toolify_core
from .tracing import RequestTracer
from .utils.error_handler import relay_upstream_error
from .utils.url_helper import extract_upstream, validate_upstream

logger = get_logger(__name__)
router = APIRouter()

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]
BODYLESS_METHODS = ("GET", "HEAD")
FORWARDED_HEADERS = ("authorization", "x-api-key", "anthropic-version")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def build_upstream_headers(request: Request) -> Dict[str, str]:
    """构建发往上游的请求头。

    只转发认证相关的少数几个头，``Content-Type`` 固定为 JSON。

    :param request: 客户端请求
    :return: 上游请求头
    """
    headers = {}
    for name in FORWARDED_HEADERS:
        value = request.headers.get(name)
        if value:
            headers[name] = value
    headers["Content-Type"] = "application/json"
    return headers


async def read_json_body(request: Request) -> Any:
    """读取并解析 JSON 请求体。

    :param request: 客户端请求
    :return: 解析后的请求体；GET/HEAD 或空请求体时为 None
    :raises InvalidRequestError: 请求体不是合法 JSON
    """
    if request.method in BODYLESS_METHODS:
        return None
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise InvalidRequestError(f"Invalid JSON body: {e}") from e


def build_streaming_response(
    upstream_response: httpx.Response,
    transcoder: StreamingToolTranscoder | None,
    tracer: RequestTracer,
    upstream_url: str,
) -> StreamingResponse:
    """构建转发上游 SSE 流的响应。

    上游连接由生成器的 ``finally`` 关闭；生成器从未开始迭代时（客户端在响应开始前断开），
    由后台任务兜底关闭。

    :param upstream_response: 以流模式打开且状态码成功的上游响应
    :param transcoder: 工具调用转换器；为 None 时按字节透传
    :param tracer: 请求追踪器
    :param upstream_url: 上游 URL（仅用于日志）
    :return: SSE 流式响应
    """
    return StreamingResponse(
        process_streaming_response(upstream_response, transcoder, tracer, upstream_url),
        status_code=upstream_response.status_code,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(upstream_response.aclose),
    )


def _has_tool_definitions(body: Any) -> bool:
    return isinstance(body, dict) and isinstance(body.get("tools"), list) and len(body["tools"]) > 0


@router.api_route("/{upstream_path:path}", methods=PROXY_METHODS, response_model=None)
async def proxy(
    request: Request,
    toolify: ToolifyCore = Depends(get_toolify_core),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> Response:
    """代理任意请求到路径中给出的上游地址。

    :param request: 客户端请求
    :param toolify: 工具协议组件
    :param client: 上游 HTTP 客户端
    :return: 流式响应、转换后的 JSON 响应或原样转发的上游响应
    :raises InvalidRequestError: 路径格式错误或请求体不是合法 JSON
    :raises SecurityError: 上游地址未通过校验
    :raises UpstreamConnectionError: 上游网络故障

    .. note::
       **转换规则:**

       - 仅对 URL 中包含 ``/chat/completions`` 的请求生效
       - 请求带有非空 ``tools`` 且 ``tool_choice`` 不为 ``"none"`` 时启用工具协议
       - 只有工具历史而没有启用工具时，历史被改写为纯文本
       - 流式响应仅在启用工具时转换，否则按字节透传
    """
    settings = get_settings()
    tracer = RequestTracer(enabled=settings.log_enabled, trace_dir=settings.log_dir)
    streaming = False

    try:
        upstream_url = extract_upstream(request.url.path, request.url.query)
        if upstream_url is None:
            raise InvalidRequestError("Invalid URL format. Use: /{upstream_url}")

        validation = validate_upstream(upstream_url)
        if not validation.ok:
            logger.warning("Upstream URL rejected: url={}, reason={}", upstream_url, validation.error)
            raise SecurityError(f"Access denied: {validation.error}")

        body = await read_json_body(request)
        tracer.log("CLIENT_REQUEST", {"method": request.method, "upstream": upstream_url, "body": body})

        is_chat = "/chat/completions" in upstream_url
        tools_present = is_chat and _has_tool_definitions(body)
        has_tools = tools_present and body.get("tool_choice") != "none"
        has_history = is_chat and toolify.has_tool_history(body)
        is_stream = isinstance(body, dict) and body.get("stream") is True

        logger.info(
            "Proxy request: method={}, url={}, stream={}, has_tools={}, has_history={}",
            request.method,
            upstream_url,
            is_stream,
            has_tools,
            has_history,
        )

        if tools_present or has_history:
            body = toolify.transform_request(body, has_tools)
            tracer.log("TRANSFORMED_REQUEST", body)
            if settings.verbose_logging:
                logger.debug("Transformed request body: {}", json_str(body, limit=2000))

        headers = build_upstream_headers(request)
        content = orjson.dumps(body) if body is not None else None
        tracer.log("UPSTREAM_REQUEST", {"url": upstream_url, "method": request.method})

        upstream_request = client.build_request(
            request.method, upstream_url, headers=headers, content=content
        )
        try:
            upstream_response = await client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            logger.error(
                "Upstream request failed: url={}, error_type={}, error={}",
                upstream_url,
                type(e).__name__,
                str(e),
            )
            raise UpstreamConnectionError(str(e) or "Upstream request failed") from e

        if not upstream_response.is_success:
            relayed = await relay_upstream_error(upstream_response, upstream_url)
            tracer.log(
                "UPSTREAM_ERROR",
                {"status": relayed.status_code, "body": relayed.body.decode("utf-8", errors="replace")},
            )
            return relayed

        if is_stream:
            transcoder = toolify.create_transcoder() if has_tools else None
            streaming = True
            return build_streaming_response(upstream_response, transcoder, tracer, upstream_url)

        finisher = toolify.finisher if has_tools else None
        return await process_non_streaming_response(upstream_response, finisher, tracer, upstream_url)

    except ProxyError as e:
        tracer.log("PROXY_ERROR", {"status": e.status_code, "message": e.message, "type": e.error_type})
        raise
    finally:
        if not streaming:
            tracer.save()
