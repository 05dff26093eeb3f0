"""错误处理工具模块。

提供统一的错误响应构建逻辑：代理自身的错误转换为 OpenAI 风格的错误 JSON，
上游的非成功响应则原样转发。
"""

import httpx
from fastapi import Response

from ..exceptions import ProxyError
from ..logger import get_logger
from ..models import ErrorDetail, ErrorResponse

logger = get_logger(__name__)


def error_response(exc: ProxyError) -> Response:
    """将代理异常转换为 JSON 错误响应。

    :param exc: 代理异常
    :return: 状态码与异常一致的 JSON 响应
    """
    body = ErrorResponse(
        error=ErrorDetail(message=exc.message, type=exc.error_type, code=exc.status_code)
    )
    return Response(
        status_code=exc.status_code,
        content=body.model_dump_json(),
        media_type="application/json",
    )


async def relay_upstream_error(response: httpx.Response, upstream_url: str) -> Response:
    """原样转发上游的非成功响应。

    代理不重新解释上游的错误语义：状态码和响应体保持不变，
    仅保留 ``Content-Type`` 头。

    :param response: 以流模式打开的上游响应，本函数负责读取并关闭
    :param upstream_url: 上游 URL（仅用于日志）
    :return: 转发给客户端的响应
    """
    try:
        error_content = await response.aread()
    finally:
        await response.aclose()

    logger.warning(
        "Upstream HTTP error: status_code={}, url={}, response_text={}",
        response.status_code,
        upstream_url,
        error_content[:200].decode("utf-8", errors="ignore"),
    )

    headers = {
        k: v
        for k, v in response.headers.items()
        if k.lower() == "content-type"
    }
    return Response(
        status_code=response.status_code,
        content=error_content,
        headers=headers,
    )
