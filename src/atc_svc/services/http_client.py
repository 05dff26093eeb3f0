"""上游 HTTP 客户端模块。

整个进程共享一个 ``httpx.AsyncClient`` 以复用连接池。客户端在应用启动时创建，
关闭时释放；未经生命周期初始化（例如直接使用 ``app.app``）时按需创建。
"""

import httpx

from ..config import get_settings
from ..logger import get_logger

logger = get_logger(__name__)

_client: httpx.AsyncClient | None = None


def _build_client() -> httpx.AsyncClient:
    settings = get_settings()
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.timeout_upstream, connect=settings.timeout_connect),
        limits=httpx.Limits(max_keepalive_connections=settings.max_keepalive_connections),
        follow_redirects=False,
    )


async def init_client() -> httpx.AsyncClient:
    """创建共享客户端（已存在时直接返回）。"""
    global _client
    if _client is None or _client.is_closed:
        _client = _build_client()
        logger.info("Upstream HTTP client created")
    return _client


async def close_client() -> None:
    """关闭共享客户端。"""
    global _client
    if _client is not None:
        await _client.aclose()
        logger.info("Upstream HTTP client closed")
    _client = None


async def get_http_client() -> httpx.AsyncClient:
    """FastAPI 依赖：返回共享的上游客户端。

    测试中可通过 ``app.dependency_overrides`` 替换为挂载了
    ``httpx.MockTransport`` 的客户端。

    :return: 共享的 ``httpx.AsyncClient``
    """
    return await init_client()
