"""FastAPI应用主模块。

本模块负责创建和配置FastAPI应用实例，包括中间件、路由和全局异常处理。
"""

from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import get_settings
from .exceptions import ProxyError
from .logger import configure_logging, get_logger
from .routes import router
from .services.toolify.core import ToolifyCore
from .services.toolify.markers import generate_markers
from .utils.error_handler import error_response

logger = get_logger(__name__)


def create_app(lifespan: Any = None) -> FastAPI:
    """创建并配置FastAPI应用实例。

    配置包括CORS中间件、代理路由和全局异常处理，并为本进程生成一组分隔符。

    :param lifespan: 可选的生命周期管理器（见 asgi.py）
    :return: 配置完成的FastAPI应用实例

    .. note::
       代理路由是匹配所有路径的兜底路由，根路径端点必须在它之前注册。
    """
    settings = get_settings()
    configure_logging(settings.log_level, use_colors=settings.verbose_logging, verbose=settings.verbose_logging)

    app = FastAPI(
        title="AnyToolCall Proxy",
        description="Transparent proxy adding tool calling to any OpenAI-compatible chat API",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.toolify = ToolifyCore(generate_markers())

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError) -> Response:
        """代理错误处理器：返回 OpenAI 风格的错误 JSON。"""
        logger.warning(
            "Proxy error: path={}, status_code={}, type={}, message={}",
            request.url.path,
            exc.status_code,
            exc.error_type,
            exc.message,
        )
        return error_response(exc)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """全局异常处理器。

        :param request: FastAPI请求对象
        :param exc: 捕获的异常
        :return: 包含错误信息的JSON响应
        """
        logger.error(
            "Unhandled exception: path={}, method={}, error={}",
            request.url.path,
            request.method,
            str(exc)
        )
        return JSONResponse(
            status_code=500,
            content={"error": {"message": str(exc), "type": "server_error", "code": 500}},
        )

    @app.get("/")
    async def root() -> dict:
        """根路径端点。

        :return: 包含欢迎信息和版本号的字典
        """
        return {"message": "Hello AnyToolCall", "version": __version__}

    app.include_router(router)

    logger.info(
        "Application created: log_level={}, verbose_logging={}, log_enabled={}",
        settings.log_level,
        settings.verbose_logging,
        settings.log_enabled,
    )

    return app

