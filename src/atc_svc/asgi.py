"""ASGI应用入口模块。

本模块导出带生命周期管理的FastAPI应用实例，供ASGI服务器（如Granian、Uvicorn等）使用。

Example::

    # 使用Granian运行
    granian --interface asgi atc_svc.asgi:app --host 0.0.0.0 --port 3000

    # 使用Uvicorn运行
    uvicorn atc_svc.asgi:app --host 0.0.0.0 --port 3000
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from .app import create_app
from .config import get_settings
from .logger import get_logger
from .services.http_client import close_client, init_client

logger = get_logger(__name__)


async def initialize_services() -> None:
    """执行应用启动时的初始化：创建共享的上游客户端。"""
    settings = get_settings()
    logger.info("Initializing application services...")
    await init_client()
    logger.info(
        "Application services initialized successfully: env={}, host={}, port={}",
        settings.app_env,
        settings.host,
        settings.port
    )


async def shutdown_services() -> None:
    """执行应用关闭时的清理工作：关闭上游客户端的连接池。"""
    logger.info("Shutting down application services...")
    await close_client()
    logger.info("Application services shut down successfully")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """FastAPI应用生命周期管理器。

    :param app: FastAPI应用实例
    :yield: None
    """
    await initialize_services()

    yield

    await shutdown_services()


app = create_app(lifespan=lifespan)

__all__ = ["app"]
