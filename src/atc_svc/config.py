"""应用配置模块。

本模块使用pydantic-settings进行环境变量管理，提供代理运行所需的所有配置参数。
支持多环境配置：
- 开发环境：读取 .env.development
- 生产环境：读取 .env.production
- 默认：读取 .env

环境通过 APP_ENV 环境变量指定，默认为 development。
"""

import os
from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_env_files() -> tuple[str, ...]:
    """根据APP_ENV环境变量获取要加载的.env文件列表。

    返回的文件列表按优先级从高到低排列。

    :return: .env文件路径元组
    """
    app_env = os.getenv("APP_ENV", "development")

    env_files_map = {
        "development": (".env.development", ".env"),
        "production": (".env.production", ".env"),
    }

    return env_files_map.get(app_env, (".env",))


class AppConfig(BaseSettings):
    """应用配置类。

    使用 Pydantic BaseSettings 从环境变量加载配置。
    支持从 ``.env`` 文件读取，优先级：环境变量 > .env 文件 > 默认值。

    :param app_env: 应用运行环境（development/production）
    :param host: 服务器监听地址
    :param port: 服务器监听端口（1-65535）
    :param workers: 工作进程数（≥1）
    :param log_level: 日志级别（DEBUG/INFO/WARNING/ERROR/CRITICAL）
    :param verbose_logging: 是否启用详细日志模式
    :param log_enabled: 是否将每个请求的追踪记录写入磁盘
    :param log_dir: 请求追踪文件目录
    :param timeout_connect: 上游连接超时（秒）
    :param timeout_upstream: 上游读写超时（秒）
    :param max_keepalive_connections: 上游连接池保活连接数

    .. code-block:: bash

       # .env 文件示例
       APP_ENV=production
       PORT=3000
       LOG_LEVEL=INFO
       LOG_ENABLED=true
       LOG_DIR=./logs

    .. seealso::
       :func:`get_settings` - 获取配置单例
    """

    model_config = SettingsConfigDict(
        env_file=_get_env_files(),
        env_file_encoding="utf-8",
        extra="allow",
        case_sensitive=False,
    )

    app_env: Literal["development", "production"] = Field(
        default="development",
        description="应用运行环境"
    )

    host: str = Field(
        default="0.0.0.0",
        description="服务器监听地址"
    )

    port: int = Field(
        default=3000,
        description="服务器监听端口",
        gt=0,
        lt=65536
    )

    workers: int = Field(
        default=1,
        description="工作进程数",
        ge=1
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="日志级别"
    )

    verbose_logging: bool = Field(
        default=False,
        description="是否启用详细日志模式"
    )

    # 请求追踪（默认关闭）
    log_enabled: bool = Field(
        default=False,
        description="是否写入请求追踪文件"
    )

    log_dir: str = Field(
        default="./logs",
        description="请求追踪文件目录"
    )

    # HTTP 超时配置（秒）
    timeout_connect: float = Field(
        default=10.0,
        gt=0,
        description="上游连接超时(秒)"
    )
    timeout_upstream: float = Field(
        default=300.0,
        gt=0,
        description="上游读写超时(秒)"
    )

    max_keepalive_connections: int = Field(
        default=20,
        ge=0,
        description="上游连接池保活连接数"
    )

    @field_validator("verbose_logging", mode="before")
    @classmethod
    def auto_enable_verbose_for_debug(cls, v: bool, info) -> bool:
        """如果日志级别为DEBUG，自动启用详细日志（除非明确设置为False）。"""
        if v is not None and isinstance(v, bool):
            return v
        if isinstance(v, str) and v.strip():
            return v.strip().lower() in ("1", "true", "yes", "on")
        log_level = info.data.get("log_level", "INFO")
        if log_level and log_level.upper() == "DEBUG":
            return True
        return False

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """允许小写的日志级别。"""
        if isinstance(v, str):
            return v.upper()
        return v


@lru_cache
def get_settings() -> AppConfig:
    """获取应用配置单例。

    使用lru_cache确保配置只被加载一次。

    :return: AppConfig实例

    Example::

        >>> settings = get_settings()
        >>> print(settings.host, settings.port)
    """
    return AppConfig()
