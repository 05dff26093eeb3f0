"""日志配置模块。

本模块使用loguru进行结构化日志记录，提供统一的日志配置和获取接口，
支持开发和生产环境的不同配置。
"""

import sys
from typing import Any

import orjson
from loguru import logger


def configure_logging(log_level: str = "INFO", use_colors: bool = True, verbose: bool = False) -> None:
    """配置loguru日志系统。

    :param log_level: 日志级别，可选值：DEBUG, INFO, WARNING, ERROR, CRITICAL
    :param use_colors: 是否在控制台输出中使用颜色
    :param verbose: 是否启用详细日志模式（包含完整时间戳、行号、backtrace和diagnose）

    .. note::
       此函数应在应用启动时调用一次，配置全局日志行为。

       - 简洁模式（verbose=False，默认）：简短时间格式，不显示行号
       - 详细模式（verbose=True）：完整时间格式，显示行号，启用backtrace
    """
    logger.remove()

    level = log_level.upper()

    if verbose:
        if use_colors:
            logger.add(
                sys.stderr,
                format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <5}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
                level=level,
                colorize=True,
                backtrace=True,
                diagnose=True,
            )
        else:
            logger.add(
                sys.stderr,
                format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <5} | {name}:{function}:{line} - {message}",
                level=level,
                colorize=False,
                backtrace=True,
                diagnose=False,
            )
    else:
        if use_colors:
            logger.add(
                sys.stderr,
                format="<green>{time:HH:mm:ss}</green> | <level>{level: <5}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>",
                level=level,
                colorize=True,
                backtrace=False,
                diagnose=False,
            )
        else:
            logger.add(
                sys.stderr,
                format="{time:HH:mm:ss} | {level: <5} | {name}:{function} - {message}",
                level=level,
                colorize=False,
                backtrace=False,
                diagnose=False,
            )


def get_logger(name: str | None = None):
    """获取logger实例。

    :param name: logger名称，通常使用模块的__name__。loguru使用全局logger，此参数用于兼容性
    :return: 配置好的loguru logger实例

    Example::

        >>> from atc_svc.logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Proxy started on port {}", 3000)

    .. note::
       loguru使用{}占位符进行字符串格式化，而不是结构化的键值对。
    """
    return logger


def json_str(obj: Any, limit: int | None = None) -> str:
    """将对象渲染为紧凑 JSON 字符串，供日志输出使用。

    :param obj: 任意可序列化对象
    :param limit: 可选的最大长度，超出部分截断
    :return: JSON 字符串；无法序列化时退回 ``repr``
    """
    try:
        text = orjson.dumps(obj, default=str).decode("utf-8")
    except TypeError:
        text = repr(obj)
    if limit is not None and len(text) > limit:
        return text[:limit] + "..."
    return text
