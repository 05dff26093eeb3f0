"""全局测试配置和 fixtures。

本模块提供所有测试共享的 fixtures 和配置。
"""

import os

import pytest

# 在导入任何模块之前设置环境变量
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("VERBOSE_LOGGING", "false")
os.environ.setdefault("LOG_ENABLED", "false")

from atc_svc.config import AppConfig
from atc_svc.services.toolify.core import ToolifyCore
from atc_svc.services.toolify.markers import MarkerSet

from tests.fixtures.builders import ChatRequestBuilder


@pytest.fixture(scope="session")
def test_settings() -> AppConfig:
    """测试环境配置。"""
    return AppConfig()


@pytest.fixture
def markers() -> MarkerSet:
    """固定的一组分隔符，便于断言。"""
    return MarkerSet(
        call_start="༒龘ᐅ",
        call_end="ᐊ龘༒",
        name_start="࿇▸",
        name_end="◂࿇",
        args_start="࿇▹",
        args_end="◃࿇",
        result_start="༒靐⟫",
        result_end="⟪靐༒",
    )


@pytest.fixture
def toolify(markers: MarkerSet) -> ToolifyCore:
    """使用固定分隔符的 Toolify 核心。"""
    return ToolifyCore(markers)


@pytest.fixture
def weather_tool() -> dict:
    """示例工具定义。"""
    return {
        "type": "function",
        "function": {
            "name": "get_weather",
            "description": "Get the current weather for a city",
            "parameters": {
                "type": "object",
                "properties": {"city": {"type": "string"}},
                "required": ["city"],
            },
        },
    }


@pytest.fixture
def sample_tool_request(weather_tool: dict) -> dict:
    """带工具的聊天请求。"""
    return (
        ChatRequestBuilder()
        .with_message("system", "You are helpful.")
        .with_message("user", "Weather in Paris?")
        .with_tools([weather_tool])
        .build()
    )


@pytest.fixture
def sample_chat_completion_chunk() -> dict:
    """示例聊天补全响应块（流式）。"""
    return {
        "id": "chatcmpl-12345",
        "object": "chat.completion.chunk",
        "created": 1234567890,
        "model": "test-model",
        "choices": [
            {
                "index": 0,
                "delta": {"role": "assistant", "content": "你好"},
                "finish_reason": None,
            }
        ],
    }


@pytest.fixture(autouse=True)
def reset_lru_cache():
    """自动重置 LRU 缓存。

    确保每个测试都有干净的配置状态。
    """
    from atc_svc.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def anyio_backend():
    """指定 anyio 后端为 asyncio。"""
    return "asyncio"
