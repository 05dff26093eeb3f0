"""UUID 生成工具模块（使用 fastuuid 优化性能）"""

import time

from fastuuid import uuid4


def generate_tool_call_id() -> str:
    """生成工具调用 ID（OpenAI 格式）"""
    return f"call_{uuid4().hex[:24]}"


def generate_request_id() -> str:
    """生成请求追踪 ID，形如 ``req_1700000000000_a1b2c3``"""
    return f"req_{int(time.time() * 1000)}_{uuid4().hex[:6]}"
