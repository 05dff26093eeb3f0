"""Toolify 模块：为不支持函数调用的模型后端模拟 OpenAI 工具调用。

通过提示词注入（分隔符编码）和响应解析来模拟 OpenAI 的 tools API。

组合各组件的 :class:`~.core.ToolifyCore` 依赖 ``services.chat`` 中的转换器，
需从 ``.core`` 直接导入。
"""

from .markers import DELIMITER_SETS, SUFFIX_POOL, MarkerSet, generate_markers
from .parser import ToolCallParser, build_call_pattern
from .prompt import generate_tools_prompt, render_instructions, render_tool_choice
from .transformer import (
    DEMO_TOOL_DEF,
    DEMO_TOOL_NAME,
    RequestTransformer,
    has_tool_history,
    merge_adjacent_messages,
)

__all__ = [
    "DELIMITER_SETS",
    "SUFFIX_POOL",
    "MarkerSet",
    "generate_markers",
    "ToolCallParser",
    "build_call_pattern",
    "generate_tools_prompt",
    "render_instructions",
    "render_tool_choice",
    "DEMO_TOOL_DEF",
    "DEMO_TOOL_NAME",
    "RequestTransformer",
    "has_tool_history",
    "merge_adjacent_messages",
]
