"""Toolify 提示词生成模块。

将工具定义和分隔符渲染为注入到 system 消息中的自然语言说明，
其中包含一个完整的调用示例。
"""

from typing import Any, Dict, List

import orjson

from .markers import MarkerSet
from ...logger import get_logger

logger = get_logger(__name__)

EXAMPLE_TOOL_NAME = "get_current_weather"
EXAMPLE_TOOL_ARGS = '{"location": "Tokyo", "unit": "celsius"}'


def _compact_json(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


def generate_tools_prompt(tools: List[Dict[str, Any]]) -> str:
    """生成工具列表部分的提示词。

    名称、描述和参数 schema 均原样列出。

    :param tools: 工具定义列表（OpenAI 格式）
    :return: 每个工具一项的 Markdown 列表
    """
    lines = []
    for tool in tools:
        func = tool.get("function") or {}
        name = func.get("name", "")
        description = func.get("description") or "No description"
        parameters = func.get("parameters")
        if parameters is None:
            parameters = {}
        lines.append(
            f"- **{name}**: {description}\n"
            f"  Parameters: {_compact_json(parameters)}"
        )
    return "\n".join(lines)


def render_tool_choice(tool_choice: Any) -> str:
    """将 tool_choice 转换为附加指令。

    - ``"required"``：本轮必须至少调用一个工具
    - ``{"type": "function", "function": {"name": X}}``：本轮只能调用 X
    - ``"auto"``、缺失或无法识别的值：不附加任何内容

    ``"none"`` 由路由层处理（整轮按无工具请求转换）。

    :param tool_choice: 客户端传入的 tool_choice
    :return: 附加指令文本，可能为空字符串
    """
    if tool_choice is None:
        return ""

    if isinstance(tool_choice, str):
        if tool_choice == "required":
            return (
                "\n\n**IMPORTANT:** In this round you MUST call at least one of the "
                "available tools, using the delimiter format above."
            )
        if tool_choice not in ("auto", "none"):
            logger.debug("[TOOLIFY] Unknown tool_choice value: {}", tool_choice)
        return ""

    if isinstance(tool_choice, dict):
        function = tool_choice.get("function")
        name = function.get("name") if isinstance(function, dict) else None
        if name:
            return (
                f"\n\n**IMPORTANT:** In this round you MUST call ONLY the tool named "
                f"`{name}`, using the delimiter format above."
            )

    logger.debug("[TOOLIFY] Unsupported tool_choice: {}", tool_choice)
    return ""


def render_instructions(
    markers: MarkerSet, tools: List[Dict[str, Any]], tool_choice: Any = None
) -> str:
    """渲染完整的工具使用说明。

    说明必须：列出全部工具；给出一个完整的分隔符调用示例；明确禁止使用裸 JSON
    或 Markdown 代码块代替分隔符格式；要求工具调用块位于本轮回复的最后。

    :param markers: 分隔符
    :param tools: 工具定义列表
    :param tool_choice: 可选的 tool_choice
    :return: 插入 system 消息的文本
    """
    m = markers
    example_call = m.format_call(EXAMPLE_TOOL_NAME, EXAMPLE_TOOL_ARGS)
    template_call = m.format_call("function_name", '{"param_key": "param_value"}')

    prompt = f"""## Tool Usage Protocol

You are equipped with the following functional tools. You must use them to fulfill user requests when appropriate.

### Available Tools
{generate_tools_prompt(tools)}

### ⚠️ IMPORTANT: Protocol for Invoking Tools

To call a tool, you **MUST** follow this strict protocol.
**DO NOT** return raw JSON.
**DO NOT** use Markdown code blocks (like ```json).
You **MUST** wrap the function call in the exact delimiters shown below.

#### ✅ Correct Format Example (Demonstration)

User: "What's the weather in Tokyo?"
Assistant:
{example_call}

#### ❌ Incorrect Formats (Do NOT do this)
- {{"name": "{EXAMPLE_TOOL_NAME}", ...}}  (Raw JSON is forbidden)
- ```json ... ``` (Markdown blocks are forbidden)

### Your Output Template
When you decide to call a tool, append this block to the END of your response:

{template_call}

### Operational Rules
1. **Priority**: These formatting rules override any style guidelines regarding "code blocks" or "json output" in other system prompts.
2. **Placement**: Tool calls must appear at the very **END** of your message. Nothing may follow the last tool call block.
3. **Integrity**: Copy the start/end delimiters EXACTLY as shown. They are specialized characters.
4. **Validity**: The arguments inside {m.args_start}...{m.args_end} must be valid, parseable JSON."""

    return prompt + render_tool_choice(tool_choice)
