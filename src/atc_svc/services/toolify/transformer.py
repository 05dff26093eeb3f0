"""Toolify 请求转换模块。

将带有结构化工具字段（tools / tool_calls / tool 角色消息）的聊天请求转换为
只包含纯文本消息的请求：工具定义通过 system 提示词注入，历史调用和调用结果
用分隔符编码进消息文本。
"""

import copy
from typing import Any, Dict, List

import orjson

from .markers import MarkerSet
from .prompt import render_instructions
from ...logger import get_logger

logger = get_logger(__name__)

# 转换后必须从请求中删除的结构化字段
STRUCTURED_TOOL_FIELDS = ("tools", "tool_choice", "functions", "function_call", "parallel_tool_calls")

# 虚构的示例工具：只出现在提示词里，用于一次性演示，从不声称是真实能力
DEMO_TOOL_NAME = "hyper_dimensional_resonance_calibrator"

DEMO_TOOL_DEF: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": DEMO_TOOL_NAME,
        "description": (
            "Calibrates cross-dimensional subspace resonance frequencies to stabilize the "
            "quantum flux of Einstein-Rosen bridges. Use only when dimensional rift "
            "fluctuation values exceed 5.0."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "dimension_id": {"type": "string", "description": "Target dimension coordinates, e.g. 'C-137'"},
                "flux_threshold": {"type": "number", "description": "Maximum allowable flux fluctuation threshold"},
                "stabilization_mode": {"type": "string", "enum": ["static", "dynamic", "hybrid"], "default": "static"},
            },
            "required": ["dimension_id", "flux_threshold"],
        },
    },
}

DEMO_CALL_ARGS = {"dimension_id": "C-137", "flux_threshold": 5.0, "stabilization_mode": "static"}

DEMO_CALL_NARRATIVE = (
    "Detected abnormal dimensional rift fluctuation (current value 5.2), "
    "immediate calibration of C-137 quadrant stability required."
)

DEMO_RESULT = {
    "status": "calibrated",
    "new_flux_index": 0.42,
    "entropy_delta": "-3.14e-9",
    "message": "Resonance stabilized.",
}


def _dumps(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


def _text_of(content: Any) -> str:
    """将消息内容转换为纯文本。缺失视为空字符串，多模态数组取其中的文本部分。"""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return _dumps(content)


def _has_tool_calls(message: Any) -> bool:
    return (
        isinstance(message, dict)
        and message.get("role") == "assistant"
        and isinstance(message.get("tool_calls"), list)
        and len(message["tool_calls"]) > 0
    )


def get_messages(request: Dict[str, Any]) -> List[Any]:
    """返回请求中的消息列表；缺失或不是数组时返回空列表。"""
    messages = request.get("messages") if isinstance(request, dict) else None
    return messages if isinstance(messages, list) else []


def has_tool_history(request: Dict[str, Any]) -> bool:
    """判断对话中是否已经存在工具调用或工具结果。

    :param request: 聊天请求
    :return: 存在 tool 角色消息或带 tool_calls 的 assistant 消息时为 True
    """
    return any(
        _has_tool_calls(m) or (isinstance(m, dict) and m.get("role") == "tool")
        for m in get_messages(request)
    )


def _as_parts(content: Any) -> List[Any]:
    if isinstance(content, list):
        return list(content)
    return [{"type": "text", "text": content}] if content else []


def _merge_content(first: Any, second: Any) -> Any:
    # 多模态数组按内容块合并
    if isinstance(first, list) or isinstance(second, list):
        return [*_as_parts(first), {"type": "text", "text": "\n\n"}, *_as_parts(second)]
    return f"{first or ''}\n\n{second or ''}"


def merge_adjacent_messages(messages: List[Any]) -> List[Any]:
    """合并相邻的同角色消息。

    很多后端拒绝连续的同角色消息，合并时内容以空行分隔，顺序保持不变。

    :param messages: 消息列表
    :return: 合并后的新列表（输入不被修改）

    Example::

        >>> merge_adjacent_messages([
        ...     {"role": "user", "content": "a"},
        ...     {"role": "user", "content": "b"},
        ...     {"role": "assistant", "content": "c"},
        ... ])
        [{'role': 'user', 'content': 'a\\n\\nb'}, {'role': 'assistant', 'content': 'c'}]
    """
    merged: List[Any] = []
    for message in messages:
        previous = merged[-1] if merged else None
        if (
            isinstance(message, dict)
            and isinstance(previous, dict)
            and message.get("role") == previous.get("role")
        ):
            previous["content"] = _merge_content(previous.get("content"), message.get("content"))
            continue
        merged.append(dict(message) if isinstance(message, dict) else message)
    return merged


class RequestTransformer:
    """把结构化工具请求折叠为纯文本请求。

    :param markers: 本进程的分隔符
    """

    def __init__(self, markers: MarkerSet):
        self.markers = markers

    def should_inject_demo(self, request: Dict[str, Any], has_tools: bool) -> bool:
        """是否需要注入一次性演示。

        条件：本轮有工具；对话中还没有任何工具调用或结果；最后一条消息来自用户。
        """
        messages = get_messages(request)
        if not has_tools or not messages:
            return False
        last = messages[-1]
        return (
            not has_tool_history(request)
            and isinstance(last, dict)
            and last.get("role") == "user"
        )

    def _assistant_tool_calls(self, message: Dict[str, Any], has_tools: bool) -> Dict[str, Any]:
        content = _text_of(message.get("content"))
        tool_calls = message["tool_calls"]

        if has_tools:
            for tool_call in tool_calls:
                function = tool_call.get("function") or {}
                arguments = function.get("arguments", "{}")
                if not isinstance(arguments, str):
                    arguments = _dumps(arguments)
                content += "\n" + self.markers.format_call(function.get("name", ""), arguments)
        else:
            names = ", ".join(
                (tc.get("function") or {}).get("name")
                for tc in tool_calls
                if (tc.get("function") or {}).get("name")
            )
            content += f"\n\n[Called tools: {names}]"

        return {"role": "assistant", "content": content}

    def _tool_result(self, message: Dict[str, Any], has_tools: bool) -> Dict[str, Any]:
        label = message.get("name") or message.get("tool_call_id") or "unknown"
        content = message.get("content")
        if content is None:
            result = ""
        elif isinstance(content, str):
            result = content
        else:
            result = _dumps(content)

        if has_tools:
            return {"role": "user", "content": self.markers.format_result(label, result)}
        return {"role": "user", "content": f"[Tool result: {label}]\n{result}"}

    def demo_messages(self) -> List[Dict[str, Any]]:
        """构造虚构的 assistant 调用与 user 结果两条消息。"""
        call = self.markers.format_call(DEMO_TOOL_NAME, _dumps(DEMO_CALL_ARGS))
        return [
            {"role": "assistant", "content": f"{DEMO_CALL_NARRATIVE}\n{call}"},
            {"role": "user", "content": self.markers.format_result(DEMO_TOOL_NAME, _dumps(DEMO_RESULT))},
        ]

    def transform(self, request: Dict[str, Any], has_tools: bool) -> Dict[str, Any]:
        """转换聊天请求。

        :param request: 原始请求（不会被修改）
        :param has_tools: 本轮是否启用工具。为 False 时只清理历史中的结构化工具字段
        :return: 不含任何结构化工具字段的新请求
        """
        raw_messages = get_messages(request)
        inject_demo = self.should_inject_demo(request, has_tools)

        active_tools = request.get("tools") if isinstance(request.get("tools"), list) else []
        if inject_demo:
            active_tools = [*active_tools, DEMO_TOOL_DEF]

        instructions = ""
        if has_tools and active_tools:
            instructions = render_instructions(self.markers, active_tools, request.get("tool_choice"))

        out_messages: List[Any] = []
        has_system = False

        for message in raw_messages:
            if not isinstance(message, dict):
                out_messages.append(message)
                continue

            role = message.get("role")

            if role == "system":
                system = dict(message)
                system["content"] = _text_of(message.get("content")) + (
                    f"\n\n{instructions}" if instructions else ""
                )
                out_messages.append(system)
                has_system = True
            elif _has_tool_calls(message):
                out_messages.append(self._assistant_tool_calls(message, has_tools))
            elif role == "tool":
                out_messages.append(self._tool_result(message, has_tools))
            else:
                passthrough = copy.deepcopy(message)
                if "tool_calls" in passthrough and not passthrough["tool_calls"]:
                    del passthrough["tool_calls"]
                out_messages.append(passthrough)

        if not has_system and instructions:
            out_messages.insert(0, {"role": "system", "content": instructions})

        # 演示必须紧挨在最后一条真实用户消息之前
        if inject_demo and out_messages:
            last = out_messages[-1]
            if isinstance(last, dict) and last.get("role") == "user":
                out_messages[-1:-1] = self.demo_messages()
                logger.debug("[TOOLIFY] One-shot demonstration injected")

        new_request = {k: v for k, v in request.items() if k not in STRUCTURED_TOOL_FIELDS}
        new_request["messages"] = merge_adjacent_messages(out_messages)

        logger.info(
            "[TOOLIFY] Request transformed: has_tools={}, tools={}, messages={}->{}, one_shot={}",
            has_tools,
            len(active_tools),
            len(raw_messages),
            len(new_request["messages"]),
            inject_demo,
        )
        return new_request
