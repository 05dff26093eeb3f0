"""Toolify 文本协议解析器。

从模型输出的文本中提取由分隔符包裹的工具调用::

    CALL_START
    NAME_START<name>NAME_END
    ARGS_START<json>ARGS_END
    CALL_END

分隔符之间的空白会被忽略。参数不是合法 JSON 的调用会被静默丢弃，
但其所在区域仍从剩余文本中删除，保证分隔符永远不会泄露给客户端。
"""

import re
from typing import List

import orjson

from .markers import MarkerSet
from ...logger import get_logger
from ...models import ParseResult, ToolCall
from ...utils.uuid_helper import generate_tool_call_id

logger = get_logger(__name__)


def build_call_pattern(markers: MarkerSet) -> re.Pattern[str]:
    """根据分隔符构建工具调用的匹配正则。"""
    esc = re.escape
    return re.compile(
        f"{esc(markers.call_start)}\\s*"
        f"{esc(markers.name_start)}(.*?){esc(markers.name_end)}\\s*"
        f"{esc(markers.args_start)}(.*?){esc(markers.args_end)}\\s*"
        f"{esc(markers.call_end)}",
        re.DOTALL,
    )


def is_valid_json(text: str) -> bool:
    try:
        orjson.loads(text)
    except orjson.JSONDecodeError:
        return False
    return True


class ToolCallParser:
    """工具调用文本解析器。

    每个进程只需要一个实例，与 :class:`MarkerSet` 一起创建后只读共享。
    """

    def __init__(self, markers: MarkerSet):
        self.markers = markers
        self._pattern = build_call_pattern(markers)

    def parse(self, text: str | None) -> ParseResult:
        """解析文本中的全部工具调用。

        :param text: 模型输出的文本
        :return: 已接受的调用（按出现顺序编号）和删除全部调用区域后的剩余文本
        """
        if not text:
            return ParseResult(tool_calls=[], content=None)

        tool_calls: List[ToolCall] = []
        for match in self._pattern.finditer(text):
            name = match.group(1).strip()
            arguments = match.group(2).strip()

            if not is_valid_json(arguments):
                logger.warning(
                    "[TOOLIFY] Discarding tool call with invalid JSON arguments: name={}, arguments={}",
                    name,
                    arguments[:200],
                )
                continue

            tool_calls.append(
                ToolCall(
                    id=generate_tool_call_id(),
                    index=len(tool_calls),
                    name=name,
                    arguments=arguments,
                )
            )

        content = self._pattern.sub("", text).strip()

        if tool_calls:
            logger.debug("[TOOLIFY] Parsed {} tool call(s)", len(tool_calls))

        return ParseResult(tool_calls=tool_calls, content=content or None)
