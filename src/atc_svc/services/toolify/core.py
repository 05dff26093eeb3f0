"""Toolify 核心功能模块。

:class:`ToolifyCore` 持有本进程唯一的一组分隔符，并用它构造请求转换器、
文本解析器、非流式提取器，以及每个流式请求各自的转换器。
"""

from typing import Any, Dict

from fastapi import Request

from .markers import MarkerSet, generate_markers
from .parser import ToolCallParser
from .transformer import RequestTransformer, has_tool_history
from ..chat.non_streaming import NonStreamFinisher
from ..chat.streaming import StreamingToolTranscoder
from ...logger import get_logger

logger = get_logger(__name__)


class ToolifyCore:
    """Toolify 核心类 - 管理工具调用协议的各个组件。

    :param markers: 分隔符；省略时随机生成一组
    """

    def __init__(self, markers: MarkerSet | None = None):
        self.markers = markers or generate_markers()
        self.parser = ToolCallParser(self.markers)
        self.transformer = RequestTransformer(self.markers)
        self.finisher = NonStreamFinisher(self.markers, self.parser)
        logger.info("[TOOLIFY] Core initialized, call start marker: {}", self.markers.call_start)

    def transform_request(self, request: Dict[str, Any], has_tools: bool) -> Dict[str, Any]:
        """见 :meth:`RequestTransformer.transform`。"""
        return self.transformer.transform(request, has_tools)

    def has_tool_history(self, request: Dict[str, Any]) -> bool:
        return has_tool_history(request)

    def create_transcoder(self) -> StreamingToolTranscoder:
        """为一个流式请求创建独立的转换器。"""
        return StreamingToolTranscoder(self.markers, self.parser)

    def finish_response(self, body: Any, has_tools: bool) -> Any:
        """见 :meth:`NonStreamFinisher.finish`。"""
        return self.finisher.finish(body, has_tools)


def get_toolify_core(request: Request) -> ToolifyCore:
    """FastAPI 依赖：返回应用创建时构造的 :class:`ToolifyCore`。

    :param request: 当前请求
    :return: 挂在 ``app.state.toolify`` 上的实例
    """
    return request.app.state.toolify
