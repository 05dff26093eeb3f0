"""数据模型定义模块。

本模块定义代理使用的Pydantic模型，用于数据验证和序列化。

聊天请求与响应本身以原始 JSON 字典在代理中流转（未知字段必须原样转发），
这里只定义代理自己产生的结构：解析出的工具调用和错误响应。
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class FunctionCall(BaseModel):
    """工具调用中的函数部分。"""
    name: str
    arguments: str


class ToolCall(BaseModel):
    """从模型输出中解析出的一次工具调用。

    ``arguments`` 为原始 JSON 文本，只做语法校验，不做 schema 校验。
    ``index`` 为该调用在本次解析中被接受的序号。
    """
    id: str = Field(..., description="工具调用 ID")
    index: int = Field(default=0, description="在已接受调用中的序号")
    name: str = Field(..., description="工具名称")
    arguments: str = Field(..., description="JSON 参数文本")

    def to_openai(self, with_index: bool = False) -> Dict[str, Any]:
        """转换为 OpenAI 的 tool_calls 条目。

        :param with_index: 是否带上 ``index``（流式增量格式需要）
        :return: ``{id, type, function: {name, arguments}}``
        """
        entry: Dict[str, Any] = {}
        if with_index:
            entry["index"] = self.index
        entry["id"] = self.id
        entry["type"] = "function"
        entry["function"] = FunctionCall(name=self.name, arguments=self.arguments).model_dump()
        return entry


class ParseResult(BaseModel):
    """文本协议解析结果。

    :param tool_calls: 按出现顺序排列的已接受工具调用
    :param content: 删除所有工具调用区域后的剩余文本；为空时为 None
    """
    tool_calls: List[ToolCall] = Field(default_factory=list)
    content: Optional[str] = None


class ErrorDetail(BaseModel):
    """错误详情模型。"""
    message: str = Field(..., description="错误消息")
    type: str = Field(..., description="错误类型")
    code: Optional[int] = Field(default=None, description="HTTP 状态码")


class ErrorResponse(BaseModel):
    """错误响应模型（OpenAI 兼容）。"""
    error: ErrorDetail
