"""SSE 事件解析与编码模块。

最小化的 Server-Sent Events 处理：

- 累积收到的文本，按空行（``\\n\\n``）切分出完整事件，不完整的尾部留待下一块
- 一个事件内的多行 ``data:`` 按 SSE 规范以 ``\\n`` 拼接后再做 JSON 解码
"""

from typing import Any, List, NamedTuple

import orjson

DONE_SENTINEL = "[DONE]"
FRAME_TERMINATOR = "\n\n"


class SSEFrame(NamedTuple):
    """一个完整的 SSE 事件。

    :param raw: 事件原文（不含结尾空行）
    :param payload: 解码后的 JSON；非 JSON 或没有 data 行时为 None
    :param is_done: 是否为结束哨兵 ``[DONE]``
    """

    raw: str
    payload: Any = None
    is_done: bool = False


def extract_data_lines(raw_event: str) -> List[str]:
    """提取事件中所有 ``data:`` 行的值（去掉一个前导空格）。"""
    datas = []
    for line in raw_event.split("\n"):
        if line.startswith("data:"):
            value = line[5:]
            if value.startswith(" "):
                value = value[1:]
            datas.append(value)
    return datas


def parse_frame(raw_event: str) -> SSEFrame:
    """解析单个事件。

    :param raw_event: 事件原文
    :return: :class:`SSEFrame`；无法解码为 JSON 的事件 ``payload`` 为 None
    """
    datas = extract_data_lines(raw_event)
    if not datas:
        return SSEFrame(raw_event)
    if len(datas) == 1 and datas[0].strip() == DONE_SENTINEL:
        return SSEFrame(raw_event, is_done=True)
    try:
        payload = orjson.loads("\n".join(datas))
    except orjson.JSONDecodeError:
        return SSEFrame(raw_event)
    return SSEFrame(raw_event, payload=payload)


class SSEEventParser:
    """增量 SSE 事件切分器。"""

    def __init__(self):
        self.buffer = ""

    def push_text(self, text: str) -> List[str]:
        """追加文本并返回其中已完整的事件原文。

        CRLF 统一为 LF；切分发生在整个缓冲区上，因此跨块的 ``\\r`` + ``\\n`` 也能正确归并。
        """
        self.buffer = (self.buffer + text).replace("\r\n", "\n")
        events = []
        while True:
            idx = self.buffer.find(FRAME_TERMINATOR)
            if idx == -1:
                break
            events.append(self.buffer[:idx])
            self.buffer = self.buffer[idx + len(FRAME_TERMINATOR):]
        return events

    def drain(self) -> str | None:
        """取出缓冲区中剩余的不完整事件（流异常结束时使用）。"""
        remaining, self.buffer = self.buffer, ""
        return remaining if remaining.strip() else None


def encode_data(data: str) -> str:
    return f"data: {data}\n\n"


def encode_json(obj: Any) -> str:
    return encode_data(orjson.dumps(obj).decode("utf-8"))


def encode_raw(raw_event: str) -> str:
    return raw_event + FRAME_TERMINATOR
