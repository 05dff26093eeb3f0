"""请求追踪模块。

启用后（``LOG_ENABLED=true``），每个代理请求的各个阶段都会被记录下来，
请求结束时写入 ``<LOG_DIR>/<request_id>.json``。默认关闭，此时所有方法均为空操作。
"""

import time
from datetime import datetime, UTC
from pathlib import Path
from typing import Any

import orjson

from .logger import get_logger
from .utils.uuid_helper import generate_request_id

logger = get_logger(__name__)


class RequestTracer:
    """单个请求的阶段追踪器。

    :param enabled: 是否启用
    :param trace_dir: 追踪文件目录

    Example::

        tracer = RequestTracer(enabled=True, trace_dir="./logs")
        tracer.log("UPSTREAM_REQUEST", {"upstream": url})
        tracer.save()
    """

    def __init__(self, enabled: bool = False, trace_dir: str | Path = "./logs"):
        self.enabled = enabled
        self.trace_dir = Path(trace_dir)
        self.request_id = generate_request_id()
        self._start = time.monotonic()
        self.data: dict[str, Any] = {
            "requestId": self.request_id,
            "timestamp": datetime.now(UTC).isoformat(),
            "phases": [],
        }

    def log(self, phase: str, content: Any) -> None:
        """记录一个阶段。

        :param phase: 阶段标签，如 ``UPSTREAM_REQUEST``
        :param content: 任意可 JSON 序列化的内容
        """
        if not self.enabled:
            return
        self.data["phases"].append({
            "phase": phase,
            "time": int((time.monotonic() - self._start) * 1000),
            "content": content,
        })

    def save(self) -> Path | None:
        """写入追踪文件。

        :return: 写入的文件路径；未启用或写入失败时返回 None
        """
        if not self.enabled:
            return None
        path = self.trace_dir / f"{self.request_id}.json"
        try:
            self.trace_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(orjson.dumps(self.data, option=orjson.OPT_INDENT_2, default=str))
        except OSError as e:
            logger.warning("Failed to write request trace: path={}, error={}", str(path), str(e))
            return None
        return path
