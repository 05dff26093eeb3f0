"""Toolify 分隔符模块。

生成用于在普通文本中标记工具调用区域的八个分隔符。分隔符由视觉上罕见的
字符组合构成，以尽量避免与模型的真实输出冲突。每个进程启动时随机选择一次，
之后只读共享。
"""

import secrets
from itertools import permutations
from typing import Dict

from pydantic import BaseModel, ConfigDict, model_validator

from ...logger import get_logger

logger = get_logger(__name__)

# (open, close, mid)
DELIMITER_SETS: tuple[tuple[str, str, str], ...] = (
    ("༒", "༒", "࿇"),
    ("꧁", "꧂", "࿔"),
    ("᎒", "᎒", "᎓"),
    ("ꆈ", "ꆈ", "ꊰ"),
    ("꩜", "꩜", "꩟"),
    ("ꓸ", "ꓸ", "ꓹ"),
)

SUFFIX_POOL: tuple[str, ...] = (
    "龘", "靐", "齉", "麤", "爨", "驫", "鱻", "羴", "犇", "骉",
    "飝", "厵", "靇", "飍", "馫", "灥", "厽", "叒", "叕", "芔",
)


class MarkerSet(BaseModel):
    """工具调用协议使用的八个分隔符。

    不可变；构造时校验：所有分隔符非空、两两不同，且任何一个都不是另一个的子串。
    解析器和流式转换器的正确性依赖这一不变量。
    """

    model_config = ConfigDict(frozen=True)

    call_start: str
    call_end: str
    name_start: str
    name_end: str
    args_start: str
    args_end: str
    result_start: str
    result_end: str

    @model_validator(mode="after")
    def check_distinct(self) -> "MarkerSet":
        tokens = self.as_dict()
        for key, value in tokens.items():
            if not value:
                raise ValueError(f"marker {key} must not be empty")
        for (a_key, a), (b_key, b) in permutations(tokens.items(), 2):
            if a in b:
                raise ValueError(f"marker {a_key}={a!r} overlaps marker {b_key}={b!r}")
        return self

    def as_dict(self) -> Dict[str, str]:
        return {
            "call_start": self.call_start,
            "call_end": self.call_end,
            "name_start": self.name_start,
            "name_end": self.name_end,
            "args_start": self.args_start,
            "args_end": self.args_end,
            "result_start": self.result_start,
            "result_end": self.result_end,
        }

    def describe(self) -> str:
        """返回便于日志输出的多行描述。"""
        return "\n".join(f"  {k}: {v!r}" for k, v in self.as_dict().items())

    def format_call(self, name: str, arguments: str) -> str:
        """按协议格式渲染一次工具调用。

        :param name: 工具名称
        :param arguments: JSON 参数文本
        :return: 以 call_start 开头、call_end 结尾的多行文本
        """
        return (
            f"{self.call_start}\n"
            f"{self.name_start}{name}{self.name_end}\n"
            f"{self.args_start}{arguments}{self.args_end}\n"
            f"{self.call_end}"
        )

    def format_result(self, label: str, result: str) -> str:
        """按协议格式渲染一次工具执行结果。"""
        return f"{self.result_start}[{label}]\n{result}{self.result_end}"


def generate_markers() -> MarkerSet:
    """随机生成一组分隔符。

    从 :data:`DELIMITER_SETS` 中选一组 (open, close, mid)，
    再从 :data:`SUFFIX_POOL` 中选两个不同的后缀。

    :return: 新的 :class:`MarkerSet`
    """
    open_, close, mid = secrets.choice(DELIMITER_SETS)
    suffix1 = secrets.choice(SUFFIX_POOL)
    suffix2 = secrets.choice([s for s in SUFFIX_POOL if s != suffix1])

    markers = MarkerSet(
        call_start=f"{open_}{suffix1}ᐅ",
        call_end=f"ᐊ{suffix1}{close}",
        name_start=f"{mid}▸",
        name_end=f"◂{mid}",
        args_start=f"{mid}▹",
        args_end=f"◃{mid}",
        result_start=f"{open_}{suffix2}⟫",
        result_end=f"⟪{suffix2}{close}",
    )
    logger.info("[TOOLIFY] Delimiters initialized:\n{}", markers.describe())
    return markers
