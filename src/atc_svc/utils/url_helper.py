"""上游 URL 提取与校验模块。

请求路径格式为 ``/<absolute-http-or-https-url>``，例如::

    POST /https://api.openai.com/v1/chat/completions
"""

import re
from typing import NamedTuple

import httpx

UPSTREAM_PATH_PATTERN = re.compile(r"^/(https?://.+)$", re.IGNORECASE)


class UrlValidation(NamedTuple):
    """上游 URL 校验结果。"""

    ok: bool
    error: str | None = None


def extract_upstream(path: str, query: str = "") -> str | None:
    """从请求路径中提取上游 URL。

    :param path: 原始请求路径（以 ``/`` 开头）
    :param query: 原始查询字符串（不含 ``?``），会原样拼接到上游 URL
    :return: 上游 URL；路径不符合格式时返回 None
    """
    match = UPSTREAM_PATH_PATTERN.match(path or "")
    if not match:
        return None
    upstream = match.group(1)
    if query:
        upstream = f"{upstream}?{query}"
    return upstream


def validate_upstream(upstream_url: str | None) -> UrlValidation:
    """校验上游 URL。

    :param upstream_url: 待校验的 URL
    :return: 校验结果，失败时带有错误描述
    """
    if not upstream_url:
        return UrlValidation(False, "Missing upstream URL")

    try:
        parsed = httpx.URL(upstream_url)
    except (httpx.InvalidURL, ValueError):
        return UrlValidation(False, "Invalid upstream URL")

    if parsed.scheme not in ("http", "https"):
        return UrlValidation(False, "Invalid protocol (http/https only)")

    if not parsed.host:
        return UrlValidation(False, "Invalid upstream URL")

    return UrlValidation(True)
