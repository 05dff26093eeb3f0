"""自定义异常模块。

本模块定义了代理中使用的自定义异常类型。所有异常都携带返回给客户端的
HTTP 状态码和错误类别。
"""


class ProxyError(Exception):
    """代理错误基类。

    用于封装由代理本身产生（而非上游转发）的错误，包含状态码和错误信息。
    """

    def __init__(
        self, status_code: int, message: str, error_type: str = "proxy_error"
    ):
        self.status_code = status_code
        self.message = message
        self.error_type = error_type
        super().__init__(self.message)


class InvalidRequestError(ProxyError):
    """请求格式错误（路径中缺少上游 URL、请求体不是合法 JSON 等）。"""

    def __init__(
        self,
        message: str = "Invalid request",
        status_code: int = 400,
        error_type: str = "invalid_request",
    ):
        super().__init__(status_code, message, error_type)


class SecurityError(ProxyError):
    """上游 URL 未通过安全校验。"""

    def __init__(
        self,
        message: str = "Access denied",
        status_code: int = 403,
        error_type: str = "security_error",
    ):
        super().__init__(status_code, message, error_type)


class UpstreamConnectionError(ProxyError):
    """上游网络故障（连接失败、超时等），在收到任何响应之前发生。"""

    def __init__(
        self,
        message: str = "Upstream request failed",
        status_code: int = 502,
        error_type: str = "proxy_error",
    ):
        super().__init__(status_code, message, error_type)
