"""ATC Service - AnyToolCall 透明代理服务。

本包提供了一个FastAPI应用，把任意 OpenAI 兼容的聊天补全接口代理为支持
函数调用的接口：请求中的 tools 被编码为提示词，模型输出中由随机分隔符包裹的
调用文本在流式和非流式响应中被还原为结构化的 ``tool_calls``。

主要模块：
    - app: FastAPI应用实例和配置
    - routes: 代理路由定义
    - services.toolify: 分隔符、提示词、请求转换与调用解析
    - services.chat: 流式与非流式响应处理
    - config: 应用配置管理
    - logger: 结构化日志配置
    - tracing: 请求阶段追踪
"""

__version__ = "0"
