"""AnyToolCall 代理测试套件。

测试分层：
- unit/: 单元测试 - 快速、隔离，不访问网络
- integration/: 集成测试 - 完整应用，上游由 httpx.MockTransport 模拟

使用方法：
    pytest                          # 运行所有测试
    pytest tests/unit/ -m unit      # 仅单元测试
    pytest -m integration           # 仅集成测试
"""
