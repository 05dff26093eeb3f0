"""测试数据构建器和 Mock 对象。"""
