#!/usr/bin/env python3
"""使用 Granian 启动应用的脚本。

Example::

    # 使用默认配置启动
    python main.py

    # 自定义主机和端口
    python main.py --host 127.0.0.1 --port 8080

    # 使用多个 workers（每个 worker 各自生成一组分隔符）
    python main.py --workers 4
"""

import argparse
import subprocess
import sys
from pathlib import Path

# 添加 src 目录到 Python 路径
sys.path.insert(0, str(Path(__file__).parent / "src"))

from atc_svc.config import get_settings


def main():
    """主函数：解析命令行参数并启动 Granian 服务器。"""
    settings = get_settings()

    parser = argparse.ArgumentParser(
        description="使用 Granian 启动 AnyToolCall 代理服务"
    )
    parser.add_argument(
        "--host",
        default=settings.host,
        help=f"服务器监听地址 (默认: {settings.host})"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help=f"服务器监听端口 (默认: {settings.port})"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.workers,
        help=f"工作进程数 (默认: {settings.workers})"
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level.lower(),
        choices=["critical", "error", "warning", "info", "debug"],
        help=f"日志级别 (默认: {settings.log_level.lower()})"
    )
    parser.add_argument(
        "--reload",
        action="store_true",
        help="启用热重载（开发模式）"
    )

    args = parser.parse_args()

    cmd_parts = [
        "granian",
        "--interface", "asgi",
        "atc_svc.asgi:app",
        "--host", args.host,
        "--port", str(args.port),
        "--workers", str(args.workers),
        "--log-level", args.log_level,
    ]

    if args.reload:
        cmd_parts.append("--reload")

    print(f"启动命令: {' '.join(cmd_parts)}")
    print(f"代理地址: http://{args.host}:{args.port}/<upstream_url>")
    print("-" * 60)

    try:
        subprocess.run(cmd_parts, check=True)
    except KeyboardInterrupt:
        print("\n服务已停止")
    except subprocess.CalledProcessError as e:
        print(f"启动失败: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
