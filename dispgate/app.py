"""The dispatch front process: configuration, routes and server lifetime."""

from __future__ import annotations

import argparse
import signal
import time
from typing import Optional, Sequence

from dispgate.config import Config, get_config
from dispgate.logger import get_logger
from dispgate.request_handler import RequestHandler
from dispgate.server_base import Server
from dispgate.server_factory import create_server

DEFAULT_CONFIG_FILE = "config/server.conf"
DEFAULT_LOG_FILE = "logs/disp"

ROUTES = ("/api/health", "/api/version", "/api/user", "/api/order", "/api/product")


def _route_to(handler: RequestHandler, path: str):
    return lambda request: handler.handle_request(path, request)


def build_server(config: Config, handler: RequestHandler) -> Server:
    """Create and configure the front server described by ``config``."""
    port = config.get_int("disp.port", 8080)
    max_connections = config.get_int("disp.max_connections", 1000)
    timeout = config.get_int("disp.timeout", 60)
    use_epoll = config.get_bool("disp.use_epoll", True)

    server = create_server(use_epoll, port)
    server.max_connections = max_connections
    server.timeout = timeout

    get_logger().info(
        f"服务器配置: 类型={server.server_type}, 端口={port}, "
        f"最大连接数={max_connections}, 超时时间={timeout}秒"
    )

    for path in ROUTES:
        server.set_route(path, _route_to(handler, path))
    return server


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the dispatch server until it is stopped by SIGINT or SIGTERM."""
    parser = argparse.ArgumentParser(prog="dispgate", description="HTTP dispatch front server")
    parser.add_argument("--config", default=DEFAULT_CONFIG_FILE, help="configuration file")
    args = parser.parse_args(argv)

    logger = get_logger()
    logger.set_log_file(DEFAULT_LOG_FILE)

    config = get_config()
    try:
        config.load(args.config)
    except OSError:
        logger.error("加载配置文件失败")
        return 1

    handler = RequestHandler()
    try:
        handler.init(config)
    except Exception:
        logger.error("初始化请求处理器失败")
        return 1

    server = build_server(config, handler)

    def _on_signal(signum, _frame):
        logger.info(f"接收到信号: {signum}")
        server.stop()

    previous = {sig: signal.signal(sig, _on_signal) for sig in (signal.SIGINT, signal.SIGTERM)}
    try:
        try:
            server.start()
        except (OSError, OverflowError):
            logger.error("启动服务器失败")
            return 1

        logger.info(f"Disp服务器已启动: {server.server_type}, 端口: {server.port}")
        while server.is_running():
            time.sleep(1)
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)
        server.stop()

    logger.info("Disp服务器已停止")
    return 0