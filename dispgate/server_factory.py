"""Choose and build a front server implementation."""

from __future__ import annotations

from enum import Enum
from typing import Union

from dispgate.event_server import EventServer
from dispgate.logger import get_logger
from dispgate.server_base import Server
from dispgate.threaded_server import ThreadedServer


class ServerType(Enum):
    """The available server implementations."""

    THREADED = "threaded"
    EPOLL = "epoll"


_NAMES = {
    "threaded": ServerType.THREADED,
    "thread": ServerType.THREADED,
    "epoll": ServerType.EPOLL,
}


def _resolve(kind: Union[ServerType, str, bool]) -> ServerType:
    if isinstance(kind, bool):
        return ServerType.EPOLL if kind else ServerType.THREADED
    if isinstance(kind, ServerType):
        return kind
    if isinstance(kind, str):
        resolved = _NAMES.get(kind.lower())
        if resolved is None:
            log = get_logger()
            log.error(f"无效的服务器类型字符串: {kind}，支持的类型: threaded, epoll")
            log.info("回退到默认的ThreadedServer")
            return ServerType.THREADED
        return resolved
    get_logger().error("未知的服务器类型")
    raise TypeError(f"unsupported server kind: {kind!r}")


def create_server(kind: Union[ServerType, str, bool], port: int) -> Server:
    """Build a server from a ServerType, a name ("threaded"/"epoll") or a use-epoll flag."""
    server_type = _resolve(kind)
    if server_type is ServerType.EPOLL:
        get_logger().info(f"创建EpollServer实例 (端口: {port})")
        return EventServer(port)
    get_logger().info(f"创建ThreadedServer实例 (端口: {port})")
    return ThreadedServer(port)