"""Common behaviour of the HTTP front servers: routing and response framing."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional

from dispgate.logger import EnhancedLogger, get_logger

RouteHandler = Callable[[str], str]

_CORS_METHODS = "GET, POST, PUT, DELETE, PATCH, OPTIONS"
_CORS_HEADERS = "Content-Type, Authorization"

_STATUS_LINES = {
    200: "200 OK",
    400: "400 Bad Request",
    404: "404 Not Found",
    500: "500 Internal Server Error",
}


def parse_request_line(request: str) -> tuple[str, str]:
    """Return the method and the path, without query string, of a raw request."""
    tokens = request.split(maxsplit=2)
    method = tokens[0] if tokens else ""
    path = tokens[1] if len(tokens) > 1 else ""
    return method, path.split("?", 1)[0]


def create_options_response() -> str:
    """Reply to a CORS preflight request."""
    return (
        "HTTP/1.1 200 OK\r\n"
        "Access-Control-Allow-Origin: *\r\n"
        f"Access-Control-Allow-Methods: {_CORS_METHODS}\r\n"
        f"Access-Control-Allow-Headers: {_CORS_HEADERS}\r\n"
        "Access-Control-Max-Age: 86400\r\n"
        "Content-Length: 0\r\n"
        "Connection: close\r\n"
        "\r\n"
    )


def create_response(content: str, status_code: int = 200,
                    content_type: str = "application/json") -> str:
    """A complete HTTP/1.1 response carrying ``content``."""
    status = _STATUS_LINES.get(status_code, _STATUS_LINES[200])
    length = len(content.encode("utf-8"))
    return (
        f"HTTP/1.1 {status}\r\n"
        f"Content-Type: {content_type}\r\n"
        f"Content-Length: {length}\r\n"
        "Connection: close\r\n"
        "Access-Control-Allow-Origin: *\r\n"
        f"Access-Control-Allow-Methods: {_CORS_METHODS}\r\n"
        f"Access-Control-Allow-Headers: {_CORS_HEADERS}\r\n"
        "\r\n"
        f"{content}"
    )


class Server(ABC):
    """An HTTP server that dispatches requests to handlers by exact path."""

    server_type = "Server"
    default_max_connections = 100
    default_timeout = 60

    def __init__(self, port: int, logger: Optional[EnhancedLogger] = None):
        self.port = port
        self._logger = logger
        self._max_connections = self.default_max_connections
        self._timeout = self.default_timeout
        self._routes: dict[str, RouteHandler] = {}
        self._running = False

    @property
    def logger(self) -> EnhancedLogger:
        return self._logger or get_logger()

    @property
    def max_connections(self) -> int:
        return self._max_connections

    @max_connections.setter
    def max_connections(self, value: int) -> None:
        self._max_connections = value
        self.logger.info(f"{self.server_type}设置最大连接数: {value}")

    @property
    def timeout(self) -> int:
        """Idle connection timeout in seconds."""
        return self._timeout

    @timeout.setter
    def timeout(self, value: int) -> None:
        self._timeout = value
        self.logger.info(f"{self.server_type}设置超时时间: {value}秒")

    @property
    @abstractmethod
    def current_connections(self) -> int:
        """Number of client connections currently open."""

    @abstractmethod
    def start(self) -> None:
        """Begin serving; raises OSError if the listening socket cannot be set up."""

    @abstractmethod
    def stop(self) -> None:
        """Stop serving and release every socket."""

    def is_running(self) -> bool:
        return self._running

    def set_route(self, path: str, handler: RouteHandler) -> None:
        self._routes[path] = handler
        self.logger.info(f"{self.server_type}注册路由: {path}")

    def process_request(self, request: str) -> str:
        """Turn one raw HTTP request into a complete HTTP response."""
        method, path = parse_request_line(request)
        if method == "OPTIONS":
            return create_options_response()

        handler = self._routes.get(path)
        if handler is None:
            self.logger.warning(f"未找到路由: {path}")
            return create_response('{"error":"未找到"}', 404)
        try:
            content = handler(request)
        except Exception as exc:
            self.logger.error(f"处理请求时发生异常: {exc}")
            return create_response('{"error":"内部服务器错误"}', 500)
        return create_response(content)