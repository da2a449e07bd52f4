"""Front-end request dispatch: local handlers and forwarding to AP services."""

from __future__ import annotations

import json
import random
import re
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

from dispgate.config import Config, get_config
from dispgate.logger import EnhancedLogger, LogContext, get_logger
from dispgate.utils import is_valid_ip_address

HandlerFunc = Callable[[str], str]

DEFAULT_AP_HOST = "127.0.0.1"
DEFAULT_AP_PORT = 8081
DEFAULT_AP_ENDPOINT = "http://localhost:8081"
DEFAULT_CLIENT_IP = "127.0.0.1"
AP_TIMEOUT = 5.0
AP_RECEIVE_LIMIT = 4095

_INT_PREFIX = re.compile(r"[ \t\n\v\f\r]*([+-]?[0-9]+)")
_INT_MIN = -(2 ** 31)
_INT_MAX = 2 ** 31 - 1
_PATH_ID = re.compile(r"/api/[A-Za-z0-9_]+/([0-9]+)")
_USER_ID_PATH = re.compile(r"/api/user/([0-9]+)")
_ORDER_ID_PATH = re.compile(r"/api/order/([0-9]+)")
_PRODUCT_ID_PATH = re.compile(r"/api/product/([0-9]+)")

_API_PREFIXES = ("user", "order", "product")


@dataclass
class HttpRequest:
    """The parts of a raw HTTP request that the dispatcher uses."""

    method: str = ""
    path: str = ""
    query: str = ""
    body: str = ""
    headers: dict[str, str] = field(default_factory=dict)


def _lines(text: str) -> list[str]:
    """Split on newlines the way a line reader does: no empty trailing line."""
    if not text:
        return []
    parts = text.split("\n")
    if parts[-1] == "":
        parts.pop()
    return parts


def _to_int(text: str) -> int:
    """Integer value of the leading digits of ``text``; ValueError if none or too large."""
    match = _INT_PREFIX.match(text)
    if not match:
        raise ValueError(f"invalid integer: {text!r}")
    number = int(match.group(1))
    if not _INT_MIN <= number <= _INT_MAX:
        raise ValueError(f"integer out of range: {text!r}")
    return number


def parse_http_request(request: str) -> HttpRequest:
    """Split a raw request into request line, headers and body."""
    result = HttpRequest()
    lines = iter(_lines(request))

    first = next(lines, None)
    if first is not None:
        tokens = first.split()
        result.method = tokens[0] if tokens else ""
        target = tokens[1] if len(tokens) > 1 else ""
        path, sep, query = target.partition("?")
        result.path = path
        if sep:
            result.query = query

    for line in lines:
        if line in ("", "\r"):
            break
        key, sep, value = line.partition(":")
        if sep:
            result.headers[key.lstrip(" \t").rstrip(" \t\r\n")] = value.lstrip(" \t").rstrip(" \t\r\n")

    result.body = "\n".join(lines)
    return result


def extract_client_ip(request_data: str) -> str:
    """Client address from X-Forwarded-For or X-Real-IP, else the loopback address."""
    for line in _lines(request_data):
        if "X-Forwarded-For:" in line or "X-Real-IP:" in line:
            value = line[line.find(":") + 1:]
            return value.lstrip(" \t").rstrip(" \t\r\n")
    return DEFAULT_CLIENT_IP


def generate_request_id() -> str:
    """A tracing identifier: ``REQ``, the time in milliseconds and four random digits."""
    millis = time.time_ns() // 1_000_000
    return f"REQ{millis}{random.randint(1000, 9999)}"


def _request_type(kind: str, method: str, path: str, id_pattern: re.Pattern[str],
                  extra: Optional[Callable[[str, str], Optional[str]]] = None) -> str:
    if method == "GET":
        return f"{kind}.get" if id_pattern.fullmatch(path) else f"{kind}.list"
    if method == "POST":
        return f"{kind}.create"
    if method == "PUT":
        return f"{kind}.update"
    if extra is not None:
        special = extra(method, path)
        if special is not None:
            return special
    if method == "DELETE":
        return f"{kind}.delete"
    return f"{kind}.unknown"


def determine_user_request_type(method: str, path: str) -> str:
    return _request_type("user", method, path, _USER_ID_PATH)


def _order_patch(method: str, path: str) -> Optional[str]:
    if method != "PATCH":
        return None
    return "order.updateStatus" if "/status" in path else "order.update"


def determine_order_request_type(method: str, path: str) -> str:
    return _request_type("order", method, path, _ORDER_ID_PATH, _order_patch)


def determine_product_request_type(method: str, path: str) -> str:
    return _request_type("product", method, path, _PRODUCT_ID_PATH)


_TYPE_RESOLVERS = {
    "user": determine_user_request_type,
    "order": determine_order_request_type,
    "product": determine_product_request_type,
}


def parse_endpoint(endpoint: str) -> tuple[str, int]:
    """Host and port of an endpoint such as ``http://localhost:8081``."""
    host, port = DEFAULT_AP_HOST, DEFAULT_AP_PORT
    marker = endpoint.find("://")
    if marker < 0:
        return host, port
    rest = endpoint[marker + 3:]
    name, sep, port_text = rest.partition(":")
    host = DEFAULT_AP_HOST if name == "localhost" else name
    if sep:
        port = _to_int(port_text)
    return host, port


def _json_items(value: Any) -> Iterable[tuple[str, Any]]:
    if isinstance(value, dict):
        return value.items()
    if isinstance(value, list):
        return ((str(index), item) for index, item in enumerate(value))
    if value is None:
        return ()
    return (("", value),)


def _compose_message(request_type: str, request_id: str,
                     http_request: HttpRequest) -> tuple[dict[str, Any], Optional[str], Optional[str]]:
    message: dict[str, Any] = {"type": request_type, "request_id": request_id}
    body_error = None
    if http_request.body:
        try:
            parsed = json.loads(http_request.body)
        except ValueError as exc:
            body_error = str(exc)
        else:
            message.update(_json_items(parsed))

    path_id = None
    match = _PATH_ID.search(http_request.path)
    if match:
        path_id = match.group(1)
        message["id"] = _to_int(path_id)
    return message, body_error, path_id


def build_ap_message(request_type: str, request_id: str, http_request: HttpRequest) -> dict[str, Any]:
    """The JSON object sent to an AP service for ``http_request``."""
    return _compose_message(request_type, request_id, http_request)[0]


def _dump(message: dict[str, Any]) -> str:
    return json.dumps(message, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class RequestHandler:
    """Answers requests locally or forwards them to the matching AP service."""

    def __init__(self, logger: Optional[EnhancedLogger] = None):
        self._logger = logger
        self.handlers: dict[str, HandlerFunc] = {}
        self.ap_endpoints: dict[str, str] = {}

    @property
    def logger(self) -> EnhancedLogger:
        return self._logger or get_logger()

    def init(self, config: Optional[Config] = None) -> None:
        """Read the AP endpoints and register the built-in handlers."""
        config = config if config is not None else get_config()
        log = self.logger
        log.set_process_name("DISP")

        for kind in _API_PREFIXES:
            self.ap_endpoints[kind] = config.get_string(f"ap.endpoints.{kind}", DEFAULT_AP_ENDPOINT)

        log.log_system("RequestHandler", "初始化开始", "")
        for kind, endpoint in self.ap_endpoints.items():
            log.log_system("RequestHandler", "配置AP端点", f"{kind} -> {endpoint}")

        self.register_handler(
            "/api/health",
            lambda _request: '{"status":"ok","timestamp":"' + str(int(time.time())) + '"}',
        )
        self.register_handler(
            "/api/version",
            lambda _request: '{"version":"1.0.0","service":"DISP"}',
        )
        log.log_system("RequestHandler", "初始化完成", f"已注册 {len(self.handlers)} 个处理函数")

    def register_handler(self, path: str, handler: HandlerFunc) -> None:
        self.handlers[path] = handler
        self.logger.log_system("RequestHandler", "注册处理函数", path)

    def handle_request(self, path: str, request_data: str) -> str:
        """Produce the response body for a request routed to ``path``."""
        log = self.logger
        request_id = generate_request_id()
        client_ip = extract_client_ip(request_data)
        started = time.perf_counter()

        http_request = parse_http_request(request_data)
        log.log_request(request_id, http_request.method, path, client_ip)

        status_code = 200
        try:
            handler = self.handlers.get(path)
            if handler is not None:
                log.info("使用本地处理函数", LogContext(request_id, client_ip, "", path))
                response = handler(request_data)
            else:
                response = self._handle_api_request(request_id, path, request_data, client_ip)
        except Exception as exc:
            status_code = 500
            response = '{"error":"处理请求时发生异常","message":"' + str(exc) + '"}'
            log.log_error(request_id, "RequestProcessing", "处理请求异常", str(exc))

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        log.log_response(request_id, status_code, "", elapsed_ms)
        return response

    def _handle_api_request(self, request_id: str, path: str, request_data: str,
                            client_ip: str) -> str:
        log = self.logger
        http_request = parse_http_request(request_data)

        ap_type = next((kind for kind in _API_PREFIXES if path.startswith(f"/api/{kind}")), None)
        if ap_type is None:
            log.warning("未知的API路径", LogContext(request_id, client_ip, "", path))
            return '{"error":"未知的API路径","path":"' + path + '"}'

        request_type = _TYPE_RESOLVERS[ap_type](http_request.method, path)
        log.log_api_call(request_id, ap_type, request_type, f"路径: {path}")

        endpoint = self.ap_endpoints.get(ap_type)
        if endpoint is not None:
            return self.forward_to_ap(request_id, endpoint, request_type, http_request, client_ip)

        log.warning("未找到对应的AP端点", LogContext(request_id, client_ip, "", ap_type))
        return '{"error":"未找到对应的处理服务","service":"' + ap_type + '"}'

    def forward_to_ap(self, request_id: str, ap_endpoint: str, request_type: str,
                      http_request: HttpRequest, client_ip: str) -> str:
        """Send the request to an AP service as JSON and return its reply."""
        log = self.logger
        started = time.perf_counter()
        log.info("开始转发请求到AP", LogContext(request_id, client_ip, "", f"{request_type}@{ap_endpoint}"))

        host, port = parse_endpoint(ap_endpoint)
        context = LogContext(request_id, client_ip)

        message, body_error, path_id = _compose_message(request_type, request_id, http_request)
        if http_request.body:
            if body_error is None:
                log.debug("解析请求体JSON成功", context)
            else:
                log.warning(f"解析请求体JSON失败: {body_error}", context)
        if path_id is not None:
            log.debug(f"提取路径参数ID: {path_id}", context)

        payload = _dump(message)
        log.debug(f"AP请求JSON: {payload}", context)

        if not is_valid_ip_address(host):
            log.log_error(request_id, "AddressError", "IP地址转换失败", f"host: {host}")
            return '{"error":"无效的服务器地址","host":"' + host + '"}'

        address = f"{host}:{port}"
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            log.log_error(request_id, "SocketError", "创建socket失败", f"errno: {exc.errno}")
            return '{"error":"创建连接失败","details":"socket creation failed"}'

        with sock:
            sock.settimeout(AP_TIMEOUT)
            try:
                sock.connect((host, port))
            except (OSError, OverflowError) as exc:
                log.log_error(request_id, "ConnectionError", "连接AP服务失败",
                              f"host: {address}, errno: {getattr(exc, 'errno', None)}")
                return '{"error":"连接处理服务失败","endpoint":"' + address + '"}'

            log.debug("成功连接到AP服务", LogContext(request_id, client_ip, "", address))

            data = payload.encode("utf-8")
            try:
                sock.sendall(data)
            except OSError as exc:
                log.log_error(request_id, "SendError", "发送请求失败", f"errno: {exc.errno}")
                return '{"error":"发送请求失败"}'
            log.debug(f"请求发送成功, 字节数: {len(data)}", context)

            try:
                received = sock.recv(AP_RECEIVE_LIMIT)
                errno_text = "0"
            except OSError as exc:
                received = b""
                errno_text = str(exc.errno)

        if received:
            response = received.split(b"\0", 1)[0].decode("utf-8", "replace")
            log.debug(f"收到AP响应, 字节数: {len(received)}", context)
            log.debug(f"AP响应内容: {response}", context)
        else:
            log.log_error(request_id, "ReceiveError", "接收响应失败", f"errno: {errno_text}")
            response = '{"error":"接收响应失败"}'

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        log.log_performance("AP调用", elapsed_ms, f"{request_type} -> {address}")
        return response