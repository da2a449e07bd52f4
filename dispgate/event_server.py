"""Single-threaded, event-driven HTTP front server built on ``selectors``."""

from __future__ import annotations

import re
import selectors
import socket
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union

from dispgate.logger import EnhancedLogger
from dispgate.server_base import Server

BUFFER_SIZE = 4096
LISTEN_BACKLOG = 128
SELECT_TIMEOUT = 1.0
CLEANUP_INTERVAL = 10

_HEADER_END = b"\r\n\r\n"
_CONTENT_LENGTH = b"content-length:"
_INT_PREFIX = re.compile(rb"[ \t\n\v\f\r]*([+-]?[0-9]+)")
_INT_MIN = -(2 ** 31)
_INT_MAX = 2 ** 31 - 1

_ACCEPT = object()
_WAKE = object()


class ClientState(Enum):
    """Where a client connection is in its request/response cycle."""

    READING_REQUEST = "reading_request"
    PROCESSING = "processing"
    WRITING_RESPONSE = "writing_response"
    CLOSING = "closing"


@dataclass
class ClientConnection:
    """Buffers and bookkeeping for one accepted client socket."""

    sock: socket.socket
    state: ClientState = ClientState.READING_REQUEST
    read_buffer: bytes = b""
    write_buffer: bytes = b""
    write_pos: int = 0
    last_activity: float = field(default_factory=time.time)
    keep_alive: bool = False

    @property
    def fd(self) -> int:
        return self.sock.fileno()


def _parse_length(text: bytes) -> int:
    match = _INT_PREFIX.match(text)
    if not match:
        raise ValueError(f"invalid Content-Length: {text!r}")
    number = int(match.group(1))
    if not _INT_MIN <= number <= _INT_MAX:
        raise ValueError(f"Content-Length out of range: {text!r}")
    return number


def is_request_complete(buffer: Union[bytes, str]) -> bool:
    """True once the headers, and any body announced by Content-Length, have arrived."""
    if isinstance(buffer, str):
        buffer = buffer.encode("utf-8")
    header_end = buffer.find(_HEADER_END)
    if header_end < 0:
        return False

    position = buffer.lower().find(_CONTENT_LENGTH)
    if position < 0:
        return True
    value_start = position + len(_CONTENT_LENGTH)
    line_end = buffer.find(b"\r\n", value_start)
    if line_end < 0:
        return True
    try:
        length = _parse_length(buffer[value_start:line_end].strip(b" \t"))
    except ValueError:
        return True
    if length < 0:
        # A negative length can never be satisfied.
        return False
    return len(buffer) - (header_end + len(_HEADER_END)) >= length


class EventServer(Server):
    """Serves every connection from one thread, multiplexed by a selector."""

    server_type = "EpollServer"
    default_max_connections = 1000

    def __init__(self, port: int, logger: Optional[EnhancedLogger] = None):
        super().__init__(port, logger)
        self._clients: dict[int, ClientConnection] = {}
        self._selector: Optional[selectors.BaseSelector] = None
        self._server_sock: Optional[socket.socket] = None
        self._wake_r: Optional[socket.socket] = None
        self._wake_w: Optional[socket.socket] = None
        self._loop_thread: Optional[int] = None
        self._stopped = threading.Event()

    @property
    def current_connections(self) -> int:
        return len(self._clients)

    # lifecycle -----------------------------------------------------------

    def start(self) -> None:
        """Listen on the port and run the event loop until :meth:`stop` is called."""
        if self._running:
            self.logger.warning("Epoll服务器已经在运行中")
            return

        self._setup()
        self._stopped.clear()
        self._loop_thread = threading.get_ident()
        self._running = True
        self.logger.info(f"Epoll服务器已启动，监听端口: {self.port}，最大连接数: {self.max_connections}")
        try:
            self._event_loop()
        finally:
            self._running = False
            self._shutdown()

    def stop(self) -> None:
        """Ask the event loop to finish; waits for it when called from another thread."""
        if not self._running:
            return
        self._running = False
        if self._wake_w is not None:
            try:
                self._wake_w.send(b"\0")
            except OSError:
                pass
        if self._loop_thread != threading.get_ident():
            self._stopped.wait(timeout=5.0)

    def _setup(self) -> None:
        log = self.logger
        try:
            server_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            log.error(f"创建服务器套接字失败: {exc.strerror or exc}")
            raise
        try:
            try:
                server_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            except OSError as exc:
                log.error(f"设置SO_REUSEADDR失败: {exc.strerror or exc}")
                raise
            server_sock.setblocking(False)
            try:
                server_sock.bind(("", self.port))
            except (OSError, OverflowError) as exc:
                log.error(f"绑定地址失败: {getattr(exc, 'strerror', None) or exc}")
                raise
            try:
                server_sock.listen(LISTEN_BACKLOG)
            except OSError as exc:
                log.error(f"监听失败: {exc.strerror or exc}")
                raise
            self.port = server_sock.getsockname()[1]

            selector = selectors.DefaultSelector()
            wake_r, wake_w = socket.socketpair()
            wake_r.setblocking(False)
            wake_w.setblocking(False)
            selector.register(server_sock, selectors.EVENT_READ, _ACCEPT)
            selector.register(wake_r, selectors.EVENT_READ, _WAKE)
        except BaseException:
            server_sock.close()
            raise

        self._server_sock = server_sock
        self._selector = selector
        self._wake_r, self._wake_w = wake_r, wake_w

    def _shutdown(self) -> None:
        for conn in list(self._clients.values()):
            conn.sock.close()
        self._clients.clear()
        if self._selector is not None:
            self._selector.close()
            self._selector = None
        for sock in (self._server_sock, self._wake_r, self._wake_w):
            if sock is not None:
                sock.close()
        self._server_sock = self._wake_r = self._wake_w = None
        self._loop_thread = None
        self.logger.info("Epoll服务器已停止")
        self._stopped.set()

    # event loop ----------------------------------------------------------

    def _event_loop(self) -> None:
        last_cleanup = time.time()
        while self._running:
            try:
                events = self._selector.select(timeout=SELECT_TIMEOUT)
            except OSError as exc:
                self.logger.error(f"epoll_wait失败: {exc}")
                break

            for key, mask in events:
                if key.data is _ACCEPT:
                    self._accept_new_connections()
                elif key.data is _WAKE:
                    self._drain_wakeup()
                else:
                    fd = key.fd
                    if fd not in self._clients:
                        continue
                    if mask & selectors.EVENT_READ:
                        keep = self._handle_read(fd)
                    elif mask & selectors.EVENT_WRITE:
                        keep = self._handle_write(fd)
                    else:
                        keep = True
                    if not keep:
                        self._close_connection(fd)

            now = time.time()
            if now - last_cleanup >= CLEANUP_INTERVAL:
                self.cleanup_timeout_connections(now)
                last_cleanup = now

    def _drain_wakeup(self) -> None:
        try:
            while self._wake_r.recv(BUFFER_SIZE):
                pass
        except (BlockingIOError, OSError):
            pass

    def _accept_new_connections(self) -> None:
        while True:
            try:
                client, (address, client_port) = self._server_sock.accept()
            except BlockingIOError:
                return
            except OSError as exc:
                self.logger.error(f"接受连接失败: {exc.strerror or exc}")
                return

            if len(self._clients) >= self.max_connections:
                self.logger.warning("达到最大连接数限制，拒绝新连接")
                client.close()
                continue

            try:
                client.setblocking(False)
            except OSError:
                self.logger.error("设置客户端socket非阻塞模式失败")
                client.close()
                continue

            conn = ClientConnection(client)
            try:
                self._selector.register(client, selectors.EVENT_READ, conn)
            except (OSError, ValueError, KeyError):
                self.logger.error("将客户端socket添加到epoll失败")
                client.close()
                continue

            self._clients[conn.fd] = conn
            self.logger.info(f"新连接建立: {address}:{client_port} (fd={conn.fd})")

    # connection I/O ------------------------------------------------------

    def _handle_read(self, fd: int) -> bool:
        conn = self._clients.get(fd)
        if conn is None:
            return False
        conn.last_activity = time.time()

        while True:
            try:
                data = conn.sock.recv(BUFFER_SIZE)
            except BlockingIOError:
                return True
            except OSError as exc:
                self.logger.error(f"读取客户端数据失败: {exc.strerror or exc}")
                return False
            if not data:
                self.logger.debug(f"客户端关闭连接 (fd={fd})")
                return False
            conn.read_buffer += data
            if is_request_complete(conn.read_buffer):
                return self._process_complete_request(fd)

    def _handle_write(self, fd: int) -> bool:
        conn = self._clients.get(fd)
        if conn is None:
            return False
        conn.last_activity = time.time()

        while conn.write_pos < len(conn.write_buffer):
            try:
                sent = conn.sock.send(conn.write_buffer[conn.write_pos:])
            except BlockingIOError:
                break
            except OSError as exc:
                self.logger.error(f"发送数据失败: {exc.strerror or exc}")
                return False
            if sent == 0:
                break
            conn.write_pos += sent

        if conn.write_pos < len(conn.write_buffer):
            return True
        if not conn.keep_alive:
            return False

        conn.read_buffer = b""
        conn.write_buffer = b""
        conn.write_pos = 0
        conn.state = ClientState.READING_REQUEST
        return self._modify(conn, selectors.EVENT_READ)

    def _process_complete_request(self, fd: int) -> bool:
        conn = self._clients.get(fd)
        if conn is None:
            return False
        conn.state = ClientState.PROCESSING
        request = conn.read_buffer.decode("utf-8", "replace")
        conn.write_buffer = self.process_request(request).encode("utf-8")
        conn.write_pos = 0
        conn.state = ClientState.WRITING_RESPONSE
        if not self._modify(conn, selectors.EVENT_WRITE):
            return False
        return self._handle_write(fd)

    def _modify(self, conn: ClientConnection, events: int) -> bool:
        try:
            self._selector.modify(conn.sock, events, conn)
        except (OSError, ValueError, KeyError) as exc:
            self.logger.error(f"修改epoll事件失败: {exc}")
            return False
        return True

    def _close_connection(self, fd: int) -> None:
        conn = self._clients.pop(fd, None)
        if conn is None:
            return
        conn.state = ClientState.CLOSING
        if self._selector is not None:
            try:
                self._selector.unregister(conn.sock)
            except (KeyError, ValueError) as exc:
                self.logger.error(f"从epoll删除fd失败: {exc}")
        conn.sock.close()
        self.logger.debug(f"关闭连接 (fd={fd})")

    def cleanup_timeout_connections(self, now: Optional[float] = None) -> list[int]:
        """Close connections idle longer than the timeout; return their descriptors."""
        now = time.time() if now is None else now
        expired = [fd for fd, conn in list(self._clients.items())
                   if now - conn.last_activity > self.timeout]
        for fd in expired:
            self.logger.info(f"清理超时连接 (fd={fd})")
            self._close_connection(fd)
        return expired