"""HTTP front server that serves each connection on its own thread."""

from __future__ import annotations

import socket
import threading
from typing import Optional

from dispgate.logger import EnhancedLogger
from dispgate.server_base import Server

LISTEN_BACKLOG = 10
BUFFER_SIZE = 4096
ACCEPT_POLL_INTERVAL = 0.5


class ThreadedServer(Server):
    """One thread accepts connections; every accepted connection gets a thread."""

    server_type = "ThreadedServer"

    def __init__(self, port: int, logger: Optional[EnhancedLogger] = None):
        super().__init__(port, logger)
        self._server_sock: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._client_threads: list[threading.Thread] = []
        self._threads_lock = threading.Lock()
        self._connections = 0
        self._count_lock = threading.Lock()

    @property
    def current_connections(self) -> int:
        return self._connections

    def start(self) -> None:
        """Listen on the port and accept connections in a background thread."""
        if self._running:
            self.logger.warning("ThreadedServer已经在运行中")
            return

        self._server_sock = self._open_listener()
        self._running = True
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="threaded-server-accept", daemon=True
        )
        self._accept_thread.start()
        self.logger.info(
            f"ThreadedServer已启动，监听端口: {self.port}，最大连接数: {self.max_connections}"
        )

    def stop(self) -> None:
        """Close the listening socket and wait for every connection thread."""
        if not self._running:
            return
        self._running = False

        if self._server_sock is not None:
            self._server_sock.close()
            self._server_sock = None

        current = threading.current_thread()
        if self._accept_thread is not None and self._accept_thread is not current:
            self._accept_thread.join()
        self._accept_thread = None

        with self._threads_lock:
            threads, self._client_threads = self._client_threads, []
        for thread in threads:
            if thread is not current:
                thread.join()

        self.logger.info("ThreadedServer已停止")

    def _open_listener(self) -> socket.socket:
        log = self.logger
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        except OSError as exc:
            log.error(f"创建套接字失败: {exc.strerror or exc}")
            raise
        try:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            except OSError as exc:
                log.error(f"设置套接字选项失败: {exc.strerror or exc}")
                raise
            try:
                sock.bind(("", self.port))
            except (OSError, OverflowError) as exc:
                log.error(f"绑定地址失败: {getattr(exc, 'strerror', None) or exc}")
                raise
            try:
                sock.listen(LISTEN_BACKLOG)
            except OSError as exc:
                log.error(f"监听连接失败: {exc.strerror or exc}")
                raise
            sock.settimeout(ACCEPT_POLL_INTERVAL)
            self.port = sock.getsockname()[1]
        except BaseException:
            sock.close()
            raise
        return sock

    def _accept_loop(self) -> None:
        while self._running:
            sock = self._server_sock
            if sock is None:
                break
            try:
                client, _address = sock.accept()
            except socket.timeout:
                continue
            except OSError as exc:
                if not self._running:
                    break
                self.logger.error(f"接受连接失败: {exc.strerror or exc}")
                continue

            if self._connections >= self.max_connections:
                self.logger.warning("达到最大连接数限制，拒绝新连接")
                client.close()
                continue

            if self.timeout > 0:
                client.settimeout(self.timeout)

            with self._count_lock:
                self._connections += 1
            thread = threading.Thread(
                target=self._serve_client, args=(client,), name="threaded-server-client", daemon=True
            )
            with self._threads_lock:
                self._client_threads = [t for t in self._client_threads if t.is_alive()]
                self._client_threads.append(thread)
            thread.start()

    def _serve_client(self, client: socket.socket) -> None:
        try:
            self._handle_client(client)
        finally:
            with self._count_lock:
                self._connections -= 1

    def _handle_client(self, client: socket.socket) -> None:
        with client:
            try:
                data = client.recv(BUFFER_SIZE - 1)
            except OSError:
                return
            if not data:
                return
            request = data.split(b"\0", 1)[0].decode("utf-8", "replace")
            response = self.process_request(request)
            try:
                client.sendall(response.encode("utf-8"))
            except OSError:
                pass