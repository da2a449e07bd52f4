import socket
import time

import pytest

from dispgate.logger import EnhancedLogger
from dispgate.threaded_server import ThreadedServer


@pytest.fixture
def logger(tmp_path):
    log = EnhancedLogger(log_directory=str(tmp_path / "logs"))
    log.enable_console_output(False)
    return log


@pytest.fixture
def server(logger):
    srv = ThreadedServer(0, logger=logger)
    srv.set_route("/api/echo", lambda request: '{"echo":"yes"}')
    srv.start()
    yield srv
    srv.stop()


def _exchange(port, data):
    with socket.create_connection(("127.0.0.1", port), timeout=5) as sock:
        sock.sendall(data)
        chunks = []
        while True:
            try:
                chunk = sock.recv(4096)
            except ConnectionResetError:
                break
            if not chunk:
                break
            chunks.append(chunk)
    return b"".join(chunks).decode("utf-8")


def _wait_for(predicate, limit=5.0):
    deadline = time.time() + limit
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def test_routed_request_gets_handler_content(server):
    reply = _exchange(server.port, b"GET /api/echo HTTP/1.1\r\nHost: x\r\n\r\n")
    assert reply.startswith("HTTP/1.1 200 OK\r\n")
    assert reply.endswith('{"echo":"yes"}')


def test_query_string_is_ignored_for_routing(server):
    reply = _exchange(server.port, b"GET /api/echo?a=1 HTTP/1.1\r\n\r\n")
    assert reply.endswith('{"echo":"yes"}')


def test_unknown_route_is_404(server):
    reply = _exchange(server.port, b"GET /missing HTTP/1.1\r\n\r\n")
    assert reply.startswith("HTTP/1.1 404 Not Found\r\n")


def test_options_request_gets_preflight_reply(server):
    reply = _exchange(server.port, b"OPTIONS /api/echo HTTP/1.1\r\n\r\n")
    assert "Access-Control-Max-Age: 86400\r\n" in reply


def test_handler_exception_becomes_500(logger):
    srv = ThreadedServer(0, logger=logger)

    def broken(request):
        raise RuntimeError("boom")

    srv.set_route("/api/broken", broken)
    srv.start()
    try:
        reply = _exchange(srv.port, b"GET /api/broken HTTP/1.1\r\n\r\n")
    finally:
        srv.stop()
    assert reply.startswith("HTTP/1.1 500 Internal Server Error\r\n")


def test_start_and_stop_toggle_running(logger):
    srv = ThreadedServer(0, logger=logger)
    assert srv.is_running() is False
    srv.start()
    assert srv.is_running() is True
    srv.stop()
    assert srv.is_running() is False


def test_second_start_keeps_same_port(server):
    port = server.port
    server.start()
    assert server.port == port
    assert server.is_running() is True


def test_bound_port_is_reported(server):
    assert server.port > 0


def test_connections_return_to_zero(server):
    reply = _exchange(server.port, b"GET /api/echo HTTP/1.1\r\n\r\n")
    assert reply.endswith('{"echo":"yes"}')
    _wait_for(lambda: server.current_connections == 0)
    assert server.current_connections == 0


def test_connection_limit_rejects_clients(logger):
    srv = ThreadedServer(0, logger=logger)
    srv.set_route("/api/echo", lambda request: "{}")
    srv.max_connections = 0
    srv.start()
    try:
        reply = _exchange(srv.port, b"GET /api/echo HTTP/1.1\r\n\r\n")
    finally:
        srv.stop()
    assert reply == ""


def test_defaults_follow_threaded_model(logger):
    srv = ThreadedServer(1234, logger=logger)
    assert srv.server_type == "ThreadedServer"
    assert srv.max_connections == 100
    assert srv.timeout == 60


def test_port_in_use_raises(server, logger):
    other = ThreadedServer(server.port, logger=logger)
    with pytest.raises(OSError):
        other.start()
    assert other.is_running() is False


def test_stopped_server_refuses_connections(logger):
    srv = ThreadedServer(0, logger=logger)
    srv.start()
    port = srv.port
    assert port > 0
    srv.stop()
    assert srv.is_running() is False
    with pytest.raises(OSError):
        socket.create_connection(("127.0.0.1", port), timeout=2).close()