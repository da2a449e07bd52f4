import os
import re
import threading

import pytest

from dispgate.logger import EnhancedLogger, LogContext, LogLevel, get_logger


@pytest.fixture
def logger(tmp_path):
    log = EnhancedLogger(log_directory=str(tmp_path / "logs"))
    log.enable_console_output(False)
    yield log
    log.close()


def _file_lines(log):
    with open(log.current_log_filename, encoding="utf-8") as fh:
        return fh.read().splitlines()


def test_constructor_creates_directory(tmp_path):
    target = tmp_path / "nested" / "dir"
    log = EnhancedLogger(log_directory=str(target))
    assert target.is_dir()
    log.close()


def test_format_message_includes_context_in_order(logger):
    logger.set_process_name("DISP")
    ctx = LogContext("r1", "10.0.0.1", "u7", "op")
    line = logger.format_message(LogLevel.INFO, "hello", ctx)
    assert line.endswith(" [INFO   ] [ReqID:r1] [IP:10.0.0.1] [User:u7] [Op:op] hello")
    assert f"[DISP/{str(threading.get_ident())[-6:]}]" in line
    assert re.match(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3} ", line)


def test_format_message_omits_empty_context(logger):
    line = logger.format_message(LogLevel.WARNING, "msg")
    assert "ReqID" not in line and "[IP:" not in line
    assert line.endswith("[WARNING] msg")


def test_set_log_file_strips_extension_and_names_file(logger, tmp_path):
    logger.set_log_file(str(tmp_path / "out" / "disp.txt"))
    name = logger.current_log_filename
    assert logger.log_base_name == "disp"
    assert logger.log_directory == str(tmp_path / "out")
    assert re.search(r"/disp_\d{8}_\d{6}\.log$", name)
    assert os.path.exists(name)


def test_level_filtering(logger, tmp_path):
    logger.set_log_file(str(tmp_path / "app"))
    logger.set_log_level(LogLevel.WARNING)
    logger.info("hidden")
    logger.warning("shown")
    lines = _file_lines(logger)
    assert len(lines) == 1
    assert lines[0].endswith(" shown")


def test_console_streams_and_colors(tmp_path, capsys):
    log = EnhancedLogger(log_directory=str(tmp_path))
    log.info("to-out")
    log.error("to-err")
    out, err = capsys.readouterr()
    assert out.startswith("\033[32m") and out.rstrip("\n").endswith("to-out\033[0m")
    assert err.startswith("\033[31m") and "to-err" in err
    log.enable_color_output(False)
    log.info("plain")
    out, _ = capsys.readouterr()
    assert "\033[" not in out and out.rstrip("\n").endswith("plain")


def test_log_response_levels(logger, tmp_path):
    logger.set_log_file(str(tmp_path / "resp"))
    logger.log_response("r1", 200, "", 1.5)
    logger.log_response("r2", 404, "missing")
    lines = _file_lines(logger)
    assert "[INFO   ]" in lines[0] and lines[0].endswith("📤 HTTP响应 [200] (1.50ms)")
    assert "[ERROR  ]" in lines[1] and lines[1].endswith("📤 HTTP响应 [404] missing")


def test_log_request_mentions_client(logger, tmp_path):
    logger.set_log_file(str(tmp_path / "req"))
    logger.log_request("r9", "GET", "/api/user", "1.2.3.4")
    line = _file_lines(logger)[0]
    assert "[ReqID:r9] [IP:1.2.3.4]" in line
    assert line.endswith("🌐 HTTP请求 [GET] /api/user 来自 1.2.3.4")


def test_log_database_drops_long_query(logger, tmp_path):
    logger.set_log_file(str(tmp_path / "db"))
    logger.set_log_level(LogLevel.DEBUG)
    logger.log_database("r", "SELECT", "users", "SELECT 1")
    logger.log_database("r", "SELECT", "users", "x" * 200)
    lines = _file_lines(logger)
    assert lines[0].endswith("SQL: SELECT 1")
    assert "SQL:" not in lines[1]


def test_log_api_call_sets_operation(logger, tmp_path):
    logger.set_log_file(str(tmp_path / "api"))
    logger.set_log_level(LogLevel.DEBUG)
    logger.log_api_call("r", "user", "user.get", "p")
    line = _file_lines(logger)[0]
    assert "[Op:user.get]" in line
    assert line.endswith("🔗 API调用 [user.user.get] 参数: p")


def test_log_error_with_stack_trace_writes_two_lines(logger, tmp_path):
    logger.set_log_file(str(tmp_path / "err"))
    logger.log_error("r", "Kind", "broken", "trace")
    lines = _file_lines(logger)
    assert len(lines) == 2
    assert lines[0].endswith("❌ 错误 [Kind] broken")
    assert lines[1].endswith("堆栈跟踪: trace")


def test_log_performance_threshold(logger, tmp_path):
    logger.set_log_file(str(tmp_path / "perf"))
    logger.set_log_level(LogLevel.DEBUG)
    logger.log_performance("op", 1000.5)
    logger.log_performance("op", 10)
    lines = _file_lines(logger)
    assert "[WARNING]" in lines[0]
    assert "[DEBUG  ]" in lines[1]


def test_log_system_message(logger, tmp_path):
    logger.set_log_file(str(tmp_path / "sys"))
    logger.log_system("Comp", "started", "ok")
    assert _file_lines(logger)[0].endswith("🔧 系统事件 [Comp] started ok")


def test_get_logger_is_singleton(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    first = get_logger()
    second = get_logger()
    assert first is second
    original = first.format_message(LogLevel.INFO, "m").split(" [", 2)[1].split("/")[0]
    first.set_process_name("SHARED")
    try:
        line = second.format_message(LogLevel.INFO, "m")
        assert "[SHARED/" in line
    finally:
        first.set_process_name(original)