"""Structured, levelled logging with request context and file rotation."""

from __future__ import annotations

import os
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import IntEnum
from typing import Optional, TextIO

MAX_LOG_FILE_SIZE = 200 * 1024 * 1024

_RESET = "\033[0m"


class LogLevel(IntEnum):
    """Severity of a log record; higher values are more severe."""

    DEBUG = 0
    INFO = 1
    WARNING = 2
    ERROR = 3
    FATAL = 4

    @property
    def color(self) -> str:
        return _COLORS[self]


_COLORS = {
    LogLevel.DEBUG: "\033[36m",
    LogLevel.INFO: "\033[32m",
    LogLevel.WARNING: "\033[33m",
    LogLevel.ERROR: "\033[31m",
    LogLevel.FATAL: "\033[35m",
}


@dataclass(frozen=True)
class LogContext:
    """Request-related details attached to a log record."""

    request_id: str = ""
    client_ip: str = ""
    user_id: str = ""
    operation: str = ""


def _current_time() -> str:
    now = datetime.now()
    return f"{now:%Y-%m-%d %H:%M:%S}.{now.microsecond // 1000:03d}"


def _thread_id() -> str:
    return str(threading.get_ident())[-6:]


class EnhancedLogger:
    """Thread-safe logger writing to the console and to a rotating file."""

    def __init__(self, log_directory: str = "logs", max_file_size: int = MAX_LOG_FILE_SIZE):
        self.level = LogLevel.INFO
        self.console_output = True
        self.color_output = True
        self.log_directory = log_directory
        self.log_base_name = "app"
        self.process_name = "Unknown"
        self.max_file_size = max_file_size
        self.current_log_filename = ""
        self._file: Optional[TextIO] = None
        self._lock = threading.Lock()
        self._create_directory(log_directory)

    # configuration -------------------------------------------------------

    def set_log_level(self, level: LogLevel) -> None:
        self.level = LogLevel(level)

    def set_log_file(self, filename: str) -> None:
        """Direct file output to a timestamped file derived from ``filename``."""
        with self._lock:
            self._close_file()

            cut = max(filename.rfind("/"), filename.rfind("\\"))
            if cut >= 0:
                self.log_directory = filename[:cut]
                base = filename[cut + 1:]
            else:
                base = filename
            dot = base.rfind(".")
            if dot >= 0:
                base = base[:dot]
            self.log_base_name = base

            self._create_directory(self.log_directory)
            self.current_log_filename = self._generate_filename(self.log_base_name)
            if self._open_file():
                print(f"[{self.process_name}] 日志将写入: {self.current_log_filename}", flush=True)
            else:
                print(f"无法打开日志文件: {self.current_log_filename}", file=sys.stderr, flush=True)

    def set_process_name(self, name: str) -> None:
        self.process_name = name

    def enable_console_output(self, enable: bool) -> None:
        self.console_output = enable

    def enable_color_output(self, enable: bool) -> None:
        self.color_output = enable

    def close(self) -> None:
        """Close the current log file, if any."""
        with self._lock:
            self._close_file()

    # core ----------------------------------------------------------------

    def format_message(self, level: LogLevel, message: str,
                       context: Optional[LogContext] = None) -> str:
        """Render one log line without a trailing newline."""
        context = context or LogContext()
        parts = [
            _current_time(),
            f" [{self.process_name}/{_thread_id()}]",
            f" [{LogLevel(level).name:<7}]",
        ]
        if context.request_id:
            parts.append(f" [ReqID:{context.request_id}]")
        if context.client_ip:
            parts.append(f" [IP:{context.client_ip}]")
        if context.user_id:
            parts.append(f" [User:{context.user_id}]")
        if context.operation:
            parts.append(f" [Op:{context.operation}]")
        parts.append(f" {message}")
        return "".join(parts)

    def log(self, level: LogLevel, message: str, context: Optional[LogContext] = None) -> None:
        level = LogLevel(level)
        if level < self.level:
            return
        formatted = self.format_message(level, message, context)

        with self._lock:
            if self.console_output:
                text = f"{level.color}{formatted}{_RESET}" if self.color_output else formatted
                stream = sys.stderr if level >= LogLevel.ERROR else sys.stdout
                print(text, file=stream, flush=True)

            if self._file is not None:
                self._file.write(formatted + "\n")
                self._file.flush()
                self._rotate_if_needed()
            elif self.current_log_filename and self._open_file():
                self._file.write(formatted + "\n")
                self._file.flush()

    def debug(self, message: str, context: Optional[LogContext] = None) -> None:
        self.log(LogLevel.DEBUG, message, context)

    def info(self, message: str, context: Optional[LogContext] = None) -> None:
        self.log(LogLevel.INFO, message, context)

    def warning(self, message: str, context: Optional[LogContext] = None) -> None:
        self.log(LogLevel.WARNING, message, context)

    def error(self, message: str, context: Optional[LogContext] = None) -> None:
        self.log(LogLevel.ERROR, message, context)

    def fatal(self, message: str, context: Optional[LogContext] = None) -> None:
        self.log(LogLevel.FATAL, message, context)

    # specialised records -------------------------------------------------

    def log_request(self, request_id: str, method: str, path: str, client_ip: str = "") -> None:
        text = f"🌐 HTTP请求 [{method}] {path}"
        if client_ip:
            text += f" 来自 {client_ip}"
        self.info(text, LogContext(request_id, client_ip))

    def log_response(self, request_id: str, status_code: int, message: str,
                     response_time: float = 0.0) -> None:
        text = f"📤 HTTP响应 [{status_code}]"
        if message:
            text += f" {message}"
        if response_time > 0:
            text += f" ({response_time:.2f}ms)"
        context = LogContext(request_id)
        if status_code >= 400:
            self.error(text, context)
        else:
            self.info(text, context)

    def log_api_call(self, request_id: str, api_type: str, operation: str,
                     params: str = "") -> None:
        text = f"🔗 API调用 [{api_type}.{operation}]"
        if params:
            text += f" 参数: {params}"
        self.debug(text, LogContext(request_id, operation=operation))

    def log_database(self, request_id: str, operation: str, table: str,
                     query: str = "", exec_time: float = 0.0) -> None:
        text = f"🗄️  数据库操作 [{operation}] 表: {table}"
        if exec_time > 0:
            text += f" ({exec_time:.2f}ms)"
        if query and len(query) < 200:
            text += f" SQL: {query}"
        self.debug(text, LogContext(request_id))

    def log_error(self, request_id: str, error_type: str, error_message: str,
                  stack_trace: str = "") -> None:
        context = LogContext(request_id)
        self.error(f"❌ 错误 [{error_type}] {error_message}", context)
        if stack_trace:
            self.error(f"堆栈跟踪: {stack_trace}", context)

    def log_performance(self, operation: str, duration: float, details: str = "") -> None:
        text = f"⚡ 性能监控 [{operation}] {duration:.2f}ms"
        if details:
            text += f" {details}"
        if duration > 1000:
            self.warning(text)
        else:
            self.debug(text)

    def log_system(self, component: str, event: str, details: str = "") -> None:
        text = f"🔧 系统事件 [{component}] {event}"
        if details:
            text += f" {details}"
        self.info(text)

    # file handling -------------------------------------------------------

    def _open_file(self) -> bool:
        try:
            self._file = open(self.current_log_filename, "a", encoding="utf-8")
        except OSError:
            self._file = None
            return False
        return True

    def _close_file(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def _rotate_if_needed(self) -> bool:
        if self._file is None or not self.current_log_filename:
            return False
        try:
            size = os.stat(self.current_log_filename).st_size
        except OSError:
            return False
        if size < self.max_file_size:
            return False

        self._close_file()
        self.current_log_filename = self._generate_filename(self.log_base_name)
        if not self._open_file():
            print(f"无法打开新的日志文件: {self.current_log_filename}", file=sys.stderr, flush=True)
            return False
        print(f"[{self.process_name}] 日志文件已轮转，新日志文件: {self.current_log_filename}",
              flush=True)
        return True

    def _generate_filename(self, base_name: str) -> str:
        return f"{self.log_directory}/{base_name}_{datetime.now():%Y%m%d_%H%M%S}.log"

    @staticmethod
    def _create_directory(path: str) -> None:
        try:
            os.makedirs(path, exist_ok=True)
        except OSError as exc:
            print(f"创建日志目录失败: {path} - {exc}", file=sys.stderr, flush=True)


_instance: Optional[EnhancedLogger] = None
_instance_lock = threading.Lock()


def get_logger() -> EnhancedLogger:
    """Return the process-wide logger, creating it on first use."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = EnhancedLogger()
        return _instance