"""Thin MySQL access layer returning rows as lists of strings."""

from __future__ import annotations

from typing import Any, Callable, Optional

import pymysql
import pymysql.converters

from dispgate.logger import EnhancedLogger, get_logger

DEFAULT_PORT = 3306

# Keep the encoders but drop the type decoders, so every column comes back as text.
_TEXT_CONVERSIONS = {
    key: value
    for key, value in pymysql.converters.conversions.items()
    if not isinstance(key, int)
}


class DatabaseError(Exception):
    """Raised when the database cannot be reached or a statement fails."""


def _error_message(exc: BaseException) -> str:
    if len(exc.args) >= 2:
        return str(exc.args[1])
    return str(exc)


def _as_text(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", "surrogateescape")
    return str(value)


class DBManager:
    """One MySQL connection with query, transaction and escaping helpers."""

    def __init__(self, connector: Callable[..., Any] = pymysql.connect,
                 logger: Optional[EnhancedLogger] = None):
        self._connector = connector
        self._logger = logger
        self._conn: Any = None
        self._last_error: Optional[str] = None

    @property
    def logger(self) -> EnhancedLogger:
        return self._logger or get_logger()

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "DBManager":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.disconnect()

    def connect(self, host: str, user: str, password: str, database: str,
                port: int = DEFAULT_PORT) -> None:
        """Open the connection; a no-op if already connected."""
        if self._conn is not None:
            self.logger.warning("数据库已连接")
            return
        try:
            self._conn = self._connector(
                host=host,
                user=user,
                password=password,
                database=database,
                port=port,
                charset="utf8mb4",
                autocommit=True,
                conv=_TEXT_CONVERSIONS,
            )
        except pymysql.MySQLError as exc:
            self._last_error = _error_message(exc)
            self._conn = None
            self.logger.error(f"连接数据库失败: {self._last_error}")
            raise DatabaseError(self._last_error) from exc
        self._last_error = ""
        self.logger.info(f"数据库连接成功: {host}:{port}/{database}")

    def disconnect(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._last_error = None
        self.logger.info("数据库连接已关闭")

    def _require_connection(self) -> Any:
        if self._conn is None:
            self.logger.error("数据库未连接")
            raise DatabaseError("数据库未连接")
        return self._conn

    def _run(self, query: str, fetch: bool) -> list[list[str]]:
        conn = self._require_connection()
        try:
            conn.ping(reconnect=True)
            with conn.cursor() as cursor:
                cursor.execute(query)
                rows = cursor.fetchall() if fetch else ()
        except pymysql.MySQLError as exc:
            self._last_error = _error_message(exc)
            kind = "SQL查询失败" if fetch else "SQL执行失败"
            self.logger.error(f"{kind}: {self._last_error}")
            raise DatabaseError(self._last_error) from exc
        self._last_error = ""
        return [[_as_text(value) for value in row] for row in rows or ()]

    def execute_query(self, query: str) -> None:
        """Run a statement whose result is not needed."""
        self._require_connection()
        self.logger.info(f"执行SQL: {query}")
        self._run(query, fetch=False)

    def execute_select(self, query: str) -> list[list[str]]:
        """Run a query and return every row, with SQL NULL shown as ``"NULL"``."""
        self._require_connection()
        self.logger.info(f"执行SQL查询: {query}")
        return self._run(query, fetch=True)

    def last_insert_id(self) -> int:
        return int(self._require_connection().insert_id())

    def affected_rows(self) -> int:
        return int(self._require_connection().affected_rows())

    def begin_transaction(self) -> None:
        self.execute_query("START TRANSACTION")

    def commit_transaction(self) -> None:
        self.execute_query("COMMIT")

    def rollback_transaction(self) -> None:
        self.execute_query("ROLLBACK")

    def escape_string(self, text: str) -> str:
        """Escape ``text`` for use inside a quoted SQL literal."""
        return self._require_connection().escape_string(text)

    def last_error(self) -> str:
        """Message of the most recent failure, empty after a success."""
        if self._last_error is None:
            return "MySQL未初始化"
        return self._last_error