"""Key/value configuration files of the form ``key = value``."""

from __future__ import annotations

import re
import threading
from typing import Optional

from dispgate.logger import EnhancedLogger, get_logger

_INT_PREFIX = re.compile(r"[ \t\n\v\f\r]*([+-]?\d+)")
_INT_MIN = -(2 ** 31)
_INT_MAX = 2 ** 31 - 1

_TRUE = {"true", "yes", "1"}
_FALSE = {"false", "no", "0"}


class Config:
    """Configuration values read from one or more files."""

    def __init__(self, logger: Optional[EnhancedLogger] = None):
        self._values: dict[str, str] = {}
        self._logger = logger

    @property
    def logger(self) -> EnhancedLogger:
        return self._logger or get_logger()

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def load(self, config_file: str) -> None:
        """Merge the entries of ``config_file``; raises OSError if it cannot be read."""
        try:
            with open(config_file, encoding="utf-8") as fh:
                lines = fh.read().splitlines()
        except OSError:
            self.logger.error(f"无法打开配置文件: {config_file}")
            raise

        for line in lines:
            if not line or line.startswith("#"):
                continue
            key, sep, value = line.partition("=")
            if not sep or not value:
                continue
            self._values[key.strip(" \t")] = value.strip(" \t")

        self.logger.info(f"配置文件加载成功: {config_file}")

    def get_string(self, key: str, default: str = "") -> str:
        return self._values.get(key, default)

    def get_int(self, key: str, default: int = 0) -> int:
        """Integer value of ``key``, using its leading digits; ``default`` if invalid."""
        raw = self._values.get(key)
        if raw is None:
            return default
        match = _INT_PREFIX.match(raw)
        if match:
            number = int(match.group(1))
            if _INT_MIN <= number <= _INT_MAX:
                return number
        self.logger.error(f"配置项 '{key}' 不是有效的整数: {raw}")
        return default

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self._values.get(key)
        if raw is None:
            return default
        lowered = raw.lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        self.logger.error(f"配置项 '{key}' 不是有效的布尔值: {raw}")
        return default


_instance: Optional[Config] = None
_instance_lock = threading.Lock()


def get_config() -> Config:
    """Return the process-wide configuration."""
    global _instance
    with _instance_lock:
        if _instance is None:
            _instance = Config()
        return _instance