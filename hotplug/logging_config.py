"""
统一日志配置模块

提供热重载运行时的统一日志配置，基于 loguru。

环境变量:
    HOTPLUG_LOG_LEVEL: 全局日志级别 (TRACE/DEBUG/INFO/WARNING/ERROR/CRITICAL)
    HOTPLUG_LOG_CONSOLE: 是否输出到控制台 (true/false)
    HOTPLUG_LOG_FILE: 是否输出到文件 (true/false)
    HOTPLUG_LOG_JSON: 是否输出 JSON 格式 (true/false)
    HOTPLUG_LOG_DIR: 日志目录路径

Usage:
    from hotplug.logging_config import get_logger

    logger = get_logger("hotplug.loader")
    logger.info("Module loaded: {}", path)
"""
from __future__ import annotations

import os
import sys
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from loguru import logger as _loguru_logger


class LogLevel(str, Enum):
    """日志级别枚举"""
    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _get_bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_log_level() -> LogLevel:
    """获取全局日志级别"""
    level_str = os.getenv("HOTPLUG_LOG_LEVEL", "INFO").upper()
    try:
        return LogLevel(level_str)
    except ValueError:
        return LogLevel.INFO


def _get_component_level(component: str) -> Optional[LogLevel]:
    """获取组件特定的日志级别，例如 HOTPLUG_LOG_LEVEL_HOTPLUG_LOADER"""
    env_name = f"HOTPLUG_LOG_LEVEL_{component.upper().replace('.', '_')}"
    level_str = os.getenv(env_name)
    if level_str:
        try:
            return LogLevel(level_str.upper())
        except ValueError:
            pass
    return None


# 全局配置
LOG_LEVEL = _get_log_level()
LOG_DIR = Path(os.getenv("HOTPLUG_LOG_DIR", "log"))
LOG_CONSOLE = _get_bool_env("HOTPLUG_LOG_CONSOLE", True)
LOG_FILE = _get_bool_env("HOTPLUG_LOG_FILE", False)
LOG_JSON = _get_bool_env("HOTPLUG_LOG_JSON", False)
LOG_MAX_SIZE = os.getenv("HOTPLUG_LOG_MAX_SIZE", "10 MB")
LOG_RETENTION = os.getenv("HOTPLUG_LOG_RETENTION", "7 days")

# 控制台格式（带颜色，使用 extra[component]）
FORMAT_CONSOLE = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]: <20}</cyan> | "
    "<level>{message}</level>"
)
# 文件格式（无颜色）
FORMAT_FILE = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
    "{extra[component]: <20} | {message}"
)

_configured_components: set[str] = set()
_console_handlers: dict[str, int] = {}  # root 组件 -> console handler id，防止重复添加
_sink_handlers: dict[str, list[int]] = {}  # 组件 -> 文件/JSON handler id
_setup_lock = threading.Lock()


def setup_logging(
    component: str = "hotplug",
    level: Optional[LogLevel] = None,
    force: bool = False,
) -> None:
    """配置组件的日志输出

    Args:
        component: 组件名称
        level: 日志级别，None 使用全局或组件特定级别
        force: 是否强制重新配置
    """
    with _setup_lock:
        _setup_logging_impl(component, level, force)


def _setup_logging_impl(
    component: str,
    level: Optional[LogLevel],
    force: bool,
) -> None:
    if component in _configured_components and not force:
        return

    # 确定日志级别：参数 > 组件环境变量 > 全局
    if level is None:
        level = _get_component_level(component) or LOG_LEVEL

    # 首次配置时移除默认 handler
    if not _configured_components:
        _loguru_logger.remove()

    if LOG_CONSOLE:
        root = component.split(".")[0]
        if force and root in _console_handlers:
            _loguru_logger.remove(_console_handlers.pop(root))
        if root not in _console_handlers:
            _console_handlers[root] = _loguru_logger.add(
                sys.stderr,
                format=FORMAT_CONSOLE,
                level=level.value,
                colorize=True,
                filter=lambda record, r=root: record["extra"].get("component", "").startswith(r),
            )

    for handler_id in _sink_handlers.pop(component, []):
        _loguru_logger.remove(handler_id)
    sinks: list[int] = []

    if LOG_FILE:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        log_file = LOG_DIR / f"{component.replace('.', '_')}.log"
        sinks.append(_loguru_logger.add(
            str(log_file),
            format=FORMAT_FILE,
            level=level.value,
            rotation=LOG_MAX_SIZE,
            retention=LOG_RETENTION,
            encoding="utf-8",
            filter=lambda record, c=component: record["extra"].get("component", "") == c,
        ))

    if LOG_JSON:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        json_file = LOG_DIR / f"{component.replace('.', '_')}.json"
        sinks.append(_loguru_logger.add(
            str(json_file),
            serialize=True,
            level=level.value,
            rotation=LOG_MAX_SIZE,
            retention=LOG_RETENTION,
            filter=lambda record, c=component: record["extra"].get("component", "") == c,
        ))

    _sink_handlers[component] = sinks
    _configured_components.add(component)


def get_logger(component: str) -> Any:
    """获取带组件标识的 logger

    Args:
        component: 组件名称，如 "hotplug.loader", "hotplug.dependency"

    Returns:
        绑定了组件名称的 loguru logger
    """
    if component not in _configured_components:
        setup_logging(component)

    return _loguru_logger.bind(component=component)


def set_debug(enabled: bool, component: str = "hotplug") -> None:
    """打开或关闭组件的调试日志

    关闭时恢复为组件环境变量或全局级别。
    """
    setup_logging(component, level=LogLevel.DEBUG if enabled else None, force=True)


def format_log_text(value: Any, max_len: Optional[int] = None) -> str:
    """格式化日志文本，超长时截断

    Args:
        value: 要格式化的值
        max_len: 最大长度，默认从环境变量 HOTPLUG_LOG_CONTENT_MAX 读取
    """
    s = "" if value is None else str(value)

    if max_len is None:
        try:
            max_len = int(os.getenv("HOTPLUG_LOG_CONTENT_MAX", "200"))
        except (ValueError, TypeError):
            max_len = 200
    if max_len <= 0:
        max_len = 200

    if len(s) > max_len:
        return s[:max_len] + "...(truncated)"
    return s


__all__ = [
    "LogLevel",
    "LOG_LEVEL",
    "LOG_DIR",
    "get_logger",
    "setup_logging",
    "set_debug",
    "format_log_text",
    "FORMAT_CONSOLE",
    "FORMAT_FILE",
]
