"""
运行时默认配置

所有默认值都可以通过环境变量覆盖，HmrConfig 中的显式配置优先级更高。

环境变量:
    HOTPLUG_MAX_LISTENERS: 单个事件的监听器数量告警阈值
    HOTPLUG_HASH_ALGORITHM: 文件指纹使用的 hashlib 算法
    HOTPLUG_WATCH_DEBOUNCE: 文件变更去抖时间（秒）
    HOTPLUG_WATCH_EXTENSIONS: 需要监听的扩展名，逗号分隔
    HOTPLUG_DISPATCH_HOPS: dispatch 默认向上传递的层数（0 表示一直到根节点）
    HOTPLUG_DEBUG: 调试模式
"""
from __future__ import annotations

import os
from typing import FrozenSet

from hotplug.utils import parse_bool_config


def _get_int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        return default


def _get_float_env(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except (ValueError, TypeError):
        return default


def _get_extensions_env(name: str, default: str) -> FrozenSet[str]:
    raw = os.getenv(name, default)
    result = set()
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        result.add(item if item.startswith(".") else f".{item}")
    return frozenset(result)


MAX_LISTENERS = _get_int_env("HOTPLUG_MAX_LISTENERS", 100)
HASH_ALGORITHM = os.getenv("HOTPLUG_HASH_ALGORITHM", "sha256").lower()
WATCH_DEBOUNCE = _get_float_env("HOTPLUG_WATCH_DEBOUNCE", 0.1)
WATCH_EXTENSIONS = _get_extensions_env("HOTPLUG_WATCH_EXTENSIONS", ".py")
DISPATCH_HOPS = max(0, _get_int_env("HOTPLUG_DISPATCH_HOPS", 1))
DEBUG = parse_bool_config(os.getenv("HOTPLUG_DEBUG"), default=False)

# on_dispose 等注册的内部 context 使用该前缀，不参与 use() 查找
INTERNAL_CONTEXT_PREFIX = "__hotplug_"

# 动态加载的插件模块在 sys.modules 中的名称前缀
MODULE_NAME_PREFIX = "_hotplug_module_"

__all__ = [
    "MAX_LISTENERS",
    "HASH_ALGORITHM",
    "WATCH_DEBOUNCE",
    "WATCH_EXTENSIONS",
    "DISPATCH_HOPS",
    "DEBUG",
    "INTERNAL_CONTEXT_PREFIX",
    "MODULE_NAME_PREFIX",
]
