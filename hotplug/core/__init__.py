"""
Hotplug Core 模块

提供依赖节点、事件发射器、Context 注册表、模块加载器和文件监听。
"""

from hotplug.core.emitter import EventEmitter
from hotplug.core.context import Context, ContextRegistry
from hotplug.core.dependency import Dependency
from hotplug.core.performance import Timer, PerformanceMonitor
from hotplug.core.watcher import FileWatcher
from hotplug.core.loader import ModuleLoader, LoaderEntry
from hotplug.core.hmr import HMR

__all__ = [
    # 事件
    "EventEmitter",
    # Context
    "Context",
    "ContextRegistry",
    # 依赖节点
    "Dependency",
    "HMR",
    # 加载
    "ModuleLoader",
    "LoaderEntry",
    "FileWatcher",
    # 统计
    "Timer",
    "PerformanceMonitor",
]
