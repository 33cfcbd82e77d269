"""
Hotplug

可热重载的依赖图运行时：插件以依赖节点的形式挂到宿主根节点下，
通过 Context 共享能力，通过 broadcast / dispatch 传递事件，
文件变化时由加载器完成“先销毁、再挂载”的替换。

基本用法::

    from hotplug import HMR

    app = HMR({"name": "app", "dirs": ["./plugins"]})
    await app.start()
    ...
    await app.stop()
"""

from hotplug._types import (
    ErrorCode,
    HotplugError,
    ContextError,
    ContextNotFoundError,
    ContextNotReadyError,
    ContextConflictError,
    ContextTypeError,
    DependencyError,
    DependencyDisposedError,
    DependencyConflictError,
    LifecycleTransitionError,
    MountError,
    DisposeError,
    LoaderError,
    ModuleResolveError,
    ModuleImportError,
    LoaderDisposedError,
    LifecycleState,
    DependencyOptions,
    HmrConfig,
    load_config,
)
from hotplug.core import (
    EventEmitter,
    Context,
    Dependency,
    HMR,
    ModuleLoader,
    LoaderEntry,
    FileWatcher,
    PerformanceMonitor,
    Timer,
)
from hotplug.logging_config import get_logger, set_debug, setup_logging

__version__ = "0.1.0"

__all__ = [
    "__version__",
    # 核心
    "EventEmitter",
    "Context",
    "Dependency",
    "HMR",
    "ModuleLoader",
    "LoaderEntry",
    "FileWatcher",
    "PerformanceMonitor",
    "Timer",
    # 配置
    "LifecycleState",
    "DependencyOptions",
    "HmrConfig",
    "load_config",
    # 日志
    "get_logger",
    "setup_logging",
    "set_debug",
    # 异常
    "ErrorCode",
    "HotplugError",
    "ContextError",
    "ContextNotFoundError",
    "ContextNotReadyError",
    "ContextConflictError",
    "ContextTypeError",
    "DependencyError",
    "DependencyDisposedError",
    "DependencyConflictError",
    "LifecycleTransitionError",
    "MountError",
    "DisposeError",
    "LoaderError",
    "ModuleResolveError",
    "ModuleImportError",
    "LoaderDisposedError",
]
