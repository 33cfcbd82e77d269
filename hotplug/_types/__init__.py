"""
统一类型定义

提供错误码、异常、生命周期状态和配置模型的统一导出。

Usage:
    from hotplug._types import (
        ErrorCode, HotplugError, ContextNotReadyError,
        LifecycleState, DependencyOptions, HmrConfig,
    )
"""

from .errors import ErrorCode, ERROR_NAMES, get_error_name

from .exceptions import (
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
)

from .events import (
    LifecycleState,
    StandardEventName,
    STANDARD_EVENT_NAMES,
    LoaderEventName,
    LOADER_EVENT_NAMES,
    ChangeKind,
)

from .models import DependencyOptions, HmrConfig, load_config

__all__ = [
    # 错误码
    "ErrorCode",
    "ERROR_NAMES",
    "get_error_name",
    # 异常
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
    # 事件
    "LifecycleState",
    "StandardEventName",
    "STANDARD_EVENT_NAMES",
    "LoaderEventName",
    "LOADER_EVENT_NAMES",
    "ChangeKind",
    # 模型
    "DependencyOptions",
    "HmrConfig",
    "load_config",
]
