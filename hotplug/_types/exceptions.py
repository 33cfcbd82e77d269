"""
运行时异常定义

所有异常都继承自 HotplugError，并携带 ErrorCode 与附加信息 details。
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .errors import ErrorCode, get_error_name


class HotplugError(Exception):
    """运行时异常基类"""

    code: ErrorCode = ErrorCode.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": int(self.code),
            "error": get_error_name(self.code),
            "message": self.message,
            "details": self.details,
        }


# ========== Context 错误 ==========

class ContextError(HotplugError):
    """Context 相关错误，总是同步抛给直接调用者"""

    def __init__(self, message: str, name: str, **kwargs: Any):
        details = kwargs.pop("details", None) or {}
        details.setdefault("context", name)
        super().__init__(message, details=details, **kwargs)
        self.name = name


class ContextNotFoundError(ContextError):
    code = ErrorCode.CONTEXT_NOT_FOUND

    def __init__(self, name: str):
        super().__init__(f"Context '{name}' not found", name)


class ContextNotReadyError(ContextError):
    code = ErrorCode.CONTEXT_NOT_READY

    def __init__(self, name: str, owner: Optional[str] = None):
        msg = f"Context '{name}' is not ready"
        if owner:
            msg += f" (owner: {owner})"
        super().__init__(msg, name, details={"owner": owner})


class ContextConflictError(ContextError):
    code = ErrorCode.CONTEXT_CONFLICT

    def __init__(self, name: str, owner: Optional[str] = None):
        super().__init__(
            f"Context '{name}' is already registered on {owner or 'this dependency'}",
            name,
            details={"owner": owner},
        )


class ContextTypeError(ContextError, TypeError):
    code = ErrorCode.CONTEXT_TYPE_MISMATCH

    def __init__(self, name: str, expected: type, actual: Any):
        super().__init__(
            f"Context '{name}' expected {expected.__name__}, got {type(actual).__name__}",
            name,
            details={"expected": expected.__name__, "actual": type(actual).__name__},
        )


# ========== 依赖节点错误 ==========

class DependencyError(HotplugError):
    """依赖节点错误基类"""


class DependencyDisposedError(DependencyError):
    code = ErrorCode.DEPENDENCY_DISPOSED

    def __init__(self, name: str):
        super().__init__(f"Dependency '{name}' has been disposed", details={"dependency": name})


class DependencyConflictError(DependencyError):
    code = ErrorCode.DEPENDENCY_CONFLICT

    def __init__(self, filename: str):
        super().__init__(
            f"A live dependency for '{filename}' is already attached",
            details={"filename": filename},
        )


class LifecycleTransitionError(DependencyError):
    code = ErrorCode.LIFECYCLE_TRANSITION

    def __init__(self, name: str, current: str, target: str):
        super().__init__(
            f"Dependency '{name}' cannot move from {current} to {target}",
            details={"dependency": name, "from": current, "to": target},
        )


# ========== 生命周期错误 ==========

class MountError(HotplugError):
    """Context 生产者失败，节点停留在 waiting"""

    code = ErrorCode.MOUNT_FAILED

    def __init__(self, dependency: str, context: Optional[str], cause: BaseException):
        msg = f"Failed to mount dependency '{dependency}'"
        if context:
            msg += f": context '{context}' failed"
        msg += f": {cause}"
        super().__init__(msg, details={"dependency": dependency, "context": context})
        self.cause = cause


class DisposeError(HotplugError):
    """汇总一次销毁过程中收集到的所有错误"""

    code = ErrorCode.DISPOSE_FAILED

    def __init__(self, dependency: str, errors: List[BaseException]):
        super().__init__(
            f"{len(errors)} error(s) while disposing '{dependency}'",
            details={"dependency": dependency, "errors": [repr(e) for e in errors]},
        )
        self.errors = list(errors)


# ========== 加载器错误 ==========

class LoaderError(HotplugError):
    """加载器边界捕获的错误，通过 loader 的 error 事件汇报"""

    def __init__(
        self,
        message: str,
        path: Union[str, Path],
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ):
        details = kwargs.pop("details", None) or {}
        details.setdefault("path", str(path))
        if cause is not None:
            details.setdefault("cause", repr(cause))
        super().__init__(message, details=details, **kwargs)
        self.path = str(path)
        self.cause = cause


class ModuleResolveError(LoaderError):
    code = ErrorCode.MODULE_NOT_FOUND

    def __init__(self, path: Union[str, Path], cause: Optional[BaseException] = None):
        super().__init__(f"Module file not found: {path}", path, cause)


class ModuleImportError(LoaderError):
    code = ErrorCode.MODULE_IMPORT_FAILED

    def __init__(self, path: Union[str, Path], cause: BaseException):
        super().__init__(f"Failed to load module {path}: {cause}", path, cause)


class LoaderDisposedError(LoaderError):
    code = ErrorCode.LOADER_DISPOSED

    def __init__(self, path: Union[str, Path]):
        super().__init__(f"Loader has been disposed, ignoring {path}", path)


__all__ = [
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
