"""
插件运行时 Hook

插件模块在被加载器执行时，这里的函数都作用于“正在加载的依赖节点”。
当前节点保存在 ContextVar 中，由 dependency_scope() 绑定，跨 await 保持。

用法::

    from hotplug.sdk import register, use_context, on_dispose, use_logger

    logger = use_logger()

    register({"name": "db", "mounted": lambda dep: Database(), "dispose": lambda db: db.close()})

    @use_context("db")
    def on_db(db):
        logger.info("db ready")
"""
from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Callable, Iterator, Mapping, Optional, Type, TypeVar, Union

from hotplug._types.errors import ErrorCode
from hotplug._types.exceptions import HotplugError

if TYPE_CHECKING:
    from hotplug.core.context import Context
    from hotplug.core.dependency import Dependency

T = TypeVar("T")

_current_dependency: "ContextVar[Optional[Dependency]]" = ContextVar("hotplug_current_dependency", default=None)


@contextmanager
def dependency_scope(dependency: "Dependency") -> Iterator["Dependency"]:
    """在作用域内把 Hook 绑定到 dependency"""
    token = _current_dependency.set(dependency)
    try:
        yield dependency
    finally:
        _current_dependency.reset(token)


def current_dependency() -> Optional["Dependency"]:
    """当前绑定的节点，不存在时返回 None"""
    return _current_dependency.get()


def use_dependency() -> "Dependency":
    """获取当前正在加载的依赖节点

    Raises:
        HotplugError: 不在加载作用域内调用
    """
    dep = _current_dependency.get()
    if dep is None:
        raise HotplugError(
            "No dependency is being loaded; hooks must be called while a module is loading",
            code=ErrorCode.NOT_FOUND,
        )
    return dep


def register(context: Union["Context[T]", Mapping[str, Any]]) -> "Context[T]":
    return use_dependency().register(context)


def use(name: str, expected_type: Optional[Type[T]] = None) -> T:
    return use_dependency().use(name, expected_type)


def use_context(*names: str, callback: Optional[Callable[..., Any]] = None) -> Any:
    return use_dependency().use_context(*names, callback=callback)


def on_dispose(callback: Callable[[], Any]) -> Callable[[], Any]:
    use_dependency().on_dispose(callback)
    return callback


def on_mounted(callback: Callable[..., Any]) -> Callable[..., Any]:
    use_dependency().on_mounted(callback)
    return callback


def on_event(event: str, handler: Optional[Callable[..., Any]] = None) -> Any:
    """订阅当前节点上的事件，省略 handler 时作为装饰器使用"""
    dep = use_dependency()
    if handler is None:
        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            dep.on(event, fn)
            return fn
        return decorator
    return dep.on(event, handler)


def dispatch(event: str, *args: Any, hops: Optional[int] = None) -> bool:
    return use_dependency().dispatch(event, *args, hops=hops)


def broadcast(event: str, *args: Any) -> None:
    use_dependency().broadcast(event, *args)


def use_logger() -> Any:
    return use_dependency().logger


__all__ = [
    "dependency_scope",
    "current_dependency",
    "use_dependency",
    "register",
    "use",
    "use_context",
    "on_dispose",
    "on_mounted",
    "on_event",
    "dispatch",
    "broadcast",
    "use_logger",
]
