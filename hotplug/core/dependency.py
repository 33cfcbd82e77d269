"""
依赖节点

一个依赖节点对应一个可加载单元（插件 / 模块），负责：
- 生命周期：waiting → ready → disposed，只向前推进
- 子节点：按 filename 保存，父节点销毁时级联销毁
- Context：具名能力的注册、挂载、查找和销毁
- 事件：节点内 on/emit，向下 broadcast，向上 dispatch

节点的 children / contexts 只能通过节点自身的方法修改（attach / detach / register）。
"""
from __future__ import annotations

import asyncio
import inspect
from types import MappingProxyType
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Set,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from hotplug import settings
from hotplug._types.events import LifecycleState
from hotplug._types.exceptions import (
    ContextError,
    ContextNotFoundError,
    ContextNotReadyError,
    DependencyConflictError,
    DependencyDisposedError,
    DisposeError,
    LifecycleTransitionError,
    MountError,
)
from hotplug._types.models import DependencyOptions
from hotplug.core.context import Context, ContextRegistry
from hotplug.core.emitter import EventEmitter
from hotplug.logging_config import get_logger
from hotplug.utils.aio import spawn

T = TypeVar("T")
D = TypeVar("D", bound="Dependency")

OptionsLike = Union[DependencyOptions, Mapping[str, Any], None]
Cleanup = Callable[[], Any]


def _coerce_options(options: OptionsLike) -> DependencyOptions:
    if options is None:
        return DependencyOptions()
    if isinstance(options, DependencyOptions):
        return options.model_copy()
    return DependencyOptions.model_validate(dict(options))


class Dependency(EventEmitter):
    """依赖节点：事件系统 + 层次结构 + 生命周期"""

    def __init__(
        self,
        parent: Optional["Dependency"],
        name: str,
        filename: str,
        options: OptionsLike = None,
    ) -> None:
        super().__init__()
        # 非拥有的反向引用，销毁时置空
        self.parent: Optional[Dependency] = parent
        self.name = name
        self.filename = str(filename)
        # 以下两个字段由加载器填写
        self.hash: Optional[str] = None
        self.mtime: Optional[float] = None
        self.required_contexts: Set[str] = set()
        self.dispose_errors: List[BaseException] = []

        self._options = _coerce_options(options)
        self._state = LifecycleState.WAITING
        self._children: Dict[str, Dependency] = {}
        self._contexts = ContextRegistry(name)

        self._mounting = False
        self._disposing = False
        self._dispose_requested = False
        self._ready_waiter: Optional[asyncio.Future] = None
        self._disposed_waiter: Optional[asyncio.Future] = None
        self._teardown: List[asyncio.Task] = []
        self._late_mounts: Set[asyncio.Task] = set()
        self._internal_seq = 0
        self._logger: Any = None

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r} filename={self.filename!r} state={self._state.value}>"

    # ========== 属性 ==========

    @property
    def lifecycle_state(self) -> LifecycleState:
        return self._state

    @property
    def is_waiting(self) -> bool:
        return self._state is LifecycleState.WAITING

    @property
    def is_ready(self) -> bool:
        return self._state is LifecycleState.READY

    @property
    def is_disposed(self) -> bool:
        return self._state is LifecycleState.DISPOSED

    @property
    def options(self) -> DependencyOptions:
        return self._options

    @property
    def priority(self) -> int:
        return self._options.priority

    @property
    def children(self) -> Mapping[str, "Dependency"]:
        """只读视图：filename → 子节点"""
        return MappingProxyType(self._children)

    @property
    def contexts(self) -> Mapping[str, Context[Any]]:
        """只读视图：name → Context"""
        return self._contexts.as_mapping()

    @property
    def dependency_list(self) -> List["Dependency"]:
        return list(self._children.values())

    @property
    def context_list(self) -> List[Context[Any]]:
        return list(self._contexts)

    @property
    def all_dependencies(self) -> List["Dependency"]:
        """子树中所有存活节点（先序，深度优先）"""
        result: List[Dependency] = []
        for child in self._children.values():
            if child.is_disposed:
                continue
            result.append(child)
            result.extend(child.all_dependencies)
        return result

    @property
    def root(self) -> "Dependency":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def path_names(self) -> List[str]:
        names = [self.name]
        node = self.parent
        while node is not None:
            names.insert(0, node.name)
            node = node.parent
        return names

    @property
    def logger(self) -> Any:
        if self._logger is None:
            self._logger = get_logger("hotplug.dependency").bind(dependency="/".join(self.path_names))
        return self._logger

    # ========== 配置 ==========

    def get_options(self) -> Dict[str, Any]:
        return self._options.model_dump()

    def update_options(self, patch: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> None:
        """合并配置并发出 options.changed

        Raises:
            pydantic.ValidationError: 合并后的配置不合法（原配置保持不变）
        """
        data = dict(patch or {})
        data.update(kwargs)
        self._options = self._options.merged(data)
        self.emit("options.changed", data)

    # ========== 生命周期 ==========

    def get_lifecycle_state(self) -> LifecycleState:
        return self._state

    def set_lifecycle_state(self, state: Union[LifecycleState, str]) -> None:
        """推进生命周期状态并发出 lifecycle-changed(previous, new)

        Raises:
            LifecycleTransitionError: 试图回退状态
        """
        target = LifecycleState(state)
        if target is self._state:
            return
        if not self._state.can_move_to(target):
            raise LifecycleTransitionError(self.name, self._state.value, target.value)
        previous = self._state
        self._state = target
        self.emit("lifecycle-changed", previous, target)

        if target is LifecycleState.READY:
            if self._ready_waiter is not None and not self._ready_waiter.done():
                self._ready_waiter.set_result(None)
        elif target is LifecycleState.DISPOSED:
            if self._ready_waiter is not None and not self._ready_waiter.done():
                self._ready_waiter.set_exception(DependencyDisposedError(self.name))
            if self._disposed_waiter is not None and not self._disposed_waiter.done():
                self._disposed_waiter.set_result(None)

    async def mounted(self) -> None:
        """挂载：依次等待所有 context 的生产者，全部成功后进入 ready

        挂载期间收到的 dispose() 请求会在挂载结束后执行。

        Raises:
            MountError: 任一生产者失败，节点保持 waiting
            DependencyDisposedError: 节点已销毁
        """
        if self.is_ready:
            return
        if self.is_disposed:
            raise DependencyDisposedError(self.name)
        if self._mounting:
            await self.wait_for_ready()
            return

        self._mounting = True
        mounted: List[Context[Any]] = []
        try:
            # 生产者里可能再注册新的 context
            while True:
                batch = await self._contexts.mount_all(self)
                if not batch:
                    break
                mounted.extend(batch)
        except MountError as e:
            self._mounting = False
            self.logger.error("Mount failed: {}", e)
            self._reject_ready_waiter(e)
            if self._dispose_requested:
                self._finish_requested_dispose()
            raise
        except BaseException as e:
            self._mounting = False
            self._reject_ready_waiter(e)
            if self._dispose_requested:
                self._finish_requested_dispose()
            raise
        self._mounting = False

        if self._dispose_requested:
            self.logger.debug("Dispose requested while mounting, finalizing teardown")
            self._finish_requested_dispose()
            return

        self.set_lifecycle_state(LifecycleState.READY)
        root = self.root
        for ctx in mounted:
            if not ctx.name.startswith(settings.INTERNAL_CONTEXT_PREFIX):
                root.emit("context.ready", ctx.name, self)
        self.emit("self.mounted", self)
        self.emit("mounted", self)
        self.logger.debug("Mounted with {} context(s)", len(mounted))

    def _reject_ready_waiter(self, error: BaseException) -> None:
        # 并发的 mounted() / wait_for_ready() 调用者拿到同一个失败
        if self._ready_waiter is None or self._ready_waiter.done():
            return
        if isinstance(error, asyncio.CancelledError):
            self._ready_waiter.cancel()
        else:
            self._ready_waiter.set_exception(error)

    async def wait_for_ready(self, timeout: Optional[float] = None) -> None:
        """等待节点进入 ready

        Raises:
            DependencyDisposedError: 节点在就绪前被销毁
            asyncio.TimeoutError: 超时
        """
        if self.is_ready:
            return
        if self.is_disposed:
            raise DependencyDisposedError(self.name)
        if self._ready_waiter is None or self._ready_waiter.done():
            self._ready_waiter = asyncio.get_running_loop().create_future()
        await asyncio.wait_for(asyncio.shield(self._ready_waiter), timeout)

    def on_mounted(self, callback: Callable[["Dependency"], Any]) -> None:
        """节点就绪时调用 callback，已就绪则立即调用"""
        if self.is_ready:
            result = callback(self)
            if inspect.isawaitable(result):
                spawn(result, name=f"on_mounted:{self.name}")
            return
        self.once("self.mounted", callback)

    def dispose(self) -> None:
        """销毁节点，可重复调用

        顺序：子节点（深度优先）→ context 逆序销毁 → 清空映射 → 断开父节点
        → 状态置为 disposed → 发出 self.dispose → 移除所有监听器。
        单个 dispose 回调失败不会中断销毁流程，错误记录在 dispose_errors 中。
        """
        if self.is_disposed or self._disposing:
            return
        if self._mounting:
            self._dispose_requested = True
            return
        self._disposing = True
        root = self.root
        errors: List[BaseException] = []

        for child in list(self._children.values()):
            child.dispose()
            self._teardown.extend(child._teardown)

        for task in list(self._late_mounts):
            task.cancel()
        self._late_mounts.clear()

        disposed_contexts, ctx_errors, pending = self._contexts.teardown()
        errors.extend(ctx_errors)
        for awaitable in pending:
            try:
                task = spawn(awaitable, name=f"teardown:{self.name}")
            except Exception as e:
                errors.append(e)
                continue
            if task is not None:
                task.add_done_callback(self._on_teardown_done)
                self._teardown.append(task)

        for ctx in disposed_contexts:
            if not ctx.name.startswith(settings.INTERNAL_CONTEXT_PREFIX):
                root.emit("context.dispose", ctx.name, self)

        if errors:
            self.dispose_errors.extend(errors)
            for error in errors:
                self.logger.opt(exception=error).warning("Dispose callback failed: {}", error)
                self.emit("error", error)

        self._children.clear()
        self._contexts.clear()
        parent = self.parent
        if parent is not None:
            parent.detach(self)
        self.parent = None

        self.set_lifecycle_state(LifecycleState.DISPOSED)
        self.emit("self.dispose", self)
        self.emit("dispose", self)
        self.close()
        self._disposing = False
        self.logger.debug("Disposed")

    async def wait_disposed(self) -> None:
        """等待销毁完成，包括异步的 dispose 回调

        Raises:
            DisposeError: 任一 dispose 回调失败
        """
        if not self.is_disposed:
            if self._disposed_waiter is None or self._disposed_waiter.done():
                self._disposed_waiter = asyncio.get_running_loop().create_future()
            await asyncio.shield(self._disposed_waiter)
        if self._teardown:
            await asyncio.gather(*self._teardown, return_exceptions=True)
        if self.dispose_errors:
            raise DisposeError(self.name, self.dispose_errors)

    def on_dispose(self, callback: Callable[[], Any]) -> None:
        """注册一个只在销毁时执行 callback 的 context，已销毁则立即执行"""
        if self.is_disposed:
            result = callback()
            if inspect.isawaitable(result):
                spawn(result, name=f"on_dispose:{self.name}")
            return
        self._internal_seq += 1
        self._contexts.register(Context(
            name=f"{settings.INTERNAL_CONTEXT_PREFIX}dispose_{self._internal_seq}",
            dispose=lambda _value: callback(),
        ))

    def _finish_requested_dispose(self) -> None:
        self._dispose_requested = False
        self.dispose()

    def _on_teardown_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.dispose_errors.append(exc)
            self.logger.opt(exception=exc).warning("Async dispose callback failed: {}", exc)

    # ========== Context ==========

    def register(self, context: Union[Context[T], Mapping[str, Any]]) -> Context[T]:
        """注册 context

        Raises:
            ContextConflictError: 本节点已有同名 context
            DependencyDisposedError: 节点已销毁
        """
        if self.is_disposed:
            raise DependencyDisposedError(self.name)
        ctx = Context.coerce(context)
        self._contexts.register(ctx)
        if self.is_ready:
            self._mount_late(ctx)
        return ctx

    def _mount_late(self, ctx: Context[Any]) -> None:
        async def _run() -> None:
            try:
                await ctx.produce(self)
            except Exception as e:
                error = MountError(self.name, ctx.name, e)
                self.logger.error("Late context mount failed: {}", error)
                self.emit("error", error)
                return
            if self.is_ready:
                self.root.emit("context.ready", ctx.name, self)

        task = spawn(_run(), name=f"context:{ctx.name}")
        if task is not None:
            self._late_mounts.add(task)
            task.add_done_callback(self._late_mounts.discard)

    def _resolve_context(self, name: str) -> Tuple[Context[Any], "Dependency"]:
        # 自身 → 祖先（由近及远）→ 从根节点先序遍历整张图
        node: Optional[Dependency] = self
        while node is not None:
            ctx = node._contexts.find(name)
            if ctx is not None:
                return ctx, node
            node = node.parent
        for dep in self.root.all_dependencies:
            ctx = dep._contexts.find(name)
            if ctx is not None:
                return ctx, dep
        raise ContextNotFoundError(name)

    def use(self, name: str, expected_type: Optional[Type[T]] = None) -> T:
        """获取已就绪 context 的值

        Raises:
            ContextNotFoundError: 名称未注册
            ContextNotReadyError: context 或其所属节点尚未就绪
            ContextTypeError: 值与 expected_type 不符
        """
        ctx, owner = self._resolve_context(name)
        if not (ctx.ready and owner.is_ready):
            raise ContextNotReadyError(name, owner.name)
        ctx.check_type(ctx.value, expected_type)
        return ctx.value  # type: ignore[return-value]

    def context_is_ready(self, name: str) -> bool:
        try:
            ctx, owner = self._resolve_context(name)
        except ContextError:
            return False
        return ctx.ready and owner.is_ready

    def use_context(self, *names: str, callback: Optional[Callable[..., Any]] = None) -> Any:
        """在所有指定 context 就绪后调用 callback(*values)

        callback 可以返回一个清理函数，在任一 context 被销毁或本节点销毁时调用；
        provider 重新就绪后 callback 会再次执行。省略 callback 时作为装饰器使用。
        """
        if callback is None:
            def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
                self.use_context(*names, callback=fn)
                return fn
            return decorator
        if not names:
            raise ValueError("use_context requires at least one context name")
        if self.is_disposed:
            raise DependencyDisposedError(self.name)

        self.required_contexts.update(names)
        state: Dict[str, Any] = {"active": False, "cleanup": None}

        def _run_cleanup() -> None:
            cleanup = state["cleanup"]
            state["cleanup"] = None
            state["active"] = False
            if cleanup is None:
                return
            try:
                result = cleanup()
                if inspect.isawaitable(result):
                    spawn(result, name=f"use_context_cleanup:{self.name}")
            except Exception as e:
                self.logger.opt(exception=e).warning("use_context cleanup failed: {}", e)

        async def _await_side_effect(result: Awaitable[Any]) -> None:
            value = await result
            if callable(value):
                if state["active"]:
                    state["cleanup"] = value
                else:
                    # context 在副作用完成前已被销毁
                    state["cleanup"] = value
                    _run_cleanup()

        def _try_fire(*_: Any) -> None:
            if state["active"] or self.is_disposed:
                return
            if not all(self.context_is_ready(n) for n in names):
                return
            values = [self.use(n) for n in names]
            state["active"] = True
            try:
                result = callback(*values)
            except Exception as e:
                state["active"] = False
                self.logger.opt(exception=e).error("use_context callback failed: {}", e)
                self.emit("error", e)
                return
            if inspect.isawaitable(result):
                spawn(_await_side_effect(result), name=f"use_context:{self.name}")
            elif callable(result):
                state["cleanup"] = result

        def _on_ready(name: str, _owner: "Dependency") -> None:
            if name in names:
                _try_fire()

        def _on_dispose(name: str, _owner: "Dependency") -> None:
            if name in names and state["active"]:
                _run_cleanup()

        root = self.root
        unsubscribers = [
            root.on("context.ready", _on_ready),
            root.on("context.dispose", _on_dispose),
        ]

        def _detach(_dep: "Dependency") -> None:
            for unsub in unsubscribers:
                unsub()
            _run_cleanup()

        self.on("self.dispose", _detach)
        _try_fire()
        return None

    # ========== 层次结构 ==========

    def attach(self, child: "Dependency") -> "Dependency":
        """把子节点挂到本节点下（加载器使用）

        Raises:
            DependencyDisposedError: 本节点已销毁
            DependencyConflictError: 图中已有同 filename 的存活节点
        """
        if self.is_disposed:
            raise DependencyDisposedError(self.name)
        if child.is_disposed:
            raise DependencyDisposedError(child.name)
        root = self.root
        existing = root if root.filename == child.filename else root.find_descendant(child.filename)
        if existing is not None and existing is not child and not existing.is_disposed:
            raise DependencyConflictError(child.filename)
        if child.parent is not None and child.parent is not self:
            child.parent.detach(child)
        child.parent = self
        self._children[child.filename] = child
        return child

    def detach(self, child: "Dependency") -> bool:
        """从子节点表移除，不销毁子节点"""
        if self._children.get(child.filename) is child:
            del self._children[child.filename]
            return True
        return False

    def find_child(self, filename: str) -> Optional["Dependency"]:
        """按 filename 精确查找直接子节点"""
        return self._children.get(str(filename))

    def find_descendant(self, filename: str) -> Optional["Dependency"]:
        """在整个子树中按 filename 查找"""
        filename = str(filename)
        for child in self._children.values():
            if child.filename == filename:
                return child
            found = child.find_descendant(filename)
            if found is not None:
                return found
        return None

    def find_plugin_by_name(self, name: str) -> Optional["Dependency"]:
        """按逻辑名称查找直接子节点，先匹配者优先"""
        for child in self._children.values():
            if child.name == name:
                return child
        return None

    def find_parent(self, filename: str, caller_files: Iterable[str]) -> "Dependency":
        """根据调用栈中的文件找到最近的已加载节点作为父节点"""
        for file in caller_files:
            if file == filename:
                continue
            found = self.find_descendant(file)
            if found is not None:
                return found
        return self

    def get_enabled_dependencies(self) -> List["Dependency"]:
        """启用的子节点，按 priority 降序，相同优先级保持插入顺序"""
        enabled = [c for c in self._children.values() if c.options.enabled is not False]
        return sorted(enabled, key=lambda c: c.priority, reverse=True)

    # ========== 事件传播 ==========

    def broadcast(self, event: str, *args: Any) -> None:
        """先在本节点触发，再按先序递归触发所有后代"""
        self.emit(event, *args)
        for child in list(self._children.values()):
            if not child.is_disposed:
                child.broadcast(event, *args)

    def dispatch(self, event: str, *args: Any, hops: Optional[int] = None) -> bool:
        """向祖先节点传递事件，由近及远

        Args:
            hops: 传递层数，默认 1（只到父节点）；0 表示一直到根节点。
                根节点调用时在自身触发。

        Returns:
            是否有监听器被调用
        """
        if hops is None:
            hops = self._default_dispatch_hops()
        if self.parent is None:
            return self.emit(event, *args)
        delivered = False
        count = 0
        node: Optional[Dependency] = self.parent
        while node is not None:
            delivered = node.emit(event, *args) or delivered
            count += 1
            if hops and count >= hops:
                break
            node = node.parent
        return delivered

    def _default_dispatch_hops(self) -> int:
        hops = getattr(self.root, "dispatch_hops", None)
        if isinstance(hops, int) and hops >= 0:
            return hops
        return settings.DISPATCH_HOPS


__all__ = ["Dependency", "OptionsLike"]
