"""
Context 注册表

Context 是节点对外暴露的具名能力：由 mounted 生产者（同步或异步）在节点挂载时生成一次，
销毁时按注册顺序的逆序调用 dispose 回调。
"""
from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
    TypeVar,
    Union,
)

from hotplug._types.exceptions import (
    ContextConflictError,
    ContextNotFoundError,
    ContextTypeError,
    MountError,
)

if TYPE_CHECKING:
    from hotplug.core.dependency import Dependency

T = TypeVar("T")

Producer = Callable[["Dependency"], Union[T, Awaitable[T]]]
Disposer = Callable[[T], Any]


@dataclass
class Context(Generic[T]):
    """具名能力

    Attributes:
        name: 名称，同一节点内唯一
        mounted: 生产者，接收所属节点，返回值（或 awaitable）作为 context 的值
        dispose: 销毁回调，接收 context 的值
        value_type: 可选的类型标记，挂载和 use() 时检查
        description: 描述
    """
    name: str
    mounted: Optional[Producer] = None
    dispose: Optional[Disposer] = None
    value_type: Optional[type] = None
    description: str = ""
    value: Optional[T] = field(default=None, init=False)
    ready: bool = field(default=False, init=False)
    _produced: bool = field(default=False, init=False, repr=False)

    @classmethod
    def coerce(cls, obj: Union["Context[Any]", Mapping[str, Any]]) -> "Context[Any]":
        """接受 Context 实例或 {name, mounted, dispose} 映射"""
        if isinstance(obj, Context):
            return obj
        if isinstance(obj, Mapping):
            if "name" not in obj:
                raise ValueError("context mapping requires a 'name'")
            return cls(
                name=str(obj["name"]),
                mounted=obj.get("mounted"),
                dispose=obj.get("dispose"),
                value_type=obj.get("value_type"),
                description=str(obj.get("description", "")),
            )
        raise TypeError(f"cannot register {type(obj).__name__} as a context")

    def check_type(self, value: Any, expected: Optional[type] = None) -> None:
        expected = expected or self.value_type
        if expected is not None and not isinstance(value, expected):
            raise ContextTypeError(self.name, expected, value)

    @property
    def needs_teardown(self) -> bool:
        # 没有生产者的 context（例如 on_dispose）无论是否挂载都需要执行 dispose
        if self.dispose is None:
            return False
        return self.ready or self.mounted is None

    async def produce(self, owner: "Dependency") -> Any:
        """调用生产者，成功后不再重复调用；失败后下一次挂载会重试"""
        if self._produced:
            return self.value
        self._produced = True
        value: Any = None
        try:
            if self.mounted is not None:
                value = self.mounted(owner)
                if inspect.isawaitable(value):
                    value = await value
            self.check_type(value)
        except BaseException:
            self._produced = False
            raise
        self.value = value
        self.ready = True
        return value


class ContextRegistry:
    """单个节点的 context 表，保持注册顺序"""

    def __init__(self, owner_name: str = "") -> None:
        self._owner_name = owner_name
        self._contexts: Dict[str, Context[Any]] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._contexts

    def __len__(self) -> int:
        return len(self._contexts)

    def __iter__(self) -> Iterator[Context[Any]]:
        return iter(list(self._contexts.values()))

    @property
    def size(self) -> int:
        return len(self._contexts)

    def names(self) -> List[str]:
        return list(self._contexts.keys())

    def as_mapping(self) -> Mapping[str, Context[Any]]:
        return MappingProxyType(self._contexts)

    def register(self, context: Context[Any]) -> Context[Any]:
        if context.name in self._contexts:
            raise ContextConflictError(context.name, self._owner_name)
        self._contexts[context.name] = context
        return context

    def get(self, name: str) -> Context[Any]:
        try:
            return self._contexts[name]
        except KeyError:
            raise ContextNotFoundError(name) from None

    def find(self, name: str) -> Optional[Context[Any]]:
        return self._contexts.get(name)

    def is_ready(self, name: str) -> bool:
        ctx = self._contexts.get(name)
        return bool(ctx and ctx.ready)

    def pending(self) -> List[Context[Any]]:
        return [c for c in self._contexts.values() if not c.ready]

    async def mount_all(self, owner: "Dependency") -> List[Context[Any]]:
        """按注册顺序依次挂载尚未就绪的 context

        Raises:
            MountError: 任一生产者失败
        """
        mounted: List[Context[Any]] = []
        for ctx in list(self._contexts.values()):
            if ctx.ready:
                continue
            try:
                await ctx.produce(owner)
            except Exception as e:
                raise MountError(self._owner_name, ctx.name, e) from e
            mounted.append(ctx)
        return mounted

    def teardown(self) -> Tuple[List[Context[Any]], List[BaseException], List[Awaitable[Any]]]:
        """逆序执行 dispose 回调

        单个回调失败不会中断其它 context 的销毁。

        Returns:
            (已销毁的 context, 收集到的错误, 异步回调返回的 awaitable)
        """
        disposed: List[Context[Any]] = []
        errors: List[BaseException] = []
        pending: List[Awaitable[Any]] = []
        for ctx in reversed(list(self._contexts.values())):
            was_ready = ctx.ready
            if ctx.needs_teardown:
                try:
                    result = ctx.dispose(ctx.value)  # type: ignore[misc]
                except Exception as e:
                    errors.append(e)
                else:
                    if inspect.isawaitable(result):
                        pending.append(result)
            ctx.ready = False
            if was_ready:
                disposed.append(ctx)
        return disposed, errors, pending

    def clear(self) -> None:
        self._contexts.clear()


__all__ = ["Context", "ContextRegistry", "Producer", "Disposer"]
