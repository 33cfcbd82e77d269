"""
生命周期状态与标准事件名

节点的生命周期只会向前推进：waiting → ready → disposed。
"""
from __future__ import annotations

from enum import Enum
from typing import Literal, get_args


class LifecycleState(str, Enum):
    """依赖节点生命周期状态"""
    WAITING = "waiting"    # 已构造，尚未挂载
    READY = "ready"        # 所有 context 已就绪
    DISPOSED = "disposed"  # 终态，资源已释放

    @property
    def order(self) -> int:
        return _STATE_ORDER[self]

    def can_move_to(self, target: "LifecycleState") -> bool:
        return _STATE_ORDER[target] > _STATE_ORDER[self]


_STATE_ORDER = {
    LifecycleState.WAITING: 0,
    LifecycleState.READY: 1,
    LifecycleState.DISPOSED: 2,
}

# 节点自身发出的标准事件
StandardEventName = Literal[
    "lifecycle-changed",   # (previous, new)
    "options.changed",     # (patch)
    "self.mounted",        # (dependency)
    "mounted",             # (dependency)
    "self.dispose",        # (dependency)
    "dispose",             # (dependency)
    "context.ready",       # (name, owner)，在根节点上发出
    "context.dispose",     # (name, owner)，在根节点上发出
    "error",               # (exception)
]

STANDARD_EVENT_NAMES: tuple[str, ...] = get_args(StandardEventName)

# 加载器发出的事件
LoaderEventName = Literal["add", "remove", "reload", "error"]

LOADER_EVENT_NAMES: tuple[str, ...] = get_args(LoaderEventName)

# 文件监听事件类型
ChangeKind = Literal["created", "modified", "deleted", "moved"]


__all__ = [
    "LifecycleState",
    "StandardEventName",
    "STANDARD_EVENT_NAMES",
    "LoaderEventName",
    "LOADER_EVENT_NAMES",
    "ChangeKind",
]
