"""
Plugin SDK 模块

插件代码通过这些 Hook 访问正在加载它的依赖节点。
"""

from .runtime import (
    dependency_scope,
    current_dependency,
    use_dependency,
    register,
    use,
    use_context,
    on_dispose,
    on_mounted,
    on_event,
    dispatch,
    broadcast,
    use_logger,
)

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
