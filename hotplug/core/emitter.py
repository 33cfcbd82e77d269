"""
事件发射器

每个依赖节点和加载器都持有一张监听器表（on / off / once / emit / listener_count）。
运行时是单线程协作式调度，监听器表只在事件循环线程上修改。

- 同一事件的监听器按注册顺序触发
- 单个监听器抛出的异常只记录日志，不影响后续监听器
- 协程监听器会被调度为 Task，异常在 Task 完成时记录
- close() 之后不再接受注册，也不再触发任何监听器
"""
from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Set

from hotplug import settings
from hotplug.logging_config import format_log_text, get_logger
from hotplug.utils.aio import spawn

Listener = Callable[..., Any]

logger = get_logger("hotplug.emitter")


class EventEmitter:
    """最小化的事件发射器，接口参照 Node.js EventEmitter"""

    def __init__(self, max_listeners: Optional[int] = None) -> None:
        self._listeners: Dict[str, List[Listener]] = {}
        self._max_listeners = settings.MAX_LISTENERS if max_listeners is None else max_listeners
        self._closed = False
        self._pending: Set[asyncio.Task] = set()

    @property
    def closed(self) -> bool:
        return self._closed

    def set_max_listeners(self, n: int) -> None:
        self._max_listeners = n

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        """注册监听器，返回取消注册的函数"""
        if self._closed:
            logger.debug("Ignoring listener for '{}' on closed emitter {!r}", event, self)
            return lambda: None
        listeners = self._listeners.setdefault(event, [])
        listeners.append(listener)
        if self._max_listeners and len(listeners) > self._max_listeners:
            logger.warning(
                "Possible listener leak on {!r}: {} listeners for '{}'",
                self, len(listeners), event,
            )
        return lambda: self.off(event, listener)

    add_listener = on

    def once(self, event: str, listener: Listener) -> Callable[[], None]:
        """注册只触发一次的监听器"""
        def _wrapper(*args: Any) -> Any:
            self.off(event, _wrapper)
            return listener(*args)

        _wrapper.__wrapped__ = listener  # type: ignore[attr-defined]
        return self.on(event, _wrapper)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for i, item in enumerate(listeners):
            if item is listener or getattr(item, "__wrapped__", None) is listener:
                del listeners[i]
                break
        if not listeners:
            self._listeners.pop(event, None)

    remove_listener = off

    def remove_all_listeners(self, event: Optional[str] = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)

    def listeners(self, event: str) -> List[Listener]:
        return list(self._listeners.get(event, ()))

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def event_names(self) -> List[str]:
        return list(self._listeners.keys())

    def emit(self, event: str, *args: Any) -> bool:
        """同步触发事件

        Returns:
            是否有监听器被调用
        """
        if self._closed:
            return False
        listeners = self._listeners.get(event)
        if not listeners:
            return False
        for listener in list(listeners):
            try:
                result = listener(*args)
            except Exception as e:
                self._on_listener_error(event, listener, e)
                continue
            if inspect.isawaitable(result):
                self._schedule(event, listener, result)
        return True

    def close(self) -> None:
        """移除全部监听器并拒绝后续注册"""
        self._listeners.clear()
        self._closed = True

    # ========== 内部 ==========

    def _schedule(self, event: str, listener: Listener, awaitable: Any) -> None:
        try:
            task = spawn(awaitable, name=f"listener:{event}")
        except Exception as e:
            self._on_listener_error(event, listener, e)
            return
        if task is None:
            return
        self._pending.add(task)

        def _done(t: asyncio.Task) -> None:
            self._pending.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                self._on_listener_error(event, listener, exc)

        task.add_done_callback(_done)

    def _on_listener_error(self, event: str, listener: Listener, error: BaseException) -> None:
        name = getattr(listener, "__qualname__", repr(listener))
        logger.opt(exception=error).error("Listener {} for '{}' failed: {}", name, event, format_log_text(error))

    async def wait_pending(self) -> None:
        """等待所有协程监听器执行完毕"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["EventEmitter", "Listener"]
