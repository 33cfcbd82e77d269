"""
文件监听

基于 watchdog Observer。watchdog 在自己的线程里回调，事件通过
loop.call_soon_threadsafe 转交给事件循环线程，按路径去抖后再交给回调。

- 目录：只监听第一层文件，只接受指定扩展名，忽略以 "_" 或 "." 开头的文件
- 单个文件：不做扩展名过滤（用于配置文件等非插件文件）
"""
from __future__ import annotations

import asyncio
import inspect
import os
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from hotplug import settings
from hotplug.logging_config import get_logger

logger = get_logger("hotplug.watcher")

# (kind, path, old_path)
ChangeCallback = Callable[[str, Path, Optional[Path]], Any]

_KIND_BY_EVENT = {
    "created": "created",
    "modified": "modified",
    "deleted": "deleted",
    "moved": "moved",
}


def _normalize(path: Union[str, os.PathLike]) -> Path:
    return Path(os.fsdecode(path)).expanduser().resolve()


def _merge_kind(previous: Optional[str], current: str) -> str:
    # 去抖窗口内 created + modified 仍视为 created
    if previous == "created" and current == "modified":
        return "created"
    return current


class _Handler(FileSystemEventHandler):
    """运行在 watchdog 线程，只负责把事件转交给事件循环"""

    def __init__(self, watcher: "FileWatcher") -> None:
        super().__init__()
        self._watcher = watcher

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        kind = _KIND_BY_EVENT.get(event.event_type)
        if kind is None:
            return
        src = _normalize(event.src_path)
        if kind == "moved":
            dest = _normalize(getattr(event, "dest_path", "") or event.src_path)
            self._watcher._post(kind, dest, src)
        else:
            self._watcher._post(kind, src, None)


class FileWatcher:
    """监听目录和文件，把变更以 (kind, path, old_path) 交给回调"""

    def __init__(
        self,
        callback: ChangeCallback,
        *,
        extensions: Optional[Iterable[str]] = None,
        debounce: Optional[float] = None,
    ) -> None:
        self._callback = callback
        self.extensions: Set[str] = set(extensions) if extensions is not None else set(settings.WATCH_EXTENSIONS)
        self.debounce = settings.WATCH_DEBOUNCE if debounce is None else max(0.0, float(debounce))
        self._dirs: Set[Path] = set()
        self._files: Set[Path] = set()
        self._observer: Optional[Any] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Dict[Path, Tuple[str, Optional[Path], asyncio.TimerHandle]] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    @property
    def watched_dirs(self) -> List[Path]:
        return sorted(self._dirs)

    @property
    def watched_files(self) -> List[Path]:
        return sorted(self._files)

    # ========== 监听目标 ==========

    def watch(self, path: Union[str, os.PathLike], *, is_dir: Optional[bool] = None) -> Path:
        """监听目录或单个文件，is_dir 为 None 时按路径当前的类型判断"""
        target = _normalize(path)
        if is_dir is None:
            is_dir = target.is_dir()
        if is_dir:
            self._dirs.add(target)
        else:
            self._files.add(target)
        self._reschedule()
        return target

    def unwatch(self, path: Union[str, os.PathLike]) -> bool:
        target = _normalize(path)
        removed = False
        if target in self._dirs:
            self._dirs.discard(target)
            removed = True
        if target in self._files:
            self._files.discard(target)
            removed = True
        if removed:
            self._reschedule()
        return removed

    def accepts(self, path: Union[str, os.PathLike]) -> bool:
        """判断一个路径的变更是否需要上报"""
        target = _normalize(path)
        if target in self._files:
            return True
        if target.name.startswith(("_", ".")):
            return False
        if target.suffix not in self.extensions:
            return False
        return target.parent in self._dirs

    # ========== 启停 ==========

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if self._observer is not None:
            return
        self._loop = loop or asyncio.get_running_loop()
        self._observer = Observer()
        self._schedule_all()
        self._observer.start()
        logger.info("File watcher started: {} dir(s), {} file(s)", len(self._dirs), len(self._files))

    def stop(self) -> None:
        for _kind, _old, handle in self._pending.values():
            handle.cancel()
        self._pending.clear()
        observer = self._observer
        self._observer = None
        if observer is None:
            return
        observer.stop()
        try:
            observer.join(timeout=2.0)
        except RuntimeError:
            # 线程未启动
            pass
        logger.info("File watcher stopped")

    async def wait_pending(self) -> None:
        """等待已经触发的异步回调完成"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ========== 内部 ==========

    def _schedule_all(self) -> None:
        if self._observer is None:
            return
        handler = _Handler(self)
        for d in sorted(self._dirs):
            if d.is_dir():
                self._observer.schedule(handler, str(d), recursive=False)
            else:
                logger.warning("Watched directory does not exist: {}", d)
        # 单个文件监听其所在目录，已被目录覆盖的跳过
        parents = {f.parent for f in self._files if f.parent not in self._dirs}
        for p in sorted(parents):
            if p.is_dir():
                self._observer.schedule(handler, str(p), recursive=False)

    def _reschedule(self) -> None:
        if self._observer is None:
            return
        self._observer.unschedule_all()
        self._schedule_all()

    def _post(self, kind: str, path: Path, old_path: Optional[Path]) -> None:
        # watchdog 线程
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(self._debounce, kind, path, old_path)
        except RuntimeError:
            # 事件循环已关闭
            pass

    def _debounce(self, kind: str, path: Path, old_path: Optional[Path]) -> None:
        if self._observer is None or self._loop is None:
            return
        if not (self.accepts(path) or (old_path is not None and self.accepts(old_path))):
            return
        previous = self._pending.pop(path, None)
        previous_kind = None
        if previous is not None:
            previous_kind, prev_old, handle = previous
            handle.cancel()
            old_path = old_path or prev_old
        kind = _merge_kind(previous_kind, kind)
        handle = self._loop.call_later(self.debounce, self._fire, path)
        self._pending[path] = (kind, old_path, handle)

    def _fire(self, path: Path) -> None:
        entry = self._pending.pop(path, None)
        if entry is None:
            return
        kind, old_path, _handle = entry
        logger.debug("File {}: {}", kind, path)
        try:
            result = self._callback(kind, path, old_path)
        except Exception as e:
            logger.opt(exception=e).error("Watch callback failed for {}: {}", path, e)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)  # type: ignore[arg-type]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.opt(exception=exc).error("Watch callback failed: {}", exc)


__all__ = ["FileWatcher", "ChangeCallback"]
