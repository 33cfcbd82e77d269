"""
模块加载器

把文件系统映射到依赖图：
- add(path): 执行模块，创建节点并挂到父节点下，等待 mounted()，发出 add
- remove(path): 销毁节点并从父节点移除，发出 remove
- reload(path): 先完全销毁旧节点（包括异步 dispose 回调），再加载新节点，发出 reload
- 内容指纹没有变化的文件事件视为噪声，不触发重载

加载器运行在文件监听回调里，所有失败都通过 error 事件汇报，不向调用者抛出。
同一路径上的操作由 asyncio.Lock 串行化。
"""
from __future__ import annotations

import asyncio
import importlib.util
import inspect
import os
import re
import sys
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType, ModuleType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from hotplug import settings
from hotplug._types.errors import ErrorCode
from hotplug._types.exceptions import (
    DependencyConflictError,
    DisposeError,
    LoaderDisposedError,
    LoaderError,
    ModuleImportError,
    ModuleResolveError,
    MountError,
)
from hotplug.core.dependency import Dependency, OptionsLike
from hotplug.core.emitter import EventEmitter
from hotplug.core.performance import PerformanceMonitor, Timer
from hotplug.core.watcher import FileWatcher
from hotplug.logging_config import format_log_text, get_logger
from hotplug.sdk.runtime import dependency_scope
from hotplug.utils.hashing import content_hash, file_hash
from hotplug.utils.time_utils import now_iso, ts_to_iso

logger = get_logger("hotplug.loader")

PathLike = Union[str, "os.PathLike[str]"]
DependencyFactory = Callable[[str, str, OptionsLike], Dependency]

_MODULE_NAME_RE = re.compile(r"[^0-9a-zA-Z_]")


def normalize_path(path: PathLike) -> Path:
    return Path(os.fspath(path)).expanduser().resolve()


def dependency_name(path: Path) -> str:
    """节点的逻辑名称：文件名去掉扩展名，__init__.py 使用所在目录名"""
    if path.stem == "__init__":
        return path.parent.name
    return path.stem


def module_name_for(path: Path) -> str:
    # 同一路径始终对应同一个模块名，重载时覆盖 sys.modules 中的旧模块
    digest = content_hash(str(path).encode("utf-8"), "sha1")[:12]
    stem = _MODULE_NAME_RE.sub("_", dependency_name(path))
    return f"{settings.MODULE_NAME_PREFIX}{stem}_{digest}"


@dataclass
class LoaderEntry:
    """一个被跟踪的路径"""
    path: Path
    dependency: Optional[Dependency] = None
    hash: Optional[str] = None
    mtime: Optional[float] = None
    module_name: Optional[str] = None
    loaded_at: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def is_live(self) -> bool:
        return self.dependency is not None and not self.dependency.is_disposed

    def to_dict(self) -> Dict[str, Any]:
        dep = self.dependency
        return {
            "path": str(self.path),
            "name": dep.name if dep is not None else None,
            "state": dep.lifecycle_state.value if dep is not None else None,
            "hash": self.hash,
            "mtime": ts_to_iso(self.mtime) if self.mtime is not None else None,
            "module": self.module_name,
            "loaded_at": self.loaded_at,
            "error": repr(self.error) if self.error is not None else None,
        }


class ModuleLoader(EventEmitter):
    """路径 → 依赖节点

    Events:
        add(dependency)
        remove(dependency)
        reload(new_dependency, old_dependency)
        error(LoaderError)
    """

    def __init__(
        self,
        host: Dependency,
        *,
        hash_algorithm: Optional[str] = None,
        factory: Optional[DependencyFactory] = None,
        watcher: Optional[FileWatcher] = None,
    ) -> None:
        super().__init__()
        self.host = host
        self.hash_algorithm = (hash_algorithm or settings.HASH_ALGORITHM).lower()
        self._factory = factory
        self.watcher = watcher
        self.monitor = PerformanceMonitor()
        self._entries: Dict[Path, LoaderEntry] = {}
        self._locks: Dict[Path, asyncio.Lock] = {}
        self._disposed = False

    def __repr__(self) -> str:
        return f"<ModuleLoader host={self.host.name!r} tracked={len(self._entries)}>"

    # ========== 查询 ==========

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def entries(self) -> Mapping[Path, LoaderEntry]:
        return MappingProxyType(self._entries)

    def get(self, path: PathLike) -> Optional[Dependency]:
        """路径对应的存活节点"""
        entry = self._entries.get(normalize_path(path))
        if entry is None or not entry.is_live:
            return None
        return entry.dependency

    def tracked_paths(self) -> List[Path]:
        return list(self._entries.keys())

    def stats(self) -> Dict[str, Any]:
        data = self.monitor.snapshot()
        data["tracked"] = len(self._entries)
        data["live"] = sum(1 for e in self._entries.values() if e.is_live)
        return data

    # ========== 操作 ==========

    async def add(
        self,
        path: PathLike,
        *,
        parent: Optional[Dependency] = None,
        options: OptionsLike = None,
    ) -> Optional[Dependency]:
        """加载模块并挂载节点，失败时发出 error 并返回 None"""
        target = normalize_path(path)
        async with self._lock_for(target):
            return await self._add(target, parent, options)

    async def remove(self, path: PathLike) -> Optional[Dependency]:
        """销毁路径对应的节点，返回被移除的节点"""
        target = normalize_path(path)
        async with self._lock_for(target):
            return await self._remove(target)

    async def reload(self, path: PathLike, *, force: bool = False) -> Optional[Dependency]:
        """重新加载

        指纹未变化且 force=False 时直接返回当前节点。
        """
        target = normalize_path(path)
        async with self._lock_for(target):
            return await self._reload(target, force)

    async def handle_change(
        self,
        kind: str,
        path: PathLike,
        old_path: Optional[PathLike] = None,
    ) -> Optional[Dependency]:
        """把文件监听事件映射为 add / reload / remove"""
        target = normalize_path(path)
        if kind == "deleted":
            return await self.remove(target)
        if kind == "moved":
            if old_path is not None and normalize_path(old_path) in self._entries:
                await self.remove(old_path)
            # 编辑器的原子保存：临时文件被重命名到已加载的插件上
            if target in self._entries:
                return await self.reload(target)
            return await self.add(target)
        if kind in ("created", "modified"):
            entry = self._entries.get(target)
            if entry is None:
                return await self.add(target)
            return await self.reload(target)
        logger.debug("Ignoring unknown change kind '{}' for {}", kind, target)
        return None

    def dispose(self, *, dispose_dependencies: bool = False) -> None:
        """停止监听并移除全部监听器

        加载的节点归依赖图所有，默认不销毁；dispose_dependencies=True 时一并销毁。
        """
        if self._disposed:
            return
        self._disposed = True
        if self.watcher is not None:
            self.watcher.stop()
        if dispose_dependencies:
            for entry in list(self._entries.values()):
                if entry.dependency is not None:
                    entry.dependency.dispose()
                if entry.module_name:
                    sys.modules.pop(entry.module_name, None)
        self._entries.clear()
        self._locks.clear()
        self.close()
        logger.debug("Loader for {} disposed", self.host.name)

    # ========== 内部 ==========

    def _lock_for(self, path: Path) -> asyncio.Lock:
        lock = self._locks.get(path)
        if lock is None:
            lock = self._locks[path] = asyncio.Lock()
        return lock

    def _create_dependency(self, name: str, filename: str, options: OptionsLike) -> Dependency:
        if self._factory is not None:
            return self._factory(name, filename, options)
        create = getattr(self.host, "create_dependency", None)
        if callable(create):
            return create(name, filename, options)
        return Dependency(None, name, filename, options)

    def _read_source(self, path: Path) -> Tuple[str, float]:
        return file_hash(path, self.hash_algorithm), path.stat().st_mtime

    async def _fingerprint(self, path: Path) -> Tuple[str, float]:
        if not path.is_file():
            raise ModuleResolveError(path, FileNotFoundError(str(path)))
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._read_source, path)
        except FileNotFoundError as e:
            raise ModuleResolveError(path, e) from e

    def _execute(self, path: Path, module_name: str) -> ModuleType:
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise ModuleImportError(path, ImportError(f"Cannot load module from {path}"))
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        # 直接编译源码，不使用 __pycache__（同一秒内的修改会命中旧的字节码）
        code = compile(path.read_bytes(), str(path), "exec", dont_inherit=True)
        exec(code, module.__dict__)
        return module

    async def _add(
        self,
        path: Path,
        parent: Optional[Dependency],
        options: OptionsLike,
    ) -> Optional[Dependency]:
        if self._disposed:
            self._report(LoaderDisposedError(path), "add")
            return None
        entry = self._entries.get(path)
        if entry is not None and entry.is_live:
            return entry.dependency

        timer = Timer().start()
        try:
            fingerprint, mtime = await self._fingerprint(path)
        except LoaderError as e:
            self._report(e, "add")
            return None

        module_name = module_name_for(path)
        entry = LoaderEntry(path=path, hash=fingerprint, mtime=mtime, module_name=module_name)
        self._entries[path] = entry

        owner = parent or self.host
        dep: Optional[Dependency] = None
        try:
            dep = self._create_dependency(dependency_name(path), str(path), options)
            dep.hash = fingerprint
            dep.mtime = mtime
            owner.attach(dep)
            dep.on("error", lambda exc, _p=path: self._on_dependency_error(_p, exc))
            with dependency_scope(dep):
                module = self._execute(path, module_name)
                setup = getattr(module, "setup", None)
                if callable(setup):
                    result = setup(dep)
                    if inspect.isawaitable(result):
                        await result
                await dep.mounted()
            if dep.is_disposed:
                raise LoaderError(f"Dependency for {path} was disposed while mounting", path)
        except Exception as e:
            self._rollback(dep, module_name)
            entry.dependency = None
            entry.error = e
            self._report(self._wrap(path, e), "add")
            return None

        entry.dependency = dep
        entry.error = None
        entry.loaded_at = now_iso()
        duration = timer.stop()
        self.monitor.record("add", duration)
        logger.info("Loaded {} from {} in {:.3f}s", dep.name, path, duration)
        self.emit("add", dep)
        return dep

    async def _remove(self, path: Path) -> Optional[Dependency]:
        entry = self._entries.pop(path, None)
        if entry is None:
            return None
        if entry.module_name:
            sys.modules.pop(entry.module_name, None)
        dep = entry.dependency
        if dep is None:
            return None
        timer = Timer().start()
        await self._dispose_dependency(dep)
        duration = timer.stop()
        self.monitor.record("remove", duration)
        logger.info("Removed {} ({}) in {:.3f}s", dep.name, path, duration)
        if not self._disposed:
            self.emit("remove", dep)
        return dep

    async def _reload(self, path: Path, force: bool) -> Optional[Dependency]:
        if self._disposed:
            self._report(LoaderDisposedError(path), "reload")
            return None
        entry = self._entries.get(path)
        if entry is None:
            return await self._add(path, None, None)

        try:
            fingerprint, _mtime = await self._fingerprint(path)
        except LoaderError as e:
            # 文件消失时旧节点保持不变，等待 deleted 事件
            self._report(e, "reload")
            return entry.dependency if entry.is_live else None

        old = entry.dependency if entry.is_live else None
        if not force and fingerprint == entry.hash and old is not None:
            logger.debug("Content of {} unchanged, skipping reload", path)
            return old

        timer = Timer().start()
        parent: Optional[Dependency] = None
        options: OptionsLike = None
        if old is not None:
            parent = old.parent
            options = old.get_options()
            # 旧节点（包括异步 dispose 回调）完全销毁后才开始加载新节点
            await self._dispose_dependency(old)
        if entry.module_name:
            sys.modules.pop(entry.module_name, None)
        self._entries.pop(path, None)

        if parent is not None and parent.is_disposed:
            parent = None
        new = await self._add(path, parent, options)
        if new is None:
            self.monitor.record("reload", timer.stop(), ok=False)
            return None
        duration = timer.stop()
        self.monitor.record("reload", duration)
        logger.info("Reloaded {} from {} in {:.3f}s", new.name, path, duration)
        self.emit("reload", new, old)
        return new

    async def _dispose_dependency(self, dep: Dependency) -> None:
        dep.dispose()
        try:
            await dep.wait_disposed()
        except DisposeError as e:
            # 单个回调的错误已经通过节点的 error 事件汇报
            logger.debug("Dispose of {} finished with errors: {}", dep.name, e)

    def _rollback(self, dep: Optional[Dependency], module_name: str) -> None:
        sys.modules.pop(module_name, None)
        if dep is not None:
            # dispose() 会把节点从父节点上摘下
            dep.dispose()

    def _wrap(self, path: Path, error: BaseException) -> LoaderError:
        if isinstance(error, LoaderError):
            return error
        if isinstance(error, MountError):
            return LoaderError(f"Failed to mount {path}: {error}", path, error, code=ErrorCode.MOUNT_FAILED)
        if isinstance(error, DependencyConflictError):
            return LoaderError(str(error), path, error, code=ErrorCode.DEPENDENCY_CONFLICT)
        return ModuleImportError(path, error)

    def _on_dependency_error(self, path: Path, error: BaseException) -> None:
        if self._disposed:
            return
        wrapped = error if isinstance(error, LoaderError) else LoaderError(
            f"Dependency {path} reported an error: {error}", path, error,
        )
        self._report(wrapped, "dependency")

    def _report(self, error: LoaderError, operation: str) -> None:
        self.monitor.record_error(operation)
        cause = error.cause if error.cause is not None else error
        logger.opt(exception=cause).error("[{}] {}: {}", operation, error.path, format_log_text(error.message))
        self.emit("error", error)


__all__ = [
    "ModuleLoader",
    "LoaderEntry",
    "DependencyFactory",
    "normalize_path",
    "dependency_name",
    "module_name_for",
]
