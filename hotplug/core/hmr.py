"""
宿主运行时

HMR 是依赖图的根节点：持有 ModuleLoader 和 FileWatcher，负责监听插件目录、
加载插件文件，并在停止时销毁整个依赖图。宿主应用继承 HMR，
通过覆盖 create_dependency() 决定插件节点的具体类型。
"""
from __future__ import annotations

import inspect
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from hotplug._types.exceptions import (
    ContextNotFoundError,
    ContextNotReadyError,
    DependencyDisposedError,
    DisposeError,
    LoaderError,
)
from hotplug._types.models import HmrConfig
from hotplug.core.dependency import Dependency, OptionsLike
from hotplug.core.loader import ModuleLoader, PathLike, normalize_path
from hotplug.core.watcher import FileWatcher
from hotplug.logging_config import set_debug

FileCallback = Callable[[str, Path], Any]


class HMR(Dependency):
    """依赖图根节点"""

    def __init__(
        self,
        config: Union[HmrConfig, Mapping[str, Any], None] = None,
        *,
        options: OptionsLike = None,
    ) -> None:
        if config is None:
            config = HmrConfig()
        elif not isinstance(config, HmrConfig):
            config = HmrConfig.model_validate(dict(config))
        super().__init__(None, config.name, f"<hmr:{config.name}>", options)
        self.config = config
        self.dispatch_hops = config.dispatch_hops
        self.watcher = FileWatcher(
            self._on_file_change,
            extensions=config.extensions,
            debounce=config.debounce,
        )
        self.loader = ModuleLoader(self, hash_algorithm=config.hash_algorithm, watcher=self.watcher)
        self.loader.on("error", self._on_loader_error)
        self._watch_dirs: List[Path] = []
        self._file_callbacks: Dict[Path, List[FileCallback]] = {}
        self._started = False
        if config.debug:
            set_debug(True)
        for d in config.dirs:
            self.add_watch_dir(d)

    @property
    def started(self) -> bool:
        return self._started

    def create_dependency(self, name: str, filename: str, options: OptionsLike = None) -> Dependency:
        """加载器为每个插件文件调用的节点工厂，子类可以覆盖"""
        return Dependency(self, name, filename, options)

    # ========== 监听目录 ==========

    def add_watch_dir(self, path: PathLike) -> Path:
        target = normalize_path(path)
        if target not in self._watch_dirs:
            self._watch_dirs.append(target)
            self.watcher.watch(target, is_dir=True)
            self.logger.debug("Watching plugin dir {}", target)
        return target

    def remove_watch_dir(self, path: PathLike) -> bool:
        """停止监听目录，已加载的插件保持不变"""
        target = normalize_path(path)
        if target not in self._watch_dirs:
            return False
        self._watch_dirs.remove(target)
        self.watcher.unwatch(target)
        return True

    def get_watch_dirs(self) -> List[Path]:
        return list(self._watch_dirs)

    def watching(self, path: PathLike, callback: FileCallback) -> Callable[[], None]:
        """监听非插件文件（配置、环境变量文件等），返回取消监听的函数"""
        target = normalize_path(path)
        callbacks = self._file_callbacks.setdefault(target, [])
        callbacks.append(callback)
        if len(callbacks) == 1:
            self.watcher.watch(target, is_dir=False)

        def _unwatch() -> None:
            items = self._file_callbacks.get(target)
            if not items or callback not in items:
                return
            items.remove(callback)
            if not items:
                del self._file_callbacks[target]
                self.watcher.unwatch(target)

        return _unwatch

    def plugin_files(self) -> List[Path]:
        """所有监听目录中的插件文件，按路径排序"""
        files: List[Path] = []
        for d in self._watch_dirs:
            if not d.is_dir():
                continue
            for p in d.iterdir():
                if p.is_file() and self.watcher.accepts(p):
                    files.append(p)
        return sorted(files)

    # ========== 插件 ==========

    async def use_plugin(self, path: PathLike, options: OptionsLike = None) -> Optional[Dependency]:
        """加载单个插件文件，失败时返回 None（错误通过 error 事件汇报）"""
        return await self.loader.add(path, options=options)

    def update_config(self, patch: Mapping[str, Any]) -> HmrConfig:
        """合并配置并同步监听目录

        Raises:
            pydantic.ValidationError: 合并后的配置不合法
        """
        data = self.config.model_dump()
        data.update(patch)
        config = HmrConfig.model_validate(data)
        new_dirs = [normalize_path(d) for d in config.dirs]
        for d in self.get_watch_dirs():
            if d not in new_dirs:
                self.remove_watch_dir(d)
        for d in new_dirs:
            self.add_watch_dir(d)
        self.watcher.extensions = set(config.extensions)
        self.watcher.debounce = config.debounce
        self.dispatch_hops = config.dispatch_hops
        if config.debug != self.config.debug:
            set_debug(config.debug)
        self.config = config
        self.emit("config.changed", dict(patch))
        self.logger.info("Configuration updated: {}", sorted(patch.keys()))
        return config

    def get_context(self, name: str) -> Any:
        """在整个依赖图中查找已就绪的 context 值

        Raises:
            ContextNotFoundError: 没有节点注册该名称
            ContextNotReadyError: 找到了但尚未就绪
        """
        found = False
        for dep in [self, *self.all_dependencies]:
            ctx = dep.contexts.get(name)
            if ctx is None:
                continue
            found = True
            if ctx.ready and dep.is_ready:
                return ctx.value
        if found:
            raise ContextNotReadyError(name)
        raise ContextNotFoundError(name)

    def stats(self) -> Dict[str, Any]:
        data = self.loader.stats()
        data["dependencies"] = len(self.all_dependencies)
        data["watch_dirs"] = [str(d) for d in self._watch_dirs]
        return data

    # ========== 启停 ==========

    async def start(self) -> None:
        """挂载根节点，启动文件监听，加载配置的插件和监听目录中的插件

        根节点挂载失败时 started 保持 False。

        Raises:
            MountError: 根节点的 context 生产者失败
            DependencyDisposedError: 已经 stop()，HMR 不能重新启动
        """
        if self._started:
            return
        if self.is_disposed:
            raise DependencyDisposedError(self.name)
        await self.mounted()
        if self._started or self.is_disposed:
            return
        self._started = True
        self.watcher.start()
        for p in self.config.plugins:
            await self.use_plugin(p)
        for f in self.plugin_files():
            if self.loader.get(f) is None:
                await self.loader.add(f)
        self.logger.info("Started with {} plugin(s)", len(self.dependency_list))

    async def stop(self) -> None:
        """停止监听并销毁整个依赖图，之后实例不能再次 start()"""
        self.logger.info("Stopping...")
        self.loader.dispose()
        await self.watcher.wait_pending()
        self.dispose()
        try:
            await self.wait_disposed()
        except DisposeError as e:
            self.logger.warning("Stopped with {} dispose error(s)", len(e.errors))
        self._started = False
        self.logger.info("Stopped")

    # ========== 内部 ==========

    async def _on_file_change(self, kind: str, path: Path, old_path: Optional[Path]) -> None:
        callbacks = self._file_callbacks.get(path)
        if callbacks:
            for cb in list(callbacks):
                try:
                    result = cb(kind, path)
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    self.logger.opt(exception=e).error("Watch callback for {} failed: {}", path, e)
            return
        if self.loader.disposed:
            return
        entries = self.loader.entries
        tracked = path in entries or (old_path is not None and old_path in entries)
        if not tracked and not self.watcher.accepts(path):
            return
        await self.loader.handle_change(kind, path, old_path)

    def _on_loader_error(self, error: LoaderError) -> None:
        self.logger.warning("Plugin error at {}: {}", error.path, error.message)
        self.emit("error", error)


__all__ = ["HMR", "FileCallback"]
