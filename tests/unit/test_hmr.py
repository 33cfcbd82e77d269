# -*- coding: utf-8 -*-
"""
宿主运行时 - 单元测试
"""
from unittest.mock import MagicMock

import pytest

from hotplug import HMR, HmrConfig
from hotplug._types import ContextNotFoundError, DependencyDisposedError, LoaderError, MountError
from hotplug.core.dependency import Dependency

GREETER = '''
from hotplug.sdk import register

register({"name": "greeting", "mounted": lambda dep: "hello from {name}"})
'''


class Plugin(Dependency):
    pass


class App(HMR):
    def create_dependency(self, name, filename, options=None):
        return Plugin(self, name, filename, options)


@pytest.fixture
def plugin_dir(tmp_path):
    path = tmp_path / "plugins"
    path.mkdir()
    return path


@pytest.fixture
async def app(plugin_dir):
    # 较长的去抖时间，避免真实的文件通知和测试中的显式调用交错
    instance = App({"name": "app", "dirs": [plugin_dir], "debounce": 5.0})
    yield instance
    if not instance.is_disposed:
        await instance.stop()


@pytest.mark.unit
def test_accepts_config_model_or_mapping(plugin_dir):
    by_model = HMR(HmrConfig(name="a", dispatch_hops=0))
    by_mapping = HMR({"name": "b", "dirs": [str(plugin_dir)]})

    assert by_model.name == "a"
    assert by_model.dispatch_hops == 0
    assert by_mapping.get_watch_dirs() == [plugin_dir.resolve()]
    by_model.dispose()
    by_mapping.dispose()


@pytest.mark.unit
async def test_start_loads_plugins_in_sorted_order(app, plugin_dir, write_plugin):
    write_plugin("b_plugin.py", GREETER.replace("{name}", "b"), plugin_dir)
    write_plugin("a_plugin.py", GREETER.replace("{name}", "a"), plugin_dir)
    write_plugin("_helper.py", "raise RuntimeError('never loaded')\n", plugin_dir)
    write_plugin("notes.txt", "not a plugin", plugin_dir)

    await app.start()

    assert app.is_ready
    assert app.started
    assert [d.name for d in app.dependency_list] == ["a_plugin", "b_plugin"]
    assert all(isinstance(d, Plugin) for d in app.dependency_list)
    assert app.get_context("greeting") == "hello from a"


@pytest.mark.unit
async def test_configured_plugins_are_loaded(tmp_path, write_plugin):
    extra = write_plugin("extra.py", GREETER.replace("{name}", "extra"), tmp_path / "elsewhere")
    app = HMR({"name": "app", "plugins": [extra]})

    await app.start()
    try:
        assert app.find_plugin_by_name("extra") is not None
    finally:
        await app.stop()


@pytest.mark.unit
async def test_stop_disposes_graph(app, plugin_dir, write_plugin):
    write_plugin("a_plugin.py", GREETER.replace("{name}", "a"), plugin_dir)
    await app.start()
    plugins = app.all_dependencies

    await app.stop()

    assert app.is_disposed
    assert all(p.is_disposed for p in plugins)
    assert app.loader.disposed
    assert not app.watcher.is_running


@pytest.mark.unit
async def test_loader_errors_are_reemitted(app, plugin_dir, write_plugin):
    errors = MagicMock()
    app.on("error", errors)
    write_plugin("broken.py", "def broken(:\n", plugin_dir)

    await app.start()

    errors.assert_called_once()
    assert isinstance(errors.call_args.args[0], LoaderError)
    assert app.dependency_list == []


@pytest.mark.unit
async def test_use_plugin_and_file_change(app, plugin_dir, write_plugin):
    await app.start()
    path = write_plugin("late.py", GREETER.replace("{name}", "v1"), plugin_dir)

    first = await app.use_plugin(path)
    assert first.use("greeting") == "hello from v1"

    write_plugin("late.py", GREETER.replace("{name}", "v2"), plugin_dir)
    await app._on_file_change("modified", path.resolve(), None)

    second = app.loader.get(path)
    assert second is not first
    assert first.is_disposed
    assert second.use("greeting") == "hello from v2"


@pytest.mark.unit
async def test_watching_routes_non_plugin_files(app, tmp_path):
    config = tmp_path / "app.toml"
    config.write_text("name = 'app'\n", encoding="utf-8")
    callback = MagicMock()
    unwatch = app.watching(config, callback)

    await app._on_file_change("modified", config.resolve(), None)
    callback.assert_called_once_with("modified", config.resolve())

    unwatch()
    await app._on_file_change("modified", config.resolve(), None)
    callback.assert_called_once()
    assert app.loader.get(config) is None


@pytest.mark.unit
async def test_watch_dirs_management(app, plugin_dir, tmp_path):
    other = tmp_path / "other"
    other.mkdir()

    app.add_watch_dir(other)
    app.add_watch_dir(other)
    assert app.get_watch_dirs() == [plugin_dir.resolve(), other.resolve()]

    assert app.remove_watch_dir(plugin_dir) is True
    assert app.remove_watch_dir(plugin_dir) is False
    assert app.get_watch_dirs() == [other.resolve()]


@pytest.mark.unit
async def test_update_config_syncs_dirs(app, plugin_dir, tmp_path):
    other = tmp_path / "other"
    other.mkdir()
    changed = MagicMock()
    app.on("config.changed", changed)

    app.update_config({"dirs": [other], "dispatch_hops": 0})

    assert app.get_watch_dirs() == [other.resolve()]
    assert app.dispatch_hops == 0
    changed.assert_called_once()


@pytest.mark.unit
async def test_get_context_unknown_name(app):
    await app.start()
    with pytest.raises(ContextNotFoundError):
        app.get_context("missing")


@pytest.mark.unit
async def test_host_contexts_are_visible_to_plugins(app, plugin_dir, write_plugin):
    app.register({"name": "config", "mounted": lambda dep: {"greeting": "hi"}})
    write_plugin("reader.py", '''
        from hotplug.sdk import register, use

        settings = use("config")
        register({"name": "reader", "mounted": lambda dep: settings["greeting"]})
    ''', plugin_dir)

    await app.start()

    assert app.get_context("reader") == "hi"
    assert app.stats()["dependencies"] == 1


@pytest.mark.unit
def test_debug_flag_switches_debug_logging(monkeypatch, plugin_dir):
    debug = MagicMock()
    monkeypatch.setattr("hotplug.core.hmr.set_debug", debug)

    instance = HMR({"name": "app", "debug": True})
    debug.assert_called_once_with(True)

    instance.update_config({"dirs": [plugin_dir]})
    debug.assert_called_once()

    instance.update_config({"debug": False})
    debug.assert_called_with(False)
    instance.dispose()


@pytest.mark.unit
async def test_failed_root_mount_leaves_host_stopped(app):
    async def broken(_dep):
        raise RuntimeError("no database")

    app.register({"name": "db", "mounted": broken})

    with pytest.raises(MountError):
        await app.start()

    assert not app.started
    assert not app.watcher.is_running


@pytest.mark.unit
async def test_start_can_be_retried_after_failed_mount(app):
    attempts = []

    def flaky(_dep):
        attempts.append(1)
        if len(attempts) == 1:
            raise ConnectionError("refused")
        return "connected"

    app.register({"name": "db", "mounted": flaky})

    with pytest.raises(MountError):
        await app.start()
    await app.start()

    assert app.started
    assert app.get_context("db") == "connected"


@pytest.mark.unit
async def test_start_after_stop_is_rejected(app):
    await app.start()
    await app.stop()

    with pytest.raises(DependencyDisposedError):
        await app.start()
    assert not app.started
