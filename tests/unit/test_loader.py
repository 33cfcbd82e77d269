# -*- coding: utf-8 -*-
"""
模块加载器 - 单元测试

覆盖范围:
- add / remove 往返后不留残余
- reload 先销毁旧节点（包括异步 dispose 回调）再挂载新节点
- 内容指纹未变化时不重载
- 缺失文件、语法错误、挂载失败都通过 error 事件汇报，部分挂载会回滚
- 加载器 dispose 后监听器数量归零
- handle_change 把文件事件映射为 add / reload / remove
"""
import os
import sys
from unittest.mock import MagicMock

import pytest

from hotplug._types import ErrorCode, LoaderError, ModuleImportError, ModuleResolveError
from hotplug.core.loader import ModuleLoader, dependency_name, module_name_for, normalize_path

GREETER = '''
from hotplug.sdk import register

register({"name": "greeting", "mounted": lambda dep: "hello"})
'''

JOURNAL_PLUGIN = '''
import asyncio
from hotplug.sdk import on_dispose, use

journal = use("journal")
journal.append("mount {version}")


async def closing():
    await asyncio.sleep(0.01)
    journal.append("closed {version}")


on_dispose(closing)
'''


@pytest.fixture
async def journal(host):
    entries = []
    host.register({"name": "journal", "mounted": lambda dep: entries})
    await host.mounted()
    return entries


@pytest.fixture
def loader(host):
    instance = ModuleLoader(host)
    yield instance
    instance.dispose()


@pytest.mark.unit
def test_dependency_name_and_module_name(tmp_path):
    assert dependency_name(tmp_path / "greeter.py") == "greeter"
    assert dependency_name(tmp_path / "weather" / "__init__.py") == "weather"
    name = module_name_for(tmp_path / "my-plugin.py")
    assert name.startswith("_hotplug_module_my_plugin_")
    assert name == module_name_for(tmp_path / "my-plugin.py")


@pytest.mark.unit
async def test_add_then_remove_leaves_no_residue(host, loader, write_plugin):
    path = write_plugin("greeter.py", GREETER)
    added = MagicMock()
    removed = MagicMock()
    loader.on("add", added)
    loader.on("remove", removed)

    dep = await loader.add(path)

    assert dep is not None and dep.is_ready
    assert dep.name == "greeter"
    assert dep.hash and dep.mtime
    assert dep.use("greeting") == "hello"
    assert host.find_child(str(normalize_path(path))) is dep
    assert loader.get(path) is dep
    module_name = loader.entries[normalize_path(path)].module_name
    assert module_name in sys.modules
    added.assert_called_once_with(dep)

    result = await loader.remove(path)

    assert result is dep
    assert dep.is_disposed
    assert host.find_child(str(normalize_path(path))) is None
    assert loader.get(path) is None
    assert loader.tracked_paths() == []
    assert module_name not in sys.modules
    assert dep.listener_count("error") == 0
    assert dep.event_names() == []
    removed.assert_called_once_with(dep)


@pytest.mark.unit
async def test_add_twice_returns_live_node(loader, write_plugin):
    path = write_plugin("greeter.py", GREETER)
    first = await loader.add(path)
    second = await loader.add(path)
    assert first is second


@pytest.mark.unit
async def test_remove_unknown_path_is_noop(loader, tmp_path):
    assert await loader.remove(tmp_path / "nothing.py") is None


@pytest.mark.unit
async def test_missing_file_reports_error(loader, tmp_path):
    errors = MagicMock()
    loader.on("error", errors)

    result = await loader.add(tmp_path / "non-existent.py")

    assert result is None
    errors.assert_called_once()
    error = errors.call_args.args[0]
    assert isinstance(error, ModuleResolveError)
    assert error.code == ErrorCode.MODULE_NOT_FOUND
    assert error.path == str(normalize_path(tmp_path / "non-existent.py"))


@pytest.mark.unit
async def test_syntax_error_reports_import_error(host, loader, write_plugin):
    path = write_plugin("broken.py", "def broken(:\n")
    errors = MagicMock()
    loader.on("error", errors)

    result = await loader.add(path)

    assert result is None
    error = errors.call_args.args[0]
    assert isinstance(error, ModuleImportError)
    assert isinstance(error.cause, SyntaxError)
    assert len(host.children) == 0
    assert module_name_for(normalize_path(path)) not in sys.modules


@pytest.mark.unit
async def test_failing_producer_rolls_back_partial_attach(host, loader, write_plugin):
    path = write_plugin("flaky.py", '''
        from hotplug.sdk import register

        async def connect(dep):
            raise ConnectionError("refused")

        register({"name": "conn", "mounted": connect})
    ''')
    errors = MagicMock()
    loader.on("error", errors)

    result = await loader.add(path)

    assert result is None
    error = errors.call_args.args[0]
    assert isinstance(error, LoaderError)
    assert error.code == ErrorCode.MOUNT_FAILED
    assert len(host.children) == 0
    assert loader.get(path) is None
    assert loader.stats()["errors"] == 1


@pytest.mark.unit
async def test_setup_hook_runs_with_dependency(loader, write_plugin):
    path = write_plugin("configured.py", '''
        async def setup(dep):
            dep.update_options(priority=5)
            dep.register({"name": "answer", "mounted": lambda d: 42})
    ''')

    dep = await loader.add(path)

    assert dep.priority == 5
    assert dep.use("answer") == 42


@pytest.mark.unit
async def test_reload_disposes_old_before_mounting_new(host, journal, loader, write_plugin):
    path = write_plugin("journaled.py", JOURNAL_PLUGIN.format(version="v1"))
    reloaded = MagicMock()
    loader.on("reload", reloaded)

    old = await loader.add(path)
    write_plugin("journaled.py", JOURNAL_PLUGIN.format(version="v2"))
    new = await loader.reload(path)

    assert new is not None and new is not old
    assert old.is_disposed
    assert new.is_ready
    assert journal == ["mount v1", "closed v1", "mount v2"]
    live = [d for d in host.dependency_list if d.filename == str(normalize_path(path))]
    assert live == [new]
    reloaded.assert_called_once_with(new, old)


@pytest.mark.unit
async def test_reload_without_change_is_noise(loader, write_plugin):
    path = write_plugin("greeter.py", GREETER)
    reloaded = MagicMock()
    loader.on("reload", reloaded)
    dep = await loader.add(path)

    path.touch()
    assert await loader.reload(path) is dep
    reloaded.assert_not_called()

    forced = await loader.reload(path, force=True)
    assert forced is not dep
    assert dep.is_disposed
    reloaded.assert_called_once_with(forced, dep)


@pytest.mark.unit
async def test_reload_keeps_options(loader, write_plugin):
    path = write_plugin("greeter.py", GREETER)
    dep = await loader.add(path, options={"priority": 7, "token": "abc"})

    write_plugin("greeter.py", GREETER + "\n# edited\n")
    new = await loader.reload(path)

    assert new.priority == 7
    assert new.get_options()["token"] == "abc"


@pytest.mark.unit
async def test_handle_change_maps_events(host, loader, write_plugin):
    path = write_plugin("greeter.py", GREETER)

    created = await loader.handle_change("created", path)
    assert created is not None and created.is_ready

    write_plugin("greeter.py", GREETER + "\n# edited\n")
    modified = await loader.handle_change("modified", path)
    assert modified is not created
    assert created.is_disposed

    path.unlink()
    removed = await loader.handle_change("deleted", path)
    assert removed is modified
    assert modified.is_disposed
    assert len(host.children) == 0


@pytest.mark.unit
async def test_handle_change_moved(host, loader, write_plugin, tmp_path):
    path = write_plugin("greeter.py", GREETER)
    original = await loader.add(path)
    target = tmp_path / "renamed.py"
    path.rename(target)

    moved = await loader.handle_change("moved", target, path)

    assert original.is_disposed
    assert moved is not None and moved.name == "renamed"
    assert loader.get(path) is None
    assert loader.get(target) is moved


@pytest.mark.unit
async def test_atomic_save_reloads_tracked_plugin(loader, write_plugin):
    path = write_plugin("greeter.py", GREETER)
    old = await loader.add(path)
    reloaded = MagicMock()
    loader.on("reload", reloaded)

    temp = write_plugin(".greeter.py.swp", GREETER.replace('"hello"', '"hello again"'))
    os.replace(temp, path)
    new = await loader.handle_change("moved", path, temp)

    assert new is not old
    assert old.is_disposed
    assert new.use("greeting") == "hello again"
    assert loader.get(path) is new
    reloaded.assert_called_once_with(new, old)


@pytest.mark.unit
async def test_plugin_errors_after_load_are_funnelled(loader, write_plugin):
    path = write_plugin("fragile.py", '''
        from hotplug.sdk import on_dispose

        def fail():
            raise RuntimeError("teardown failed")

        on_dispose(fail)
    ''')
    errors = MagicMock()
    loader.on("error", errors)
    await loader.add(path)

    await loader.remove(path)

    errors.assert_called_once()
    assert isinstance(errors.call_args.args[0].cause, RuntimeError)


@pytest.mark.unit
async def test_dispose_clears_listeners_but_keeps_nodes(host, write_plugin):
    loader = ModuleLoader(host)
    path = write_plugin("greeter.py", GREETER)
    for event in ("add", "remove", "reload", "error"):
        loader.on(event, MagicMock())
    dep = await loader.add(path)

    loader.dispose()

    for event in ("add", "remove", "reload", "error"):
        assert loader.listener_count(event) == 0
    assert dep.is_ready
    assert host.find_child(str(normalize_path(path))) is dep


@pytest.mark.unit
async def test_operations_after_dispose_report_error(host, write_plugin):
    loader = ModuleLoader(host)
    path = write_plugin("greeter.py", GREETER)
    loader.dispose()

    assert await loader.add(path) is None
    assert len(host.children) == 0


@pytest.mark.unit
async def test_stats_count_operations(loader, write_plugin):
    path = write_plugin("greeter.py", GREETER)
    await loader.add(path)
    write_plugin("greeter.py", GREETER + "\n# edited\n")
    await loader.reload(path)
    await loader.remove(path)

    stats = loader.stats()
    assert stats["operations"]["add"]["count"] == 2
    assert stats["operations"]["reload"]["count"] == 1
    assert stats["operations"]["remove"]["count"] == 1
    assert stats["tracked"] == 0
