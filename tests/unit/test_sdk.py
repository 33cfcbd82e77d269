# -*- coding: utf-8 -*-
"""
插件运行时 Hook - 单元测试
"""
from unittest.mock import MagicMock

import pytest

from hotplug import sdk
from hotplug._types import ErrorCode, HotplugError
from hotplug.core.dependency import Dependency


@pytest.mark.unit
def test_hooks_outside_scope_fail():
    with pytest.raises(HotplugError) as exc_info:
        sdk.use_dependency()
    assert exc_info.value.code == ErrorCode.NOT_FOUND
    assert sdk.current_dependency() is None

    with pytest.raises(HotplugError):
        sdk.register({"name": "db"})


@pytest.mark.unit
def test_scope_binds_and_restores():
    outer = Dependency(None, "outer", "outer.py")
    inner = Dependency(None, "inner", "inner.py")

    with sdk.dependency_scope(outer):
        assert sdk.use_dependency() is outer
        with sdk.dependency_scope(inner):
            assert sdk.use_dependency() is inner
        assert sdk.use_dependency() is outer

    assert sdk.current_dependency() is None


@pytest.mark.unit
async def test_register_and_use_through_hooks():
    dep = Dependency(None, "plugin", "plugin.py")
    with sdk.dependency_scope(dep):
        sdk.register({"name": "greeting", "mounted": lambda d: "hello"})
        teardown = sdk.on_dispose(MagicMock())
    await dep.mounted()

    with sdk.dependency_scope(dep):
        assert sdk.use("greeting") == "hello"
        assert sdk.use_logger() is dep.logger

    dep.dispose()
    teardown.assert_called_once_with()


@pytest.mark.unit
def test_on_event_decorator_and_dispatch():
    root = Dependency(None, "host", "host.py")
    plugin = root.attach(Dependency(root, "plugin", "plugin.py"))
    received = []
    root.on("message.receive", received.append)

    with sdk.dependency_scope(plugin):
        @sdk.on_event("ping")
        def on_ping(value):
            received.append(("ping", value))

        sdk.dispatch("message.receive", "hi")

    plugin.emit("ping", 1)
    assert received == ["hi", ("ping", 1)]


@pytest.mark.unit
def test_broadcast_hook():
    root = Dependency(None, "host", "host.py")
    plugin = root.attach(Dependency(root, "plugin", "plugin.py"))
    listener = MagicMock()
    plugin.on("shutdown", listener)

    with sdk.dependency_scope(root):
        sdk.broadcast("shutdown")

    listener.assert_called_once_with()


@pytest.mark.unit
async def test_use_context_and_on_mounted_hooks():
    dep = Dependency(None, "plugin", "plugin.py")
    mounted = MagicMock()
    seen = []
    with sdk.dependency_scope(dep):
        sdk.register({"name": "db", "mounted": lambda d: "conn"})
        sdk.use_context("db", callback=seen.append)
        sdk.on_mounted(mounted)

    await dep.mounted()

    assert seen == ["conn"]
    mounted.assert_called_once_with(dep)
