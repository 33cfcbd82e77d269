# -*- coding: utf-8 -*-
"""
事件发射器 - 单元测试

覆盖范围:
- 监听器按注册顺序触发
- once / off / 返回的取消函数
- 监听器异常不影响后续监听器
- 协程监听器被调度执行
- close() 之后不再触发、不再接受注册
"""
import asyncio
from unittest.mock import MagicMock

import pytest

from hotplug.core.emitter import EventEmitter


@pytest.mark.unit
def test_listeners_fire_in_registration_order():
    emitter = EventEmitter()
    calls = []
    emitter.on("tick", lambda v: calls.append(("a", v)))
    emitter.on("tick", lambda v: calls.append(("b", v)))

    assert emitter.emit("tick", 1) is True
    assert calls == [("a", 1), ("b", 1)]


@pytest.mark.unit
def test_emit_without_listeners_returns_false():
    emitter = EventEmitter()
    assert emitter.emit("nothing") is False


@pytest.mark.unit
def test_once_fires_a_single_time():
    emitter = EventEmitter()
    listener = MagicMock()
    emitter.once("ping", listener)

    emitter.emit("ping", "x")
    emitter.emit("ping", "y")

    listener.assert_called_once_with("x")
    assert emitter.listener_count("ping") == 0


@pytest.mark.unit
def test_off_accepts_the_wrapped_once_listener():
    emitter = EventEmitter()
    listener = MagicMock()
    emitter.once("ping", listener)
    emitter.off("ping", listener)

    emitter.emit("ping")
    listener.assert_not_called()


@pytest.mark.unit
def test_unsubscribe_callable():
    emitter = EventEmitter()
    listener = MagicMock()
    unsubscribe = emitter.on("ping", listener)
    assert emitter.listener_count("ping") == 1

    unsubscribe()
    unsubscribe()

    assert emitter.listener_count("ping") == 0
    assert "ping" not in emitter.event_names()


@pytest.mark.unit
def test_failing_listener_does_not_stop_later_listeners():
    emitter = EventEmitter()
    after = MagicMock()

    def boom():
        raise RuntimeError("listener failure")

    emitter.on("go", boom)
    emitter.on("go", after)

    assert emitter.emit("go") is True
    after.assert_called_once_with()


@pytest.mark.unit
async def test_coroutine_listener_is_scheduled():
    emitter = EventEmitter()
    seen = []

    async def listener(value):
        await asyncio.sleep(0)
        seen.append(value)

    emitter.on("data", listener)
    emitter.emit("data", 42)
    assert seen == []

    await emitter.wait_pending()
    assert seen == [42]


@pytest.mark.unit
async def test_failing_coroutine_listener_is_logged_not_raised():
    emitter = EventEmitter()

    async def listener():
        raise ValueError("async failure")

    emitter.on("data", listener)
    emitter.emit("data")
    await emitter.wait_pending()


@pytest.mark.unit
def test_close_removes_listeners_and_rejects_new_ones():
    emitter = EventEmitter()
    listener = MagicMock()
    emitter.on("a", listener)

    emitter.close()
    emitter.on("a", listener)

    assert emitter.closed
    assert emitter.listener_count("a") == 0
    assert emitter.emit("a") is False
    listener.assert_not_called()


@pytest.mark.unit
def test_remove_all_listeners_for_one_event():
    emitter = EventEmitter()
    emitter.on("a", MagicMock())
    emitter.on("b", MagicMock())

    emitter.remove_all_listeners("a")

    assert emitter.listener_count("a") == 0
    assert emitter.listener_count("b") == 1


@pytest.mark.unit
def test_exceeding_max_listeners_only_warns():
    emitter = EventEmitter(max_listeners=2)
    for _ in range(5):
        emitter.on("crowded", MagicMock())
    assert emitter.listener_count("crowded") == 5
