from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional


async def as_coroutine(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


def spawn(awaitable: Awaitable[Any], *, name: Optional[str] = None) -> Optional[asyncio.Task]:
    """在当前事件循环中调度 awaitable

    有运行中的事件循环时返回 Task；没有时同步运行到结束并返回 None，
    此时 awaitable 抛出的异常直接传给调用者。
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        asyncio.run(as_coroutine(awaitable))
        return None
    return loop.create_task(as_coroutine(awaitable), name=name)
