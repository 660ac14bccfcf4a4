"""
app.services.sweeper
~~~~~~~~~~~~~~~~~~~~

闲置房间后台巡检任务。

按固定间隔调用 ``ChatSystem.sweep_idle()``，再把每个销毁结果交给传输层回调，
由传输层通知并断开相关连接。
"""
from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from app.core.logging import get_logger
from app.prompts.notices import IDLE_TIMEOUT_REASON
from app.schemas.chat import DestroyResult
from app.services.chat_system import ChatSystem

logger = get_logger(__name__)

DestroyedCallback = Callable[[DestroyResult], Awaitable[None]]


class RoomSweeper:
    """闲置房间巡检器（后台 asyncio 任务）。"""

    def __init__(
        self,
        system: ChatSystem,
        interval_seconds: float,
        on_destroyed: DestroyedCallback | None = None,
        reason: str = IDLE_TIMEOUT_REASON,
    ) -> None:
        self.system = system
        self.interval_seconds = interval_seconds
        self.on_destroyed = on_destroyed
        self.reason = reason
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """启动后台巡检。重复调用无副作用。"""
        if self.running:
            logger.warning("闲置巡检已在运行")
            return
        self._task = asyncio.create_task(self._run())
        logger.info("闲置巡检已启动 | interval=%ss", self.interval_seconds)

    async def stop(self) -> None:
        """停止后台巡检并等待任务退出。"""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("闲置巡检已停止")

    async def sweep_once(self) -> list[DestroyResult]:
        """执行一次巡检并通知传输层。"""
        results = await self.system.sweep_idle(self.reason)
        if self.on_destroyed is not None:
            for result in results:
                await self.on_destroyed(result)
        return results

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("闲置巡检异常: %s", e, exc_info=True)
