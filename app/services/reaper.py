"""
app.services.reaper
~~~~~~~~~~~~~~~~~~~

房间生命周期回收器 —— 房间销毁的唯一入口。

主动离开、连接断开和闲置超时三种触发方式都汇聚到 ``destroy()``，
保证只有一条拆除路径、只产生一次通知。``destroy()`` 是幂等的。

拆除顺序:
  1. 状态机推进到 ``DESTROYED``
  2. 记录全部连接 ID 和附件句柄
  3. 从注册表移除房间并清除连接绑定（在任何 I/O 之前）
  4. 清空内存中的历史、参与者和附件集合
  5. 释锁后逐个释放附件，单个失败只记录日志并通知观测钩子

第 1 到 4 步在房间锁内同步完成，中间没有 await，任务被取消也不会留下半拆除的房间。
"""
from __future__ import annotations

from collections.abc import Awaitable, Callable

from app.core.logging import get_logger
from app.schemas.chat import DestroyResult
from app.services.session_registry import SessionRegistry

logger = get_logger(__name__)

ResourceReleaser = Callable[[str], Awaitable[None]]
ReleaseFailureHook = Callable[[str, BaseException], None]


class LifecycleReaper:
    """销毁房间并释放其全部资源。

    Attributes:
        registry: 会话注册表。
        release: 释放单个附件句柄的协程函数（通常是删除磁盘文件）。
        idle_ttl_seconds: 闲置超过该秒数的房间会被 ``sweep_idle`` 销毁。
        on_release_failure: 可选的观测钩子，附件释放失败时调用。
    """

    def __init__(
        self,
        registry: SessionRegistry,
        release: ResourceReleaser,
        idle_ttl_seconds: float,
        on_release_failure: ReleaseFailureHook | None = None,
    ) -> None:
        self.registry = registry
        self.release = release
        self.idle_ttl_seconds = idle_ttl_seconds
        self.on_release_failure = on_release_failure

    async def destroy(
        self,
        room_id: str,
        reason: str,
        initiator_connection_id: str | None = None,
    ) -> DestroyResult | None:
        """销毁房间。房间不存在或已销毁时返回 ``None``。"""
        room = await self.registry.get_room(room_id)
        if room is None:
            return None

        async with room.lock:
            if room.is_destroyed:
                return None

            room.machine.force_destroyed()
            connection_ids = list(room.participants)
            resources = list(room.attached_resources)

            self.registry.unregister(room, connection_ids)

            room.participants.clear()
            room.history.clear()
            room.attached_resources.clear()
            room.typing_roles.clear()

        logger.info(
            "房间已销毁 | room=%s | 连接: %d | 附件: %d | reason=%s",
            room_id, len(connection_ids), len(resources), reason,
        )
        await self._release_all(room_id, resources)

        return DestroyResult(
            room_id=room_id,
            connection_ids=connection_ids,
            reason=reason,
            initiator_connection_id=initiator_connection_id,
        )

    async def leave(self, connection_id: str, reason: str) -> DestroyResult | None:
        """参与者主动离开：整个房间随之结束。"""
        return await self._destroy_by_connection(connection_id, reason)

    async def on_disconnect(self, connection_id: str, reason: str) -> DestroyResult | None:
        """参与者连接断开：整个房间随之结束。"""
        return await self._destroy_by_connection(connection_id, reason)

    async def sweep_idle(self, reason: str) -> list[DestroyResult]:
        """销毁所有闲置时间达到阈值的房间。

        遍历的是房间快照，每个候选房间单独加锁销毁。
        """
        now = self.registry.clock()
        expired = [
            room for room in await self.registry.snapshot()
            if not room.is_destroyed and room.idle_for(now) >= self.idle_ttl_seconds
        ]

        results: list[DestroyResult] = []
        for room in expired:
            result = await self.destroy(room.room_id, reason)
            if result is not None:
                results.append(result)
        if results:
            logger.info("闲置巡检完成 | 销毁 %d 个房间", len(results))
        return results

    async def _destroy_by_connection(
        self, connection_id: str, reason: str,
    ) -> DestroyResult | None:
        room = await self.registry.room_for_connection(connection_id)
        if room is None:
            return None
        return await self.destroy(room.room_id, reason, connection_id)

    async def _release_all(self, room_id: str, resources: list[str]) -> None:
        for handle in resources:
            try:
                await self.release(handle)
            except Exception as e:
                logger.warning(
                    "附件释放失败 | room=%s | resource=%s | %s", room_id, handle, e,
                )
                if self.on_release_failure is not None:
                    self.on_release_failure(handle, e)
