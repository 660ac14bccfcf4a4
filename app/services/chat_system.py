"""
app.services.chat_system
~~~~~~~~~~~~~~~~~~~~~~~~

聊天室业务服务 —— 传输层访问核心的唯一入口，管理所有房间的生命周期。

在 FastAPI lifespan 中创建并挂载于 ``app.state.chat_system``，
不使用模块级全局状态。

- ``create_room()``                 → 签发令牌并创建房间
- ``join()``                        → 准入控制
- ``append_text()`` / ``append_attachment()`` / ``history()`` → 消息账本
- ``set_typing()``                  → 输入状态
- ``leave()`` / ``on_disconnect()`` / ``sweep_idle()`` / ``destroy()`` → 房间回收
"""
from __future__ import annotations

import time
from collections.abc import Callable

from app.core.logging import get_logger
from app.core.settings import Settings
from app.schemas.chat import DestroyResult, FileDescriptor, JoinResult, Message, TypingEvent
from app.services.ledger import MessageLedger
from app.services.presence import PresenceTracker
from app.services.reaper import LifecycleReaper, ReleaseFailureHook, ResourceReleaser
from app.services.room import ChatRoom
from app.services.session_registry import SessionRegistry

logger = get_logger(__name__)


class ChatSystem:
    """聊天室系统（每个应用实例一个）。

    Attributes:
        registry: 房间表与连接绑定。
        ledger: 消息账本。
        presence: 输入状态追踪。
        reaper: 房间回收器。
    """

    def __init__(
        self,
        release: ResourceReleaser,
        max_message_length: int = 2000,
        preview_length: int = 120,
        idle_ttl_seconds: float = 3600,
        on_release_failure: ReleaseFailureHook | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = SessionRegistry(clock=clock)
        self.ledger = MessageLedger(
            self.registry,
            max_message_length=max_message_length,
            preview_length=preview_length,
        )
        self.presence = PresenceTracker(self.registry)
        self.reaper = LifecycleReaper(
            self.registry,
            release=release,
            idle_ttl_seconds=idle_ttl_seconds,
            on_release_failure=on_release_failure,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        release: ResourceReleaser,
        on_release_failure: ReleaseFailureHook | None = None,
    ) -> ChatSystem:
        return cls(
            release=release,
            max_message_length=settings.MAX_MESSAGE_LENGTH,
            preview_length=settings.REPLY_PREVIEW_LENGTH,
            idle_ttl_seconds=settings.ROOM_TTL_SECONDS,
            on_release_failure=on_release_failure,
        )

    @property
    def room_count(self) -> int:
        return len(self.registry)

    async def create_room(self) -> ChatRoom:
        return await self.registry.create_room()

    async def join(self, room_id: str, token: str, connection_id: str) -> JoinResult:
        return await self.registry.join(room_id, token, connection_id)

    async def append_text(
        self, connection_id: str, text: str, reply_to_id: str | None = None,
    ) -> tuple[str, Message]:
        return await self.ledger.append_text(connection_id, text, reply_to_id)

    async def append_attachment(
        self, room_id: str, token: str, descriptor: FileDescriptor | None,
    ) -> tuple[str, Message]:
        return await self.ledger.append_attachment(room_id, token, descriptor)

    async def history(self, connection_id: str) -> tuple[Message, ...]:
        return await self.ledger.history(connection_id)

    async def set_typing(self, connection_id: str, is_typing: bool) -> TypingEvent | None:
        return await self.presence.set_typing(connection_id, is_typing)

    async def leave(self, connection_id: str, reason: str) -> DestroyResult | None:
        return await self.reaper.leave(connection_id, reason)

    async def on_disconnect(self, connection_id: str, reason: str) -> DestroyResult | None:
        return await self.reaper.on_disconnect(connection_id, reason)

    async def sweep_idle(self, reason: str) -> list[DestroyResult]:
        return await self.reaper.sweep_idle(reason)

    async def destroy(
        self, room_id: str, reason: str, initiator_connection_id: str | None = None,
    ) -> DestroyResult | None:
        return await self.reaper.destroy(room_id, reason, initiator_connection_id)
