"""
app.services.session_registry
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~

会话注册表 —— 房间表与「连接 → 房间」绑定的唯一持有者。

负责两人准入控制：每个房间最多一位房主、一位访客，邀请令牌一次性。
所有加入判定都在房间锁内完成（检查与写入之间没有让出点），
因此同一邀请链接的两个并发连接不可能同时成功。

锁顺序固定为「房间锁 → 注册表锁」，注册表锁只在读写全局映射时短暂持有。
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Callable

from app.core.errors import (
    InvalidToken,
    InviteAlreadyUsed,
    RoleAlreadyConnected,
    RoomFull,
    RoomNotFound,
)
from app.core.logging import get_logger
from app.prompts.notices import BOTH_PRESENT_NOTICE, WAITING_FOR_PEER_NOTICE, role_label
from app.schemas.chat import JoinResult
from app.services.messages import build_system_message
from app.services.room import ChatRoom, Participant
from app.services.room_state import RoomState
from app.services.tokens import issue_credentials

logger = get_logger(__name__)

MAX_PARTICIPANTS: int = 2


class SessionRegistry:
    """房间表 + 连接绑定表。

    Attributes:
        clock: 时间源（秒），测试中可替换。
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._rooms: dict[str, ChatRoom] = {}
        self._bindings: dict[str, str] = {}
        self._lock = asyncio.Lock()

    # ── 房间表 ────────────────────────────────────────────────────────

    async def create_room(self) -> ChatRoom:
        """签发令牌并登记一个处于 ``WAITING_SECOND`` 的新房间。"""
        room = ChatRoom(issue_credentials(), clock=self.clock)
        room.machine.transition(RoomState.WAITING_SECOND)
        async with self._lock:
            self._rooms[room.room_id] = room
        logger.info("房间已创建 | room=%s", room.room_id)
        return room

    async def get_room(self, room_id: str) -> ChatRoom | None:
        async with self._lock:
            return self._rooms.get(room_id)

    async def snapshot(self) -> list[ChatRoom]:
        """当前所有房间的快照（不持锁遍历用）。"""
        async with self._lock:
            return list(self._rooms.values())

    async def room_for_connection(self, connection_id: str) -> ChatRoom | None:
        """按连接查找其绑定的房间。调用方拿到房间后仍需在房间锁内复核。"""
        async with self._lock:
            room_id = self._bindings.get(connection_id)
            if room_id is None:
                return None
            return self._rooms.get(room_id)

    def unregister(self, room: ChatRoom, connection_ids: list[str]) -> None:
        """从房间表移除房间并清除其全部连接绑定。

        只允许 ``LifecycleReaper`` 在持有房间锁时调用。这里是同步的，
        执行期间不会让出事件循环，因此销毁流程不会在半途被取消。
        注册表锁的持有者在临界区内同样不会让出，直接修改映射是安全的。
        """
        self._rooms.pop(room.room_id, None)
        for connection_id in connection_ids:
            if self._bindings.get(connection_id) == room.room_id:
                del self._bindings[connection_id]

    def __len__(self) -> int:
        return len(self._rooms)

    # ── 准入 ──────────────────────────────────────────────────────────

    async def join(self, room_id: str, token: str, connection_id: str) -> JoinResult:
        """让一个连接以令牌对应的角色加入房间。

        Raises:
            RoomNotFound: 房间不存在或已销毁。
            InvalidToken: 令牌与两个角色都不匹配。
            InviteAlreadyUsed: 访客令牌已被使用过。
            RoleAlreadyConnected: 该角色已在房间中，或该连接已绑定到某个房间。
            RoomFull: 房间已有两位参与者。
        """
        room = await self.get_room(room_id)
        if room is None:
            raise RoomNotFound()

        async with room.lock:
            if room.is_destroyed:
                raise RoomNotFound()

            role = room.role_for_token(token)
            if role is None:
                raise InvalidToken()
            if role == "guest" and room.guest_token_used:
                raise InviteAlreadyUsed()
            if room.has_role(role):
                raise RoleAlreadyConnected()
            if room.participants_count >= MAX_PARTICIPANTS:
                raise RoomFull()

            async with self._lock:
                if connection_id in self._bindings:
                    raise RoleAlreadyConnected("该连接已经加入了一个房间。")
                self._bindings[connection_id] = room.room_id

            if role == "guest":
                room.guest_token_used = True
            room.participants[connection_id] = Participant(role=role, token=token)
            room.touch()

            count = room.participants_count
            if count == MAX_PARTICIPANTS and room.state is RoomState.WAITING_SECOND:
                room.machine.transition(RoomState.ACTIVE)
                logger.info("房间已激活 | room=%s", room.room_id)

            logger.info(
                "参与者加入 | room=%s | role=%s | 人数: %d", room.room_id, role, count,
            )
            return JoinResult(
                room_id=room.room_id,
                role=role,
                role_label=role_label(role),
                participants_count=count,
                history=list(room.history),
                notice_to_self=(
                    build_system_message(WAITING_FOR_PEER_NOTICE, self.clock)
                    if count == 1 else None
                ),
                notice_to_room=(
                    build_system_message(BOTH_PRESENT_NOTICE, self.clock)
                    if count == MAX_PARTICIPANTS else None
                ),
            )
