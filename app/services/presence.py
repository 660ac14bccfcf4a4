"""
app.services.presence
~~~~~~~~~~~~~~~~~~~~~

输入状态追踪 —— 记录每个房间中正在输入的角色。
"""
from __future__ import annotations

from app.prompts.notices import role_label
from app.schemas.chat import TypingEvent
from app.services.session_registry import SessionRegistry


class PresenceTracker:
    """房间内「正在输入」状态的维护者。"""

    def __init__(self, registry: SessionRegistry) -> None:
        self.registry = registry

    async def set_typing(self, connection_id: str, is_typing: bool) -> TypingEvent | None:
        """更新连接所属角色的输入状态。

        连接没有绑定到存活房间时什么也不做，返回 ``None``。
        返回的事件只应转发给对方，不回显给发送者。
        """
        room = await self.registry.room_for_connection(connection_id)
        if room is None:
            return None

        async with room.lock:
            participant = room.participants.get(connection_id)
            if room.is_destroyed or participant is None:
                return None

            if is_typing:
                room.typing_roles.add(participant.role)
            else:
                room.typing_roles.discard(participant.role)
            room.touch()

            return TypingEvent(
                room_id=room.room_id,
                connection_id=connection_id,
                role=participant.role,
                role_label=role_label(participant.role),
                is_typing=is_typing,
            )
