"""
app.services.ledger
~~~~~~~~~~~~~~~~~~~

消息账本 —— 维护每个房间按序追加的消息历史。

文本消息通过连接绑定确定发送者；附件消息来自普通 HTTP 请求，
没有连接绑定，因此通过令牌重新推导角色。
"""
from __future__ import annotations

from app.core.errors import InvalidMessage, InvalidToken, NotInRoom, RoomNotFound
from app.core.logging import get_logger
from app.schemas.chat import FileDescriptor, Message
from app.services.messages import (
    build_attachment_message,
    build_reply_snapshot,
    build_text_message,
)
from app.services.room import ChatRoom, Participant
from app.services.session_registry import SessionRegistry

logger = get_logger(__name__)


class MessageLedger:
    """房间消息历史的唯一写入入口。

    Attributes:
        registry: 会话注册表。
        max_message_length: 文本消息（去除首尾空白后）的最大长度。
        preview_length: 引用回复预览的最大字符数。
    """

    def __init__(
        self,
        registry: SessionRegistry,
        max_message_length: int = 2000,
        preview_length: int = 120,
    ) -> None:
        self.registry = registry
        self.max_message_length = max_message_length
        self.preview_length = preview_length

    async def append_text(
        self,
        connection_id: str,
        text: str,
        reply_to_id: str | None = None,
    ) -> tuple[str, Message]:
        """追加一条文本消息。

        Args:
            connection_id: 发送者的连接 ID。
            text: 消息文本，会去除首尾空白。
            reply_to_id: 可选的被引用消息 ID，找不到时静默忽略。

        Returns:
            ``(room_id, message)``，供传输层广播。

        Raises:
            NotInRoom: 连接没有绑定到存活的房间。
            InvalidMessage: 文本为空或超长。
        """
        room = await self.registry.room_for_connection(connection_id)
        if room is None:
            raise NotInRoom()

        async with room.lock:
            participant = self._bound_participant(room, connection_id)

            body = text.strip() if isinstance(text, str) else ""
            if not body or len(body) > self.max_message_length:
                raise InvalidMessage()

            reply_to = None
            if isinstance(reply_to_id, str) and reply_to_id.strip():
                original = self._find(room, reply_to_id.strip())
                reply_to = build_reply_snapshot(original, self.preview_length)

            message = build_text_message(
                participant.role, body, reply_to=reply_to, clock=self.registry.clock,
            )
            room.history.append(message)
            room.touch()
            return room.room_id, message

    async def append_attachment(
        self,
        room_id: str,
        token: str,
        descriptor: FileDescriptor | None,
    ) -> tuple[str, Message]:
        """登记一个已存储的上传文件并追加图片 / 文件消息。

        Raises:
            RoomNotFound: 房间不存在或已销毁。
            InvalidToken: 令牌无效。
            NotInRoom: 令牌对应的角色当前不在房间中。
            InvalidMessage: 没有收到文件。
        """
        room = await self.registry.get_room(room_id)
        if room is None:
            raise RoomNotFound()

        async with room.lock:
            if room.is_destroyed:
                raise RoomNotFound()

            role = room.role_for_token(token)
            if role is None:
                raise InvalidToken()
            if not room.has_role(role):
                raise NotInRoom()
            if descriptor is None:
                raise InvalidMessage("没有收到文件。")

            room.attached_resources.add(descriptor.storage_ref)
            room.touch()

            message = build_attachment_message(role, descriptor, clock=self.registry.clock)
            room.history.append(message)
            logger.info(
                "附件已登记 | room=%s | role=%s | type=%s | size=%d",
                room.room_id, role, message.type, descriptor.size,
            )
            return room.room_id, message

    async def history(self, connection_id: str) -> tuple[Message, ...]:
        """返回连接所在房间的完整历史（不可变副本）。"""
        room = await self.registry.room_for_connection(connection_id)
        if room is None:
            raise NotInRoom()
        async with room.lock:
            self._bound_participant(room, connection_id)
            return tuple(room.history)

    @staticmethod
    def _bound_participant(room: ChatRoom, connection_id: str) -> Participant:
        """在房间锁内复核连接仍是存活房间的参与者。"""
        participant = room.participants.get(connection_id)
        if room.is_destroyed or participant is None:
            raise NotInRoom()
        return participant

    @staticmethod
    def _find(room: ChatRoom, message_id: str) -> Message | None:
        for message in room.history:
            if message.id == message_id:
                return message
        return None
