"""
app.services.connection
~~~~~~~~~~~~~~~~~~~~~~~

WebSocket 连接中心 —— 维护「连接 ID → WebSocket」和「房间 → 连接」两张表，
提供单发、房间广播、房间结束通知和强制断开能力。

核心层只返回数据，所有 socket I/O 都在这里完成。
"""
from __future__ import annotations

import asyncio
import uuid
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from app.core.logging import get_logger
from app.schemas.chat import DestroyResult

logger = get_logger(__name__)


def make_frame(event: str, data: Any = None) -> dict[str, Any]:
    """构造一条出站 JSON 帧。"""
    return {"event": event, "data": data if data is not None else {}}


class ConnectionHub:
    """所有 WebSocket 连接的管理器。

    Attributes:
        connections: 连接 ID → WebSocket。
        rooms: 房间 ID → 连接 ID 集合。
    """

    def __init__(self) -> None:
        self.connections: dict[str, WebSocket] = {}
        self.rooms: dict[str, set[str]] = {}
        self._closed: set[str] = set()

    async def connect(self, websocket: WebSocket) -> str:
        """接受新连接并分配连接 ID。"""
        await websocket.accept()
        connection_id = uuid.uuid4().hex
        self.connections[connection_id] = websocket
        return connection_id

    def disconnect(self, connection_id: str) -> None:
        """从所有表中移除连接。"""
        self.connections.pop(connection_id, None)
        self._closed.discard(connection_id)
        for members in self.rooms.values():
            members.discard(connection_id)
        self.rooms = {room_id: members for room_id, members in self.rooms.items() if members}

    def bind(self, connection_id: str, room_id: str) -> None:
        self.rooms.setdefault(room_id, set()).add(connection_id)

    def is_closed(self, connection_id: str) -> bool:
        return connection_id in self._closed

    @property
    def online_count(self) -> int:
        return len(self.connections)

    async def send(self, connection_id: str, frame: dict[str, Any]) -> bool:
        """向单个连接发送帧，失败时只记录日志。"""
        websocket = self.connections.get(connection_id)
        if websocket is None or connection_id in self._closed:
            return False
        try:
            await websocket.send_json(frame)
            return True
        except Exception as e:
            logger.warning("发送失败 | conn=%s | %s", connection_id, e)
            return False

    async def broadcast(
        self,
        room_id: str,
        frame: dict[str, Any],
        exclude: str | None = None,
    ) -> None:
        """向房间内所有连接（可排除一个）广播帧。"""
        targets = [cid for cid in self.rooms.get(room_id, set()) if cid != exclude]
        await asyncio.gather(*(self.send(cid, frame) for cid in targets))

    async def close(self, connection_id: str, code: int = 1000) -> None:
        """由服务端强制关闭连接，每个连接只关闭一次。"""
        websocket = self.connections.get(connection_id)
        if websocket is None or connection_id in self._closed:
            return
        self._closed.add(connection_id)
        if websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await websocket.close(code=code)
        except Exception as e:
            logger.debug("关闭连接失败 | conn=%s | %s", connection_id, e)

    async def deliver_room_ended(self, result: DestroyResult | None) -> None:
        """通知销毁结果中的每个连接房间已结束，然后断开它们。"""
        if result is None:
            return
        for connection_id in result.connection_ids:
            await self.send(
                connection_id,
                make_frame(
                    "room-ended",
                    {
                        "reason": result.reason,
                        "by_self": result.initiator_connection_id == connection_id,
                    },
                ),
            )
            await self.close(connection_id)
        self.rooms.pop(result.room_id, None)
