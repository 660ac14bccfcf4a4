"""
app.api.chat_ws
~~~~~~~~~~~~~~~

WebSocket 实时交互接口 —— 双人聊天室。

每个连接通过 ``join-room`` 帧携带令牌加入房间，之后的消息、输入状态只在本房间内传播。
任一参与者离开或断开，整个房间随之销毁，双方都会收到 ``room-ended`` 并被断开。

帧格式为 JSON ``{"event": ..., "data": {...}}``。

入站:
  - ``join-room``     ``{room_id, token}``
  - ``chat-message``  ``{text, reply_to_id?}``
  - ``typing-start`` / ``typing-stop``
  - ``leave-room``

出站:
  - ``join-success`` / ``join-error``
  - ``system-message``
  - ``chat-message``
  - ``peer-typing``   ``{is_typing, sender_role, sender_label}``
  - ``room-ended``    ``{reason, by_self}``
"""
from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from app.core.errors import ChatRoomError
from app.core.logging import get_logger, request_id_ctx_var
from app.core.rate_limit import WebSocketRateLimiter
from app.core.settings import settings
from app.prompts.notices import DISCONNECT_REASON, LEAVE_REASON, SLOW_DOWN_NOTICE
from app.schemas.rooms import ChatMessageData, InboundFrame, JoinRoomData
from app.services.chat_system import ChatSystem
from app.services.connection import ConnectionHub, make_frame

logger = get_logger(__name__)

router: APIRouter = APIRouter()


@router.websocket("/ws")
async def websocket_chat_endpoint(websocket: WebSocket) -> None:
    """WebSocket 聊天端点。

    Args:
        websocket: FastAPI WebSocket 连接对象。
    """
    hub: ConnectionHub = websocket.app.state.connection_hub
    system: ChatSystem = websocket.app.state.chat_system

    connection_id = await hub.connect(websocket)
    token = request_id_ctx_var.set(f"ws-{connection_id[:8]}")
    ws_limiter = WebSocketRateLimiter(interval_seconds=settings.WS_RATE_LIMIT_INTERVAL)
    logger.info("连接已建立 | 在线: %d", hub.online_count)

    try:
        while not hub.is_closed(connection_id):
            raw: str = await websocket.receive_text()
            try:
                frame = InboundFrame.model_validate_json(raw)
                await _dispatch(frame, connection_id, system, hub, ws_limiter)
            except ValidationError:
                logger.debug("忽略格式错误的帧")
    except WebSocketDisconnect:
        pass  # 正常断开
    except Exception as e:
        logger.error("WebSocket 异常: %s", e, exc_info=True)
    finally:
        hub.disconnect(connection_id)
        ws_limiter.remove_client(connection_id)
        result = await system.on_disconnect(connection_id, DISCONNECT_REASON)
        await hub.deliver_room_ended(result)
        logger.info("连接已关闭 | 在线: %d", hub.online_count)
        request_id_ctx_var.reset(token)


async def _dispatch(
    frame: InboundFrame,
    connection_id: str,
    system: ChatSystem,
    hub: ConnectionHub,
    ws_limiter: WebSocketRateLimiter,
) -> None:
    if frame.event == "join-room":
        await _handle_join(JoinRoomData.model_validate(frame.data), connection_id, system, hub)
    elif frame.event == "chat-message":
        if not ws_limiter.is_allowed(connection_id):
            await hub.send(connection_id, make_frame("system-message", {"text": SLOW_DOWN_NOTICE}))
            return
        await _handle_chat_message(
            ChatMessageData.model_validate(frame.data), connection_id, system, hub,
        )
    elif frame.event in ("typing-start", "typing-stop"):
        event = await system.set_typing(connection_id, frame.event == "typing-start")
        if event is not None:
            await hub.broadcast(
                event.room_id,
                make_frame(
                    "peer-typing",
                    {
                        "is_typing": event.is_typing,
                        "sender_role": event.role,
                        "sender_label": event.role_label,
                    },
                ),
                exclude=connection_id,
            )
    elif frame.event == "leave-room":
        result = await system.leave(connection_id, LEAVE_REASON)
        await hub.deliver_room_ended(result)


async def _handle_join(
    payload: JoinRoomData,
    connection_id: str,
    system: ChatSystem,
    hub: ConnectionHub,
) -> None:
    try:
        result = await system.join(payload.room_id, payload.token, connection_id)
    except ChatRoomError as e:
        logger.info("加入失败 | room=%s | %s", payload.room_id, e.code)
        await hub.send(connection_id, make_frame("join-error", e.to_dict()))
        return

    hub.bind(connection_id, result.room_id)
    await hub.send(
        connection_id,
        make_frame(
            "join-success",
            result.model_dump(mode="json", exclude={"notice_to_self", "notice_to_room"}),
        ),
    )
    if result.notice_to_self is not None:
        await hub.send(
            connection_id,
            make_frame("system-message", result.notice_to_self.model_dump(mode="json")),
        )
    if result.notice_to_room is not None:
        await hub.broadcast(
            result.room_id,
            make_frame("system-message", result.notice_to_room.model_dump(mode="json")),
        )


async def _handle_chat_message(
    payload: ChatMessageData,
    connection_id: str,
    system: ChatSystem,
    hub: ConnectionHub,
) -> None:
    try:
        room_id, message = await system.append_text(
            connection_id, payload.text, payload.reply_to_id,
        )
    except ChatRoomError as e:
        logger.debug("消息被拒绝 | %s", e.code)
        return
    await hub.broadcast(room_id, make_frame("chat-message", message.model_dump(mode="json")))
