"""
app.schemas.rooms
~~~~~~~~~~~~~~~~~

房间 REST 接口与 WebSocket 帧的 Pydantic 请求/响应模型。
"""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

InboundEvent = Literal[
    "join-room",
    "chat-message",
    "typing-start",
    "typing-stop",
    "leave-room",
]


class RoomCreatedData(BaseModel):
    """创建房间后返回的链接集合。"""

    room_id: str = Field(..., description="房间唯一标识")
    host_url: str = Field(..., description="房主链接（相对路径）")
    invite_url: str = Field(..., description="邀请链接（相对路径）")
    host_url_local: str = Field(..., description="房主链接（本机地址）")
    invite_url_local: str = Field(..., description="邀请链接（本机地址）")
    host_url_public: str = Field(..., description="房主链接（对外地址）")
    invite_url_public: str = Field(..., description="邀请链接（对外地址）")


class UploadResultData(BaseModel):
    """上传成功后返回的消息 ID。"""

    message_id: str = Field(..., description="新附件消息的 ID")


class InboundFrame(BaseModel):
    """客户端发来的 WebSocket 帧：``{"event": ..., "data": {...}}``。"""

    event: InboundEvent
    data: dict[str, Any] = Field(default_factory=dict)


class JoinRoomData(BaseModel):
    room_id: str = Field(default="", description="房间 ID")
    token: str = Field(default="", description="房主或访客令牌")


class ChatMessageData(BaseModel):
    text: str = Field(default="", description="消息文本")
    reply_to_id: str | None = Field(default=None, description="被引用消息的 ID")
